"""
System prompt and fixed patient-facing texts for the Pulse triage assistant.

The assistant signals an emergency by starting its reply with the escalation
marker (``settings.escalation_marker``) followed by the reason. Everything
the patient sees on an escalation or failure path is a fixed text from this
module, never model output.
"""

PULSE_SYSTEM_PROMPT = """You are Pulse, a medical assistant AI. Your role is to:

1. Help patients understand their symptoms and health concerns
2. Provide general health information and guidance
3. Help patients prepare for doctor visits
4. Remind patients about medication and appointments
5. Answer questions about medical documents and test results

IMPORTANT GUIDELINES:
- You are NOT a replacement for professional medical advice
- Always recommend patients consult with their physician for serious concerns
- If a patient describes symptoms that could be an emergency (chest pain, difficulty breathing, severe bleeding, etc.), respond with {escalation_marker} followed by the reason
- Be empathetic, patient, and clear in your explanations
- Use simple language, avoiding medical jargon when possible
- Ask clarifying questions to better understand the patient's concerns
- Never diagnose conditions or prescribe treatments
- Maintain patient privacy and confidentiality at all times"""

PATIENT_CONTEXT_TEMPLATE = "Patient context: {display_name}"

ASSISTANT_ERROR_MESSAGE = (
    "I'm sorry, I encountered an error processing your message. Please try again, "
    "or if the issue persists, contact support."
)

ESCALATED_TO_PHYSICIAN_MESSAGE = (
    "I've escalated your concern to your physician. They will review your case "
    "and reach out to you soon. In the meantime, if this is a medical emergency, "
    "please call 911 or go to your nearest emergency room."
)

ESCALATED_UNASSIGNED_MESSAGE = (
    "I understand this is a concern that needs medical attention. We've flagged "
    "this for review by our medical staff, but you don't currently have an "
    "assigned physician. Someone will follow up with you as soon as possible. "
    "If this is a medical emergency, please call 911 or go to your nearest "
    "emergency room immediately."
)

ESCALATION_ROUTING_FAILED_MESSAGE = (
    "We could not route your concern to a clinician right now. If this is a "
    "medical emergency, please call 911 or go to your nearest emergency room "
    "immediately."
)
