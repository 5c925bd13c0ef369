"""Pulse: patient triage chat with physician escalation."""
