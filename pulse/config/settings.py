"""Application configuration and settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service Configuration
    service_name: str = "pulse-triage"
    port: int = 8010
    environment: str = "development"
    cors_origins: List[str] = ["http://localhost:3000"]

    # MongoDB Configuration
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "pulse"
    mongodb_collection_users: str = "users"
    mongodb_collection_patients: str = "patients"
    mongodb_collection_chats: str = "chats"
    mongodb_collection_messages: str = "messages"
    mongodb_collection_escalations: str = "escalations"
    mongodb_collection_audit_log: str = "audit_log"

    # Active chat protocol
    chat_unique_active_index: bool = True
    chat_reconcile_max_attempts: int = 3

    # Assistant (OpenAI-compatible endpoint)
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    assistant_model: str = "gpt-4o"
    model_temperature: float = 0.3
    model_max_tokens: int = 1024
    llm_invoke_timeout: float = 30.0
    assistant_history_limit: int = 50
    escalation_marker: str = "ESCALATE:"

    # JWT Configuration
    jwt_public_key_path: str = "keys/public_key.pem"
    jwt_issuer: Optional[str] = None
    jwt_algorithm: str = "RS256"
    jwt_access_cookie_name: str = "access_token"
    jwt_role_claim: str = "role"

    # Audit
    audit_policy_path: Optional[str] = None
    audit_echo_logs: bool = True

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )


# Global settings instance
settings = Settings()
