"""LLM configuration for the triage assistant.

The assistant is any OpenAI-compatible chat endpoint. The orchestrator only
depends on ``BaseChatModel.ainvoke``; tests swap in fake chat models.
"""

from langchain_openai import ChatOpenAI
from langchain_core.language_models import BaseChatModel
from pulse.config.settings import settings
from typing import Optional
from pydantic import SecretStr
import logging

logger = logging.getLogger(__name__)

_assistant_model: Optional[BaseChatModel] = None


def _create_model(model_name: str) -> BaseChatModel:
    """Instantiate a ChatOpenAI client for the configured endpoint."""
    logger.info(f"Creating assistant client: {model_name}")
    return ChatOpenAI(
        base_url=settings.openai_base_url,
        api_key=SecretStr(settings.openai_api_key or ""),
        model=model_name,
        temperature=settings.model_temperature,
        max_completion_tokens=settings.model_max_tokens,
        timeout=settings.llm_invoke_timeout,
    )


def get_assistant_model() -> BaseChatModel:
    """Return the shared triage assistant model, creating it on first use."""
    global _assistant_model

    if _assistant_model is None:
        _assistant_model = _create_model(settings.assistant_model)
        logger.info(
            f"Assistant client initialized (max_tokens={settings.model_max_tokens})"
        )
    return _assistant_model
