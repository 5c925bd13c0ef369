"""Utility functions for LLM invocations with timeout handling."""

import asyncio
import logging
from typing import List, Optional
from langchain_core.messages import BaseMessage
from langchain_core.language_models.chat_models import BaseChatModel
from pulse.config.settings import settings
from pulse.errors import AssistantUnavailableError

logger = logging.getLogger(__name__)


def _content_to_text(content) -> str:
    """Flatten LangChain message content (str or content blocks) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


async def invoke_llm_with_timeout(
    llm: BaseChatModel,
    messages: List[BaseMessage],
    timeout: Optional[float] = None,
) -> str:
    """
    Invoke an LLM with timeout protection and return the reply text.

    Args:
        llm: The language model to invoke
        messages: List of messages to send to the LLM
        timeout: Timeout in seconds (defaults to settings.llm_invoke_timeout)

    Returns:
        Reply text

    Raises:
        AssistantUnavailableError: If the call times out or fails
    """
    if timeout is None:
        timeout = settings.llm_invoke_timeout

    logger.info(f"Invoking assistant with timeout: {timeout}s")

    try:
        response = await asyncio.wait_for(llm.ainvoke(messages), timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error(f"Assistant invocation timed out after {timeout}s")
        raise AssistantUnavailableError(
            f"Assistant timed out after {timeout}s"
        ) from e
    except Exception as e:
        logger.error(f"Assistant invocation failed: {e}", exc_info=True)
        raise AssistantUnavailableError(f"Assistant call failed: {e}") from e

    logger.info("Assistant responded successfully")
    return _content_to_text(getattr(response, "content", response))
