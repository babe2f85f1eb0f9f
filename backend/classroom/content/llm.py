"""Chat model clients for lesson content.

Every client talks to the OpenAI-compatible endpoint in ``LLM_BASE_URL``;
callers only choose the output budget and, for JSON answers, the schema.
"""

from typing import Optional

from langchain_core.runnables import Runnable
from langchain_openai import ChatOpenAI

from ..core.config import get_settings


def _api_key_for(base_url: str, api_key: str) -> str:
    # Local servers (LM Studio, vLLM) accept any non-empty key
    if api_key:
        return api_key
    host = (base_url or "").lower()
    if "localhost" in host or "127.0.0.1" in host:
        return "local"
    return ""


def get_llm(
    temperature: Optional[float] = None,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
) -> ChatOpenAI:
    """
    Build a chat client from the LLM settings.

    Args:
        temperature: Sampling temperature, defaults to LLM_TEMPERATURE
        model: Model name, defaults to LLM_MODEL
        max_tokens: Completion budget, defaults to LLM_MAX_TOKENS

    Example:
        >>> guide = await get_llm(max_tokens=1500).ainvoke("Explain slope-intercept form.")
    """
    settings = get_settings()
    return ChatOpenAI(
        base_url=settings.LLM_BASE_URL,
        api_key=_api_key_for(settings.LLM_BASE_URL, settings.LLM_API_KEY),
        model=model or settings.LLM_MODEL,
        temperature=settings.LLM_TEMPERATURE if temperature is None else temperature,
        max_tokens=max_tokens or settings.LLM_MAX_TOKENS,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        max_retries=settings.LLM_MAX_RETRIES,
    )


def get_llm_for_structured_output(
    schema: type,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> Runnable:
    """A client whose replies are parsed into ``schema`` instances."""
    return get_llm(temperature=temperature, max_tokens=max_tokens).with_structured_output(schema)
