"""Ollama LLM client configuration."""

from typing import Optional

from langchain_ollama import OllamaLLM

from freight_intel.config.settings import Settings, get_settings


def create_json_llm_client(settings: Optional[Settings] = None) -> OllamaLLM:
    """Create an Ollama client for JSON-producing stage prompts.

    Args:
        settings: Optional custom settings. Uses cached settings if not provided.

    Returns:
        Configured OllamaLLM instance.
    """
    settings = settings or get_settings()

    return OllamaLLM(
        model=settings.llm_model_name,
        base_url=settings.llm_ollama_base_url,
        temperature=settings.llm_temperature,
        num_ctx=settings.llm_num_ctx,
        num_predict=settings.llm_num_predict,
        # format="json" is not set: some models truncate under it, so JSON
        # recovery happens in json_parsing instead.
    )
