from __future__ import annotations
from typing import Optional

import httpx

from iris_backend.errors import ConfigurationError
from iris_backend.llm_clients.base import LLMVisionClient, LogFn
from iris_backend.llm_clients.gemini_adapter import GeminiDirectClient, GeminiRelayClient
from iris_backend.llm_clients.openai_adapter import OpenAIDirectClient, OpenAIRelayClient
from iris_backend.schema import ImageInput, ProviderConfig


def create_vision_client(
    config: ProviderConfig,
    http_client: Optional[httpx.Client] = None,
    log: Optional[LogFn] = None,
) -> LLMVisionClient:
    """Pick one of the four transports by (provider, transport mode)."""
    if not config.model_id:
        raise ConfigurationError("Missing model id.")
    if config.transport_mode == "direct":
        if config.provider == "gemini":
            return GeminiDirectClient(config.model_id, config.gemini_api_key, log=log)
        return OpenAIDirectClient(config.model_id, config.openai_api_key, log=log)
    if config.provider == "gemini":
        return GeminiRelayClient(config.model_id, config.relay_url, http_client=http_client, log=log)
    return OpenAIRelayClient(config.model_id, config.relay_url, http_client=http_client, log=log)


def invoke(
    config: ProviderConfig,
    instruction: str,
    task: str,
    image: Optional[ImageInput] = None,
    http_client: Optional[httpx.Client] = None,
    log: Optional[LogFn] = None,
) -> dict:
    """One-shot gateway call: build the transport for ``config`` and invoke it."""
    return create_vision_client(config, http_client=http_client, log=log).invoke(instruction, task, image)
