from __future__ import annotations
from typing import Any, List, Optional

import httpx
import openai
from openai import OpenAI

from iris_backend.errors import ConfigurationError, TransportError
from iris_backend.llm_clients.base import BaseVisionClient, LogFn, image_data_url, post_json
from iris_backend.schema import ImageInput

RELAY_PATH = "/api/openai"


def build_openai_payload(
    model: str,
    instruction: str,
    task: str,
    image: Optional[ImageInput] = None,
) -> dict:
    """Chat-completions body; the image rides as a dedicated image_url part."""
    if image is not None:
        user_content: Any = [
            {"type": "text", "text": task},
            {"type": "image_url", "image_url": {"url": image_data_url(image)}},
        ]
    else:
        user_content = task
    return {
        "model": model,
        "response_format": {"type": "json_object"},
        "temperature": 0,
        "messages": [
            {"role": "system", "content": instruction},
            {"role": "user", "content": user_content},
        ],
    }


def extract_openai_text(resp: Any) -> str:
    """choices[0].message.content, or "" when the shape is not there."""
    try:
        content = resp["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    if isinstance(content, list):
        parts: List[str] = [p.get("text", "") for p in content if isinstance(p, dict)]
        content = "".join(parts)
    return (content or "").strip()


class OpenAIRelayClient(BaseVisionClient):
    """OpenAI through the local relay, which holds the API key."""

    provider = "openai"
    transport = "local"

    def __init__(
        self,
        model_id: str,
        relay_url: str,
        http_client: Optional[httpx.Client] = None,
        log: Optional[LogFn] = None,
    ):
        super().__init__(model_id, log=log)
        self.url = relay_url.rstrip("/") + RELAY_PATH
        self._owns_http = http_client is None
        self.http = http_client or httpx.Client(timeout=None)

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    def complete(self, instruction: str, task: str, image: Optional[ImageInput] = None) -> str:
        payload = build_openai_payload(self.model_id, instruction, task, image)
        resp = post_json(self.http, self.url, payload, source="OpenAI proxy")
        return extract_openai_text(resp)


class OpenAIDirectClient(BaseVisionClient):
    """OpenAI called straight from this process with a caller-supplied key."""

    provider = "openai"
    transport = "direct"

    def __init__(
        self,
        model_id: str,
        api_key: Optional[str],
        client: Optional[Any] = None,
        log: Optional[LogFn] = None,
    ):
        if not (api_key or "").strip():
            raise ConfigurationError("Direct mode: missing OpenAI API key.")
        super().__init__(model_id, log=log)
        # SDK retries off: the pipeline is fail-fast
        self._owns_client = client is None
        self.client = client or OpenAI(api_key=api_key, max_retries=0)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def complete(self, instruction: str, task: str, image: Optional[ImageInput] = None) -> str:
        payload = build_openai_payload(self.model_id, instruction, task, image)
        try:
            resp = self.client.chat.completions.create(**payload)
        except openai.APIStatusError as e:
            raise TransportError(e.status_code, e.response.text, source="OpenAI") from e
        except openai.APIConnectionError as e:
            raise TransportError(None, str(e), source="OpenAI") from e
        if not resp.choices:
            return ""
        return (resp.choices[0].message.content or "").strip()
