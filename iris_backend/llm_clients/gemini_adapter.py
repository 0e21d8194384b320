from __future__ import annotations
import json
from typing import Any, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from iris_backend.errors import ConfigurationError, TransportError
from iris_backend.llm_clients.base import BaseVisionClient, LogFn, encode_image_b64, post_json
from iris_backend.schema import ImageInput

RELAY_PATH = "/api/gemini"


def _prompt_text(instruction: str, task: str) -> str:
    # Gemini gets one text part: instruction, blank line, task
    return instruction + "\n\n" + task


def build_gemini_payload(
    model: str,
    instruction: str,
    task: str,
    image: Optional[ImageInput] = None,
) -> dict:
    """generateContent body; the image rides as an inline_data part.

    ``model`` stays in the body for the relay, which moves it into the URL.
    """
    parts: list = [{"text": _prompt_text(instruction, task)}]
    if image is not None:
        parts.append({"inline_data": {"mime_type": image.mime_type, "data": encode_image_b64(image)}})
    return {
        "model": model,
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": {"temperature": 0, "responseMimeType": "application/json"},
    }


def extract_gemini_text(resp: Any) -> str:
    """Join the text parts of the first candidate."""
    try:
        parts = resp["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return ""
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict)).strip()


class GeminiRelayClient(BaseVisionClient):
    """Gemini through the local relay, which holds the API key."""

    provider = "gemini"
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
        payload = build_gemini_payload(self.model_id, instruction, task, image)
        resp = post_json(self.http, self.url, payload, source="Gemini proxy")
        return extract_gemini_text(resp)


class GeminiDirectClient(BaseVisionClient):
    """Gemini called straight from this process with a caller-supplied key."""

    provider = "gemini"
    transport = "direct"

    def __init__(
        self,
        model_id: str,
        api_key: Optional[str],
        client: Optional[Any] = None,
        log: Optional[LogFn] = None,
    ):
        if not (api_key or "").strip():
            raise ConfigurationError("Direct mode: missing Gemini API key.")
        super().__init__(model_id, log=log)
        self.client = client or genai.Client(api_key=api_key)

    def complete(self, instruction: str, task: str, image: Optional[ImageInput] = None) -> str:
        parts = [types.Part.from_text(text=_prompt_text(instruction, task))]
        if image is not None:
            parts.append(types.Part.from_bytes(data=image.data, mime_type=image.mime_type))
        try:
            resp = self.client.models.generate_content(
                model=self.model_id,
                contents=[types.Content(role="user", parts=parts)],
                config=types.GenerateContentConfig(
                    temperature=0,
                    response_mime_type="application/json",
                ),
            )
        except genai_errors.APIError as e:
            details = getattr(e, "details", None)
            body = json.dumps(details, ensure_ascii=False) if details else str(e)
            raise TransportError(getattr(e, "code", None), body, source="Gemini") from e
        except httpx.HTTPError as e:
            # Connection and timeout failures leave the SDK as raw httpx errors
            raise TransportError(None, str(e), source="Gemini") from e
        return (getattr(resp, "text", None) or "").strip()
