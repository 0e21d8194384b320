from __future__ import annotations
import base64
from typing import Any, Callable, Optional, Protocol

import httpx

from iris_backend.errors import ConfigurationError, EmptyResponseError, TransportError
from iris_backend.schema import ImageInput
from iris_backend.utils.json_parser import parse_model_json

LogFn = Callable[..., None]


class LLMVisionClient(Protocol):
    """Provider-agnostic interface: instruction + task (+ image) -> parsed JSON."""

    provider: str
    transport: str

    def invoke(self, instruction: str, task: str, image: Optional[ImageInput] = None) -> dict:
        ...

    def close(self) -> None:
        ...


def encode_image_b64(image: ImageInput) -> str:
    return base64.b64encode(image.data).decode()


def image_data_url(image: ImageInput) -> str:
    return f"data:{image.mime_type};base64,{encode_image_b64(image)}"


def post_json(client: httpx.Client, url: str, payload: dict, source: str) -> Any:
    """POST a JSON body; raise TransportError unless the reply is 2xx JSON."""
    try:
        r = client.post(url, json=payload)
    except httpx.HTTPError as e:
        raise TransportError(None, str(e), source=source) from e
    if not r.is_success:
        raise TransportError(r.status_code, r.text, source=source)
    try:
        return r.json()
    except ValueError as e:
        raise TransportError(r.status_code, f"non-JSON response: {r.text[:200]}", source=source) from e


class BaseVisionClient:
    """Shared invoke(): complete() -> non-empty text -> two-tier JSON parse.

    Subclasses build the provider envelope and unwrap the reply text.
    No retries: a failed call aborts the run.
    """

    provider = ""
    transport = ""

    def __init__(self, model_id: str, log: Optional[LogFn] = None):
        self.model_id = (model_id or "").strip()
        if not self.model_id:
            raise ConfigurationError("Missing model id.")
        self.log = log

    def complete(self, instruction: str, task: str, image: Optional[ImageInput] = None) -> str:
        raise NotImplementedError

    def invoke(self, instruction: str, task: str, image: Optional[ImageInput] = None) -> dict:
        text = self.complete(instruction, task, image)
        if not (text or "").strip():
            raise EmptyResponseError(f"Empty response from {self.provider} ({self.transport}).")
        return parse_model_json(text, log=self.log)

    def close(self) -> None:
        """Release connections this client opened itself."""
