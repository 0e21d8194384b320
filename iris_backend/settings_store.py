"""Persisted run settings: one JSON blob under a fixed storage key.

Credentials are written only when the user opted in with ``remember_credentials``.
"""
from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

from iris_backend.config import SETTINGS_PATH
from iris_backend.schema import ProviderConfig

STORAGE_KEY = "iris_pipeline_settings_v1"

_PLAIN_FIELDS = ("transport_mode", "provider", "model_id")
_SECRET_FIELDS = ("openai_api_key", "gemini_api_key")


def _read_store(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError:
        print(f"⚠ Ignoring unreadable settings file {path}")
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Return the saved blob (possibly empty); unknown keys are left out."""
    p = Path(path) if path else SETTINGS_PATH
    blob = _read_store(p).get(STORAGE_KEY) or {}
    if not isinstance(blob, dict):
        return {}
    keep = _PLAIN_FIELDS + _SECRET_FIELDS + ("remember_credentials",)
    return {k: v for k, v in blob.items() if k in keep and v not in (None, "")}


def save_settings(
    config: ProviderConfig,
    remember_credentials: bool = False,
    path: Optional[Union[str, Path]] = None,
) -> Path:
    p = Path(path) if path else SETTINGS_PATH
    blob: Dict[str, Any] = {k: getattr(config, k) for k in _PLAIN_FIELDS}
    blob["remember_credentials"] = bool(remember_credentials)
    if remember_credentials:
        for k in _SECRET_FIELDS:
            v = getattr(config, k)
            if v:
                blob[k] = v
    store = _read_store(p)
    store[STORAGE_KEY] = blob
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(store, indent=2), encoding="utf-8")
    return p
