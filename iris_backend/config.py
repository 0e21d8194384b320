"""Environment-derived configuration (read once at import; .env honoured)."""
from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

PACKAGE_DIR = Path(__file__).resolve().parent


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    return float(value)


# ----------------------- Relay service -------------------------
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
HOST: str = os.getenv("HOST", "127.0.0.1")
PORT: int = int(os.getenv("PORT", "5173"))
STATIC_ROOT: Path = Path(os.getenv("IRIS_STATIC_ROOT", str(PACKAGE_DIR.parent / "web"))).expanduser()
OPENAI_UPSTREAM: str = os.getenv("IRIS_OPENAI_UPSTREAM", "https://api.openai.com")
GEMINI_UPSTREAM: str = os.getenv("IRIS_GEMINI_UPSTREAM", "https://generativelanguage.googleapis.com")
# Unset = no local timeout; the upstream decides
UPSTREAM_TIMEOUT: Optional[float] = _optional_float(os.getenv("UPSTREAM_TIMEOUT"))

# ----------------------- Pipeline defaults -------------------------
DEFAULT_MODELS = {"openai": "gpt-4o", "gemini": "gemini-2.0-flash"}
DEFAULT_PROVIDER: str = os.getenv("MODEL_PROVIDER", "openai").strip().lower()
DEFAULT_TRANSPORT: str = os.getenv("IRIS_TRANSPORT", "local").strip().lower()
RELAY_URL: str = os.getenv("IRIS_RELAY_URL", f"http://localhost:{PORT}")
# 1 = strictly sequential: R stage 1, R x5, L stage 1, L x5, synthesis
MAX_CONCURRENCY: int = max(1, int(os.getenv("IRIS_MAX_CONCURRENCY", "1")))
# 0 = send uploads as-is
MAX_IMAGE_PX: int = int(os.getenv("IRIS_MAX_IMAGE_PX", "0"))
SETTINGS_PATH: Path = Path(os.getenv("IRIS_SETTINGS_PATH", "~/.iris_pipeline_settings.json")).expanduser()
REPORT_FILENAME = "iris_report.json"
RUN_LOG_FILENAME = "iris_run.log"


@dataclass(frozen=True)
class RelaySettings:
    openai_api_key: str = ""
    gemini_api_key: str = ""
    static_root: Path = STATIC_ROOT
    openai_upstream: str = OPENAI_UPSTREAM
    gemini_upstream: str = GEMINI_UPSTREAM
    upstream_timeout: Optional[float] = UPSTREAM_TIMEOUT
    default_gemini_model: str = DEFAULT_MODELS["gemini"]


def relay_settings() -> RelaySettings:
    return RelaySettings(
        openai_api_key=OPENAI_API_KEY,
        gemini_api_key=GEMINI_API_KEY,
        static_root=STATIC_ROOT,
    )
