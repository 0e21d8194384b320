"""Local relay service: same-origin proxy that keeps provider keys server-side.

POST /api/openai  -> OpenAI chat completions (Bearer key injected)
POST /api/gemini  -> Gemini generateContent (model moved from body into path, key injected)
GET  /<path>      -> static UI files from the configured root
"""
from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, PlainTextResponse, Response

from iris_backend import config
from iris_backend.config import RelaySettings, relay_settings

MIME_MAP = {
    ".html": "text/html; charset=utf-8",
    ".js": "text/javascript; charset=utf-8",
    ".css": "text/css; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
}


class BadRequest(Exception):
    pass


def resolve_static_path(root: Path, url_path: str) -> Path:
    """Map a request path onto a file under ``root``.

    Raises PermissionError when the normalized path leaves the root or names a
    directory, FileNotFoundError when nothing is there.
    """
    rel = (url_path or "").split("?", 1)[0].lstrip("/")
    if not rel:
        rel = "index.html"
    base = root.resolve()
    full = (base / rel).resolve()
    if full != base and base not in full.parents:
        raise PermissionError(url_path)
    if full.is_dir():
        raise PermissionError(url_path)
    if not full.is_file():
        raise FileNotFoundError(url_path)
    return full


async def _read_json_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    try:
        body = json.loads(raw)
    except ValueError as e:
        raise BadRequest("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise BadRequest("Invalid JSON body")
    return body


def create_app(
    settings: Optional[RelaySettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the relay app; ``transport`` replaces the network (tests)."""
    settings = settings or relay_settings()
    # No docs routes: every GET path belongs to the static root
    app = FastAPI(title="Iris Relay Service", docs_url=None, redoc_url=None, openapi_url=None)

    async def forward(url: str, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None,
                      params: Optional[Dict[str, str]] = None) -> Response:
        async with httpx.AsyncClient(timeout=settings.upstream_timeout, transport=transport) as client:
            try:
                r = await client.post(url, json=body, headers=headers, params=params)
            except httpx.HTTPError as e:
                return PlainTextResponse(f"Upstream request failed: {e}", status_code=502)
        if not r.is_success:
            return PlainTextResponse(f"Upstream HTTP {r.status_code}: {r.text}", status_code=r.status_code)
        try:
            r.json()
        except ValueError:
            return PlainTextResponse("Upstream non-JSON response", status_code=502)
        # Pass the upstream bytes through untouched
        return Response(content=r.content, status_code=200, media_type="application/json")

    @app.post("/api/openai")
    async def relay_openai(request: Request):
        if not settings.openai_api_key:
            return PlainTextResponse("Missing OPENAI_API_KEY in .env", status_code=500)
        try:
            body = await _read_json_body(request)
        except BadRequest as e:
            return PlainTextResponse(str(e), status_code=400)
        return await forward(
            settings.openai_upstream.rstrip("/") + "/v1/chat/completions",
            body,
            headers={"Authorization": f"Bearer {settings.openai_api_key}"},
        )

    @app.post("/api/gemini")
    async def relay_gemini(request: Request):
        if not settings.gemini_api_key:
            return PlainTextResponse("Missing GEMINI_API_KEY in .env", status_code=500)
        try:
            body = await _read_json_body(request)
        except BadRequest as e:
            return PlainTextResponse(str(e), status_code=400)
        # Gemini wants the model in the URL, not the body
        model = body.pop("model", None) or settings.default_gemini_model
        url = (
            settings.gemini_upstream.rstrip("/")
            + f"/v1beta/models/{quote(str(model), safe='')}:generateContent"
        )
        return await forward(url, body, params={"key": settings.gemini_api_key})

    @app.get("/{full_path:path}")
    async def serve_static(full_path: str):
        try:
            path = resolve_static_path(Path(settings.static_root), full_path)
        except PermissionError:
            return PlainTextResponse("Forbidden", status_code=403)
        except FileNotFoundError:
            return PlainTextResponse("Not Found", status_code=404)
        return FileResponse(path, media_type=MIME_MAP.get(path.suffix.lower(), "application/octet-stream"))

    return app


app = create_app()


def run() -> None:
    print(f"Iris relay running on http://localhost:{config.PORT}")
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
