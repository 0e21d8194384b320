from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Optional, Union

from iris_backend.errors import ConfigurationError

DEFAULT_COORD_MAP_PATH = Path(__file__).resolve().parent / "data" / "coord_map_v9.json"

# Size ceiling for the zone map inside the synthesis request
COORD_MAP_MAX_CHARS = 14000
TRUNCATION_MARKER = "..."


def load_coord_map(path: Optional[Union[str, Path]] = None) -> Any:
    """Load the anatomical zone map (bundled v9 map when no path is given)."""
    p = Path(path) if path else DEFAULT_COORD_MAP_PATH
    if not p.is_file():
        raise ConfigurationError(f"Coordinate map not found: {p}")
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except ValueError as e:
        raise ConfigurationError(f"Coordinate map {p} is not valid JSON: {e}") from e


def serialize_coord_map(coord: Any) -> str:
    # Compact and ASCII-only, so character count equals byte count
    return json.dumps(coord, separators=(",", ":"), ensure_ascii=True)


def compress_coord_map(coord: Any, max_chars: int = COORD_MAP_MAX_CHARS) -> str:
    """Serialize the map; if too large, cut to ``max_chars`` and mark the cut.

    Lossy but deterministic. Only the synthesis request uses this text.
    """
    s = coord if isinstance(coord, str) else serialize_coord_map(coord)
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + TRUNCATION_MARKER
