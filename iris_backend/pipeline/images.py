from __future__ import annotations
import io
from pathlib import Path
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError

from iris_backend.errors import InputError
from iris_backend.schema import ImageInput

_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}


def _downscale_jpeg(data: bytes, max_px: int, quality: int = 90) -> bytes:
    img = Image.open(io.BytesIO(data)).convert("RGB")
    img.thumbnail((max_px, max_px))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def image_from_bytes(data: bytes, name: str = "upload", max_px: int = 0) -> ImageInput:
    """Wrap uploaded bytes; the media type comes from the decoded format.

    Pixels are not interpreted here. With ``max_px`` > 0 an oversized image is
    re-encoded as a smaller JPEG to keep request payloads reasonable.
    """
    if not data:
        raise InputError(f"Image {name} is empty.")
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = (img.format or "").upper()
            size = img.size
    except (UnidentifiedImageError, OSError) as e:
        raise InputError(f"{name} is not a readable image: {e}") from e
    if max_px and max(size) > max_px:
        return ImageInput(name=name, data=_downscale_jpeg(data, max_px), mime_type="image/jpeg")
    return ImageInput(name=name, data=data, mime_type=_FORMAT_MIME.get(fmt, "image/jpeg"))


def load_image(path: Optional[Union[str, Path]], max_px: int = 0) -> Optional[ImageInput]:
    """Read one side's upload from disk; None when no path was given."""
    if not path:
        return None
    p = Path(path)
    if not p.is_file():
        raise InputError(f"Image not found: {p}")
    return image_from_bytes(p.read_bytes(), name=p.name, max_px=max_px)
