"""
imaging.py: Small Pillow helpers for image bytes moving through the app.
"""

from __future__ import annotations

import io

from PIL import Image, UnidentifiedImageError

JPEG_QUALITY = 80

_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


def sniff_mime(data: bytes, default: str = "image/jpeg") -> str:
    """Mime type of encoded image bytes, or default when Pillow can't tell."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return _FORMAT_MIME.get(img.format or "", default)
    except (UnidentifiedImageError, OSError):
        return default


def to_jpeg(data: bytes, quality: int = JPEG_QUALITY) -> bytes:
    """
    Re-encode image bytes as JPEG. JPEG input is returned untouched.

    Transparent images are flattened onto white, the same backdrop the
    background-removal edit produces.
    """
    with Image.open(io.BytesIO(data)) as img:
        if img.format == "JPEG":
            return data
        if img.mode in ("RGBA", "LA", "P"):
            rgba = img.convert("RGBA")
            flat = Image.new("RGB", rgba.size, (255, 255, 255))
            flat.paste(rgba, mask=rgba.split()[-1])
        else:
            flat = img.convert("RGB")
        out = io.BytesIO()
        flat.save(out, format="JPEG", quality=quality)
        return out.getvalue()
