"""
Content type lookup by file extension.
"""
from pathlib import Path

DEFAULT_MIME_TYPE = "image/jpeg"

# Only formats the transformer writes back unchanged; HEIC and RAW
# sources come out as JPEG and fall through to the default.
CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}


def lookup_content_type(path: str) -> str:
    """Get content type from file extension, defaulting to JPEG."""
    ext = Path(path).suffix.lower()
    return CONTENT_TYPES.get(ext, DEFAULT_MIME_TYPE)
