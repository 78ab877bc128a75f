"""
Cache key construction for thumbnails.
"""
from __future__ import annotations

from typing import Optional

KEY_PREFIX = "thumbnail"
AUTO_HEIGHT = "auto"


def build_cache_key(source_id: str, width: int, height: Optional[int] = None) -> str:
    """
    Build the store key for a thumbnail.

    Format: thumbnail:{source_id}:w{width}:h{height|auto}

    source_id is used verbatim (no normalisation or validation).
    """
    h = AUTO_HEIGHT if height is None else height
    return f"{KEY_PREFIX}:{source_id}:w{width}:h{h}"
