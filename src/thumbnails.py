#!/usr/bin/env python3

"""
thumbnails.py - Screenshot thumbnails stored alongside each save entry
"""

import io

import numpy as np
from PIL import Image

from config import THUMBNAIL_MAX_SIZE


def make_thumbnail(video, max_size=THUMBNAIL_MAX_SIZE):
    """
    Encode a video buffer as a PNG thumbnail.

    Args:
        video: numpy uint8 array shaped (height, width, 3), or None
        max_size: (width, height) bound; aspect ratio is preserved

    Returns:
        bytes: PNG data, or b"" when there is no frame to encode
    """
    if video is None:
        return b""
    frame = np.ascontiguousarray(video, dtype=np.uint8)
    if frame.ndim != 3 or frame.shape[2] not in (3, 4) or frame.size == 0:
        print(f"[Thumbnail] Unsupported frame shape {frame.shape}")
        return b""

    image = Image.fromarray(frame[:, :, :3], "RGB")
    # Nearest keeps pixel-art edges crisp at small sizes
    image.thumbnail(max_size, Image.NEAREST)

    out = io.BytesIO()
    image.save(out, format="PNG", optimize=True)
    return out.getvalue()


def thumbnail_to_array(data):
    """Decode PNG thumbnail bytes back to a (h, w, 3) uint8 array (None if empty)."""
    if not data:
        return None
    with Image.open(io.BytesIO(data)) as image:
        return np.asarray(image.convert("RGB"), dtype=np.uint8)
