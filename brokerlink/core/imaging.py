from __future__ import annotations

import io
import logging
from typing import Any

import numpy as np
from PIL import Image

from brokerlink.core.errors import EncodingError

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_FORMAT = "JPEG"

# Formats that cannot store an alpha channel.
_NO_ALPHA = {"JPEG", "BMP"}


def encode_frame(frame: Any, fmt: str = DEFAULT_IMAGE_FORMAT) -> bytes:
    """
    Encode a pixel buffer into a compressed image.

    Args:
        frame: uint8 array shaped (H, W), (H, W, 1), (H, W, 3) or (H, W, 4).
        fmt: Pillow format name, e.g. "JPEG" or "PNG".

    Returns:
        The encoded image bytes.

    Raises:
        EncodingError: If the frame is empty, malformed or cannot be encoded.
    """
    if frame is None:
        raise EncodingError("No frame to encode")

    try:
        pixels = np.asarray(frame)
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"Frame is not a pixel buffer: {exc}") from exc

    if pixels.size == 0:
        raise EncodingError("Cannot encode an empty frame")
    if pixels.dtype != np.uint8:
        raise EncodingError(f"Unsupported pixel type {pixels.dtype}, expected uint8")

    if pixels.ndim == 3 and pixels.shape[2] == 1:
        pixels = pixels[:, :, 0]
    if pixels.ndim not in (2, 3) or (pixels.ndim == 3 and pixels.shape[2] not in (3, 4)):
        raise EncodingError(f"Unsupported frame shape {pixels.shape}")

    fmt = fmt.upper()
    try:
        image = Image.fromarray(pixels)
        if fmt in _NO_ALPHA and image.mode == "RGBA":
            image = image.convert("RGB")
        buffer = io.BytesIO()
        image.save(buffer, format=fmt)
    except (KeyError, OSError, TypeError, ValueError) as exc:
        raise EncodingError(f"Failed to encode frame as {fmt}: {exc}") from exc

    data = buffer.getvalue()
    logger.debug("Encoded %s frame %s -> %d bytes", fmt, pixels.shape, len(data))
    return data
