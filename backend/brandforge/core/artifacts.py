"""
Artifact Helpers

Image decoding/validation for caller-supplied reference images, and an
in-memory store that hands out short references for generated artifacts so
progress events and API responses never carry inline binary payloads.
"""

import base64
import binascii
import hashlib
import io
import logging
import threading
from collections import OrderedDict
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError


logger = logging.getLogger(__name__)

MIME_BY_FORMAT = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


def strip_data_url(image_base64: str) -> str:
    """Remove a `data:image/...;base64,` prefix if present."""
    if image_base64.startswith("data:") and "," in image_base64:
        return image_base64.split(",", 1)[1]
    return image_base64


def decode_base64_image(image_base64: str) -> Tuple[bytes, str]:
    """
    Decode and verify a base64 image.

    Returns:
        (raw bytes, mime type)

    Raises:
        ValueError: the payload is not valid base64 or not a readable image
    """
    try:
        data = base64.b64decode(strip_data_url(image_base64), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 image data: {e}") from e

    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
            fmt = image.format or "PNG"
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Unreadable image: {e}") from e

    return data, MIME_BY_FORMAT.get(fmt, "image/png")


def sniff_mime_type(data: bytes) -> str:
    """Best-effort mime type of generated image bytes."""
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


def artifact_id(data: bytes) -> str:
    """Stable content-derived reference for an artifact."""
    return "artifact_" + hashlib.sha256(data).hexdigest()[:16]


class ArtifactStore:
    """
    Bounded in-memory artifact store (least recently stored evicted first).

    Thread-safe: the API serves downloads while runs are storing.
    """

    def __init__(self, max_items: int = 64):
        self.max_items = max_items
        self._items: "OrderedDict[str, bytes]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, data: bytes) -> str:
        ref = artifact_id(data)
        with self._lock:
            self._items[ref] = data
            self._items.move_to_end(ref)
            while len(self._items) > self.max_items:
                evicted, _ = self._items.popitem(last=False)
                logger.debug("[Artifacts] Evicted %s", evicted)
        return ref

    def get(self, ref: Optional[str]) -> Optional[bytes]:
        if not ref:
            return None
        with self._lock:
            return self._items.get(ref)

    def __contains__(self, ref: str) -> bool:
        with self._lock:
            return ref in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
