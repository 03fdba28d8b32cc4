"""
Style-profile cache keyed by brand id.

A saved profile lets a later run skip style extraction.
"""

import logging
import threading
from typing import Dict, Optional, Protocol

from brandforge.models.schemas import StyleProfile


logger = logging.getLogger(__name__)


class StyleProfileCache(Protocol):
    def get(self, key: str) -> Optional[StyleProfile]:
        ...

    def put(self, key: str, profile: StyleProfile) -> None:
        ...


class InMemoryProfileCache:
    """Process-local cache. Default profiles are never stored."""

    def __init__(self):
        self._profiles: Dict[str, StyleProfile] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[StyleProfile]:
        with self._lock:
            return self._profiles.get(key)

    def put(self, key: str, profile: StyleProfile) -> None:
        if profile.is_default:
            logger.info("[ProfileCache] Not caching default profile for %s", key)
            return
        with self._lock:
            self._profiles[key] = profile

    def __len__(self) -> int:
        return len(self._profiles)
