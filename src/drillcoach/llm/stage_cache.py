"""TTL cache for generated capability stages."""

from __future__ import annotations

import threading
import time
from typing import Callable, Protocol

from drillcoach.core.models import CapabilityStage

DEFAULT_TTL_SECONDS = 3600


class StageCache(Protocol):
    """Storage for generated stage lists keyed by `topic:level:days`."""

    def get(self, key: str) -> list[CapabilityStage] | None: ...

    def set(self, key: str, stages: list[CapabilityStage]) -> None: ...

    def clear(self) -> None: ...


class InMemoryTTLCache:
    """Process-local cache whose entries expire after `ttl_seconds`.

    Args:
        ttl_seconds: Lifetime of each entry
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, list[CapabilityStage]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> list[CapabilityStage] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, stages = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return list(stages)

    def set(self, key: str, stages: list[CapabilityStage]) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, list(stages))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)
