"""Key pool - round-robin rotation and blocklist for one provider's API keys.

One pool per provider lives for the whole process and is shared by every
in-flight request.  The cursor and the blocked set are the only mutable
state and both are guarded by a lock.  Keys are blocked only in reaction to
a rate-limit signal and stay blocked until ``unblock``/``reset_all``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable

import structlog

from lazywrite.shared.observability.metrics import PROVIDER_KEYS_BLOCKED_TOTAL
from lazywrite.shared.providers.errors import PoolExhaustedError
from lazywrite.shared.providers.types import mask_credential

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class KeyPoolSnapshot:
    provider_id: str
    size: int
    blocked: int
    cursor: int


class KeyPool:
    """Round-robin credential pool with dynamic blocking."""

    def __init__(self, keys: Iterable[str], *, provider_id: str = "unknown") -> None:
        self.provider_id = provider_id
        ordered: list[str] = []
        for key in keys:
            key = (key or "").strip()
            if key and key not in ordered:
                ordered.append(key)
        self._keys: tuple[str, ...] = tuple(ordered)
        self._blocked: set[str] = set()
        self._cursor = 0
        self._lock = threading.Lock()

    @property
    def keys(self) -> tuple[str, ...]:
        return self._keys

    @property
    def size(self) -> int:
        return len(self._keys)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def blocked(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._blocked)

    @property
    def available(self) -> int:
        with self._lock:
            return len(self._keys) - len(self._blocked)

    @property
    def is_exhausted(self) -> bool:
        return self.available == 0

    def next(self) -> str:
        """Return the next unblocked key, scanning at most ``size`` slots.

        Raises:
            PoolExhaustedError: every key is blocked or the pool is empty.
        """
        with self._lock:
            count = len(self._keys)
            for step in range(1, count + 1):
                idx = (self._cursor + step) % count
                key = self._keys[idx]
                if key not in self._blocked:
                    self._cursor = idx
                    return key
        raise PoolExhaustedError(self.provider_id, pool_size=count)

    def block(self, key: str) -> None:
        """Mark a key as unusable. Idempotent; unknown keys are ignored."""
        with self._lock:
            if key not in self._keys or key in self._blocked:
                return
            self._blocked.add(key)
            remaining = len(self._keys) - len(self._blocked)
        PROVIDER_KEYS_BLOCKED_TOTAL.labels(provider=self.provider_id).inc()
        logger.warning(
            "api_key_blocked",
            provider=self.provider_id,
            key=mask_credential(key),
            remaining=remaining,
        )

    def unblock(self, key: str) -> bool:
        """Return a key to rotation. Returns True if it was blocked."""
        with self._lock:
            if key not in self._blocked:
                return False
            self._blocked.discard(key)
        logger.info("api_key_unblocked", provider=self.provider_id, key=mask_credential(key))
        return True

    def unblock_at(self, index: int) -> bool:
        """Unblock by position so operators never have to send the secret."""
        if not 0 <= index < len(self._keys):
            raise IndexError(f"{self.provider_id} has no key at index {index}")
        return self.unblock(self._keys[index])

    def reset_all(self) -> None:
        """Unblock every key (admin override). The cursor is left untouched."""
        with self._lock:
            cleared = len(self._blocked)
            self._blocked.clear()
        logger.info("key_pool_reset", provider=self.provider_id, cleared=cleared)

    def snapshot(self) -> KeyPoolSnapshot:
        with self._lock:
            return KeyPoolSnapshot(
                provider_id=self.provider_id,
                size=len(self._keys),
                blocked=len(self._blocked),
                cursor=self._cursor,
            )

    def __len__(self) -> int:
        return len(self._keys)
