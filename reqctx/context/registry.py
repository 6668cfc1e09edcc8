from __future__ import annotations

import threading
from typing import Callable

from loguru import logger

from reqctx.context.handle import Context
from reqctx.core.settings import settings


class ContextRegistry:
    """Identity key -> Context table shared by every request in the process.

    Entries are never evicted automatically. In session mode every distinct
    session id / authorization value adds one entry for the life of the
    process; callers own eviction via ``discard`` (or run in request mode).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._contexts: dict[str, Context] = {}
        self._warned_at = 0

    def get(self, identity: str) -> Context | None:
        with self._lock:
            return self._contexts.get(identity)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._contexts

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)

    def identities(self) -> list[str]:
        with self._lock:
            return list(self._contexts)

    def get_or_create(self, identity: str, factory: Callable[[str], Context]) -> tuple[Context, bool]:
        """Return ``(context, created)``; exactly one Context is ever stored per identity."""
        with self._lock:
            ctx = self._contexts.get(identity)
            if ctx is not None:
                return ctx, False
            ctx = factory(identity)
            self._contexts[identity] = ctx
            size = len(self._contexts)
            warn_size = int(getattr(settings, "REGISTRY_WARN_SIZE", 0) or 0)
            warn = warn_size > 0 and size >= self._warned_at + warn_size
            if warn:
                self._warned_at = size - size % warn_size

        if warn:
            logger.warning(
                "context registry holds {n} identities; nothing is evicted automatically, discard stale ones",
                n=size,
            )
        return ctx, True

    def discard(self, identity: str) -> Context | None:
        """Remove ``identity`` and close its Context. Returns it, or None if unknown."""
        with self._lock:
            ctx = self._contexts.pop(identity, None)
        if ctx is not None:
            ctx.close()
        return ctx

    def reset(self) -> None:
        with self._lock:
            contexts = list(self._contexts.values())
            self._contexts.clear()
            self._warned_at = 0
        for ctx in contexts:
            ctx.close()


REGISTRY = ContextRegistry()


def reset_registry() -> None:
    """Tear down the process-wide registry (test isolation, app shutdown)."""
    REGISTRY.reset()
