from __future__ import annotations

import asyncio
from typing import Any, Callable, Mapping

from reqctx.context.hooks import HookEvent, HookRegistry
from reqctx.context.values import UNSET, Seconds, Value, ValueStore


class Context:
    """Request/session-scoped key-value store with lifecycle hooks.

    The only object application code should hold. It delegates storage to a
    ValueStore and events to a HookRegistry.

    Example:
        ctx = Context(default_values={"theme": "light"}, expiry=3600)
        ctx.hook("afterSet", lambda key, value: print(key, value))
        ctx.set("theme", "dark")
        ctx.set("token", "abc123", ttl=1800)
        ctx.get("theme")      # "dark"
        ctx.clear("theme")
        ctx.get("theme")      # "light"
    """

    def __init__(
        self,
        *,
        default_values: Mapping[str, Value] | None = None,
        expiry: Seconds | None = None,
        identity: str | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.identity = identity
        self._hooks = HookRegistry()
        self._store = ValueStore(self._hooks, default_values=default_values, expiry=expiry, clock=clock)

    def __repr__(self) -> str:
        return f"Context(identity={self.identity!r})"

    @property
    def expiry(self) -> float | None:
        return self._store.expiry

    def set(self, key: str, value: Value = UNSET, ttl: Seconds | None = None) -> None:
        self._store.set(key, value, ttl)

    def get(self, key: str, default: Any = None) -> Any:
        return self._store.get(key, default)

    def clear(self, key: str | None = None) -> None:
        self._store.clear(key)

    def hook(self, event: HookEvent, fn: Callable[..., Any]) -> None:
        self._hooks.hook(event, fn)

    def has(self, key: str) -> bool:
        return self._store.has(key)

    def keys(self) -> list[str]:
        return self._store.keys()

    def snapshot(self) -> dict[str, Value]:
        return self._store.snapshot()

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._store.attach_loop(loop)

    def close(self) -> None:
        """Drop all live entries and pending expirations."""
        self._store.clear()
