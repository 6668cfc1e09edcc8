from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from reqctx.context.handle import Context
from reqctx.context.registry import REGISTRY, ContextRegistry

# The Context bound to the current request. Child asyncio tasks, asyncio.to_thread
# and starlette's run_in_threadpool copy contextvars, so nested work sees the same
# binding while concurrent requests keep their own.
_current: ContextVar[Context | None] = ContextVar("reqctx_current", default=None)


@contextmanager
def bind(ctx: Context) -> Iterator[Context]:
    """Make ``ctx`` the current context for the duration of the block."""
    token = _current.set(ctx)
    try:
        yield ctx
    finally:
        _current.reset(token)


def current_context() -> Context | None:
    return _current.get()


def use_context(identity: str | None = None, *, registry: ContextRegistry | None = None) -> Context | None:
    """Ambient accessor for the current Context.

    With ``identity`` and a known registry entry, returns that Context;
    otherwise the one bound to the current request, or None outside of one.
    """
    if identity is not None:
        ctx = (registry or REGISTRY).get(identity)
        if ctx is not None:
            return ctx
    return _current.get()
