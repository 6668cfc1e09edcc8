from __future__ import annotations

from fastapi import HTTPException, Request

from reqctx.context.handle import Context
from reqctx.context.scope import current_context


def get_request_context(request: Request) -> Context:
    """FastAPI dependency: the Context bound by ContextMiddleware."""
    ctx = getattr(request.state, "context", None) or current_context()
    if ctx is None:
        raise HTTPException(status_code=500, detail="ContextMiddleware is not installed")
    return ctx
