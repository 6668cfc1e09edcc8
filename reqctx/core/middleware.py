from __future__ import annotations

import asyncio
from typing import Mapping

from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

from reqctx.context.handle import Context
from reqctx.context.identity import check_mode, resolve_context, resolve_identity
from reqctx.context.registry import REGISTRY, ContextRegistry
from reqctx.context.scope import bind
from reqctx.context.values import Seconds, Value
from reqctx.core.settings import settings

_IDENTITY_SCOPE_KEY = "reqctx.identity"


class ContextMiddleware(BaseHTTPMiddleware):
    """Binds a Context to every request.

    Before handling: resolve the identity, look up or create its Context,
    expose it as ``request.state.context`` and bind it for the rest of the
    pipeline (so ``use_context()`` works anywhere below).

    In request mode the Context is closed and dropped from the registry once
    the response body has been sent, or as soon as the pipeline raises or the
    request is cancelled.

    Usage:
        app.add_middleware(ContextMiddleware, default_values={"theme": "light"}, expiry=3600)
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        default_values: Mapping[str, Value] | None = None,
        expiry: Seconds | None = None,
        mode: str | None = None,
        session_header: str | None = None,
        auth_header: str | None = None,
        default_session: str | None = None,
        registry: ContextRegistry | None = None,
    ) -> None:
        super().__init__(app)
        self.mode = check_mode(mode or settings.MODE)
        self.default_values = dict(default_values or {})
        self.expiry = expiry if expiry is not None else settings.EXPIRY_SECONDS
        self.session_header = session_header or settings.SESSION_HEADER
        self.auth_header = auth_header or settings.AUTH_HEADER
        self.default_session = default_session or settings.DEFAULT_SESSION
        self.registry = registry or REGISTRY

        # Fail at startup on bad defaults / expiry rather than on the first request.
        Context(default_values=self.default_values, expiry=self.expiry)

    def _new_context(self, identity: str) -> Context:
        return Context(default_values=self.default_values, expiry=self.expiry, identity=identity)

    def _finish(self, identity: str) -> None:
        if self.registry.discard(identity) is not None:
            logger.debug("context {identity} torn down", identity=identity)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self.mode != "request":
            await super().__call__(scope, receive, send)
            return
        try:
            await super().__call__(scope, receive, send)
        finally:
            # Response fully sent, handler raised, or the request was cancelled
            # (client disconnect, shutdown): the request-mode context goes away.
            identity = scope.get(_IDENTITY_SCOPE_KEY)
            if identity is not None:
                self._finish(identity)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        identity = resolve_identity(
            request.headers,
            self.mode,
            session_header=self.session_header,
            auth_header=self.auth_header,
            default_session=self.default_session,
        )
        ctx, created = resolve_context(identity, self._new_context, mode=self.mode, registry=self.registry)
        if created:
            logger.debug("context {identity} created ({mode} mode)", identity=identity, mode=self.mode)
        request.scope[_IDENTITY_SCOPE_KEY] = identity
        request.state.context = ctx
        # Expirations set from sync handlers (worker threads) are scheduled on this loop.
        ctx.attach_loop(asyncio.get_running_loop())

        with bind(ctx):
            return await call_next(request)
