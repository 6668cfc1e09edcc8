from __future__ import annotations

from typing import Callable, Literal, Mapping, get_args
from uuid import uuid4

from reqctx.context.errors import ContextConfigError
from reqctx.context.handle import Context
from reqctx.context.registry import REGISTRY, ContextRegistry

# "session": reuse one Context per session id / authorization value.
# "request": fresh Context per request, torn down when the response finishes.
IdentityMode = Literal["session", "request"]
IDENTITY_MODES: tuple[str, ...] = get_args(IdentityMode)

DEFAULT_SESSION_HEADER = "x-session-id"
DEFAULT_AUTH_HEADER = "authorization"
DEFAULT_SESSION = "default-session"

# Key under which the resolved identity is stored in the Context itself.
IDENTITY_KEYS: dict[str, str] = {"session": "sessionId", "request": "contextId"}


def check_mode(mode: str) -> IdentityMode:
    if mode not in IDENTITY_MODES:
        raise ContextConfigError(f"Invalid identity mode: {mode!r}. Must be one of {', '.join(IDENTITY_MODES)}")
    return mode  # type: ignore[return-value]


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; starlette Headers are not.
        lname = name.lower()
        value = next((v for k, v in headers.items() if str(k).lower() == lname), None)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def resolve_identity(
    headers: Mapping[str, str],
    mode: IdentityMode = "session",
    *,
    session_header: str = DEFAULT_SESSION_HEADER,
    auth_header: str = DEFAULT_AUTH_HEADER,
    default_session: str = DEFAULT_SESSION,
) -> str:
    """Identity key for an inbound request.

    Session mode: session header, then authorization header, then the fixed
    default session. Request mode: a new uuid4 every time.
    """
    if check_mode(mode) == "request":
        return str(uuid4())
    return _header(headers, session_header) or _header(headers, auth_header) or default_session


def resolve_context(
    identity: str,
    factory: Callable[[str], Context],
    *,
    mode: IdentityMode = "session",
    registry: ContextRegistry | None = None,
) -> tuple[Context, bool]:
    """Look up or create the Context for ``identity``; returns ``(context, created)``."""
    ctx, created = (registry or REGISTRY).get_or_create(identity, factory)
    ctx.set(IDENTITY_KEYS[check_mode(mode)], identity)
    return ctx, created
