from __future__ import annotations


class ContextError(Exception):
    """Base class for everything raised (or delivered to onError) by reqctx."""


class InvalidHookEvent(ContextError, ValueError):
    def __init__(self, event: object) -> None:
        super().__init__(f"unknown hook event: {event!r}")
        self.event = event


class HookCallbackError(ContextError):
    """A hook callback raised; delivered to onError, never to the caller."""

    def __init__(self, event: str, original: BaseException) -> None:
        super().__init__(f"error in {event} hook: {original!r}")
        self.event = event
        self.original = original


class InvalidValueError(ContextError, TypeError):
    def __init__(self, key: str, value: object) -> None:
        super().__init__(f"unsupported value type for {key!r}: {type(value).__name__}")
        self.key = key
        self.value = value


class ContextConfigError(ContextError, ValueError):
    pass
