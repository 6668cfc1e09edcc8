from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Literal, get_args, overload

from loguru import logger

from reqctx.context.errors import HookCallbackError, InvalidHookEvent

if TYPE_CHECKING:
    from reqctx.context.values import Value

HookEvent = Literal["beforeGet", "onSet", "afterSet", "onClear", "onError"]
HOOK_EVENTS: tuple[str, ...] = get_args(HookEvent)

# Per-event callback shapes.
BeforeGetHook = Callable[[str], Any]
SetHook = Callable[[str, "Value"], Any]
ClearHook = Callable[..., Any]  # called with no args (clear all) or with the key
ErrorHook = Callable[[BaseException], Any]


class HookRegistry:
    """Ordered, append-only callbacks per lifecycle event.

    Each callback runs in its own try/except. A failing callback is logged and
    reported to the onError callbacks; failures raised by onError callbacks are
    only logged so dispatch can never recurse.
    """

    def __init__(self) -> None:
        self._hooks: dict[str, list[Callable[..., Any]]] = {e: [] for e in HOOK_EVENTS}

    @overload
    def hook(self, event: Literal["beforeGet"], fn: BeforeGetHook) -> None: ...

    @overload
    def hook(self, event: Literal["onSet", "afterSet"], fn: SetHook) -> None: ...

    @overload
    def hook(self, event: Literal["onClear"], fn: ClearHook) -> None: ...

    @overload
    def hook(self, event: Literal["onError"], fn: ErrorHook) -> None: ...

    def hook(self, event: str, fn: Callable[..., Any]) -> None:
        if event not in self._hooks:
            raise InvalidHookEvent(event)
        if not callable(fn):
            raise TypeError(f"hook callback for {event} must be callable")
        self._hooks[event].append(fn)

    def callbacks(self, event: str) -> tuple[Callable[..., Any], ...]:
        if event not in self._hooks:
            raise InvalidHookEvent(event)
        return tuple(self._hooks[event])

    def dispatch(self, event: HookEvent, *args: Any) -> None:
        # Snapshot: callbacks registered mid-dispatch run from the next dispatch on.
        for fn in tuple(self._hooks[event]):
            try:
                fn(*args)
            except Exception as e:
                logger.opt(exception=e).error("Error in {event} hook", event=event)
                if event != "onError":
                    self.dispatch("onError", HookCallbackError(event, e))

    def report(self, error: BaseException) -> None:
        """Route an internal failure to the onError callbacks."""
        self.dispatch("onError", error)
