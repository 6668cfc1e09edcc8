from __future__ import annotations

import asyncio
import copy
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Mapping, Union

from loguru import logger

from reqctx.context.errors import ContextConfigError, InvalidValueError
from reqctx.context.hooks import HookRegistry

Value = Union[
    str,
    int,
    float,
    bool,
    datetime,
    date,
    None,
    dict[str, "Value"],
    list["Value"],
    tuple["Value", ...],
]

Seconds = Union[int, float, timedelta]


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


# Marker for "no value given"; set(key, UNSET) is a no-op. None is a real value (null).
UNSET: Any = _Unset()

_SCALARS = (str, int, float, bool, datetime, date)


def is_value(value: object) -> bool:
    """True when ``value`` belongs to the storable union (recursively)."""
    if value is None or isinstance(value, _SCALARS):
        return True
    if isinstance(value, dict):
        return all(isinstance(k, str) and is_value(v) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return all(is_value(v) for v in value)
    return False


def to_seconds(value: Seconds | None, *, name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, timedelta):
        value = value.total_seconds()
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number of seconds or a timedelta, got {value!r}")
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {value!r}")
    return float(value)


@dataclass(frozen=True)
class Entry:
    value: Value
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class ValueStore:
    """Key -> Entry mapping with read-only defaults and optional expiry.

    Expiry is enforced twice: a cancellable ``loop.call_later`` removal (armed
    on the running loop, or on the attached loop for writes from worker
    threads), and a deadline check on every read for writes made where no loop
    is reachable at all.
    A new ``set`` on a key restarts its TTL.

    ``set``/``get``/``clear`` never raise; failures are logged and reported to
    the onError hooks.
    """

    def __init__(
        self,
        hooks: HookRegistry,
        *,
        default_values: Mapping[str, Value] | None = None,
        expiry: Seconds | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        defaults = dict(default_values or {})
        for k, v in defaults.items():
            if not isinstance(k, str):
                raise ContextConfigError(f"default value keys must be strings, got {k!r}")
            if not is_value(v):
                raise ContextConfigError(f"unsupported default value for {k!r}: {type(v).__name__}")
        try:
            self._expiry = to_seconds(expiry, name="expiry")
        except ValueError as e:
            raise ContextConfigError(str(e)) from e

        self._hooks = hooks
        self._defaults: dict[str, Value] = copy.deepcopy(defaults)
        self._clock = clock or time.monotonic
        self._storage: dict[str, Entry] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._lock = threading.RLock()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def expiry(self) -> float | None:
        return self._expiry

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Loop that runs expirations for writes made from threads without one."""
        self._loop = loop

    @property
    def default_values(self) -> dict[str, Value]:
        return copy.deepcopy(self._defaults)

    def set(self, key: str, value: Value = UNSET, ttl: Seconds | None = None) -> None:
        if value is UNSET:
            return
        try:
            key = str(key)
            if not is_value(value):
                raise InvalidValueError(key, value)
            seconds = self._expiry if ttl is None else to_seconds(ttl, name="ttl")
            entry = Entry(
                value=copy.deepcopy(value),
                expires_at=None if seconds is None else self._clock() + seconds,
            )
            with self._lock:
                self._cancel_timer(key)
                self._storage[key] = entry
                if seconds is not None:
                    self._schedule_expiry(key, entry, seconds)
        except Exception as e:
            logger.opt(exception=e).warning("context set({key!r}) failed", key=key)
            self._hooks.report(e)
            return

        self._hooks.dispatch("afterSet", key, value)
        self._hooks.dispatch("onSet", key, value)

    def get(self, key: str, default: Any = None) -> Any:
        try:
            key = str(key)
            self._hooks.dispatch("beforeGet", key)
            with self._lock:
                entry = self._live(key)
            if entry is not None:
                return copy.deepcopy(entry.value)
            if key in self._defaults:
                return copy.deepcopy(self._defaults[key])
            return default
        except Exception as e:
            logger.opt(exception=e).warning("context get({key!r}) failed", key=key)
            self._hooks.report(e)
            return default

    def clear(self, key: str | None = None) -> None:
        try:
            if key is None or key == "*":
                with self._lock:
                    for k in list(self._timers):
                        self._cancel_timer(k)
                    self._storage.clear()
                self._hooks.dispatch("onClear")
                return

            key = str(key)
            with self._lock:
                if self._live(key) is None:
                    return
                self._cancel_timer(key)
                del self._storage[key]
            self._hooks.dispatch("onClear", key)
        except Exception as e:
            logger.opt(exception=e).warning("context clear({key!r}) failed", key=key)
            self._hooks.report(e)

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live(str(key)) is not None

    def keys(self) -> list[str]:
        self.purge_expired()
        with self._lock:
            return list(self._storage)

    def snapshot(self) -> dict[str, Value]:
        """Defaults overlaid with live values, as an independent copy."""
        self.purge_expired()
        with self._lock:
            merged = dict(self._defaults)
            merged.update({k: e.value for k, e in self._storage.items()})
            return copy.deepcopy(merged)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            dead = [k for k, e in self._storage.items() if e.expired(now)]
            for k in dead:
                self._cancel_timer(k)
                del self._storage[k]
        return len(dead)

    def __len__(self) -> int:
        return len(self.keys())

    # _live, _cancel_timer and _schedule_expiry expect self._lock to be held.

    def _live(self, key: str) -> Entry | None:
        entry = self._storage.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            self._cancel_timer(key)
            del self._storage[key]
            logger.debug("context key {key!r} expired on read", key=key)
            return None
        return entry

    def _cancel_timer(self, key: str) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _schedule_expiry(self, key: str, entry: Entry, seconds: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._timers[key] = loop.call_later(seconds, self._expire, key, entry)
            return

        # Worker thread (sync handler): arm the timer on the request's loop.
        loop = self._loop
        if loop is None or loop.is_closed():
            # Nowhere to run the removal; the read-side deadline check still applies.
            return
        try:
            loop.call_soon_threadsafe(self._arm, key, entry)
        except RuntimeError:
            # Loop closed in between.
            return

    def _arm(self, key: str, entry: Entry) -> None:
        with self._lock:
            if self._storage.get(key) is not entry:
                return
            self._cancel_timer(key)
            remaining = max(0.0, (entry.expires_at or 0.0) - self._clock())
            self._timers[key] = asyncio.get_running_loop().call_later(remaining, self._expire, key, entry)

    def _expire(self, key: str, entry: Entry) -> None:
        with self._lock:
            if self._storage.get(key) is not entry:
                return
            self._timers.pop(key, None)
            remaining = (entry.expires_at or 0.0) - self._clock()
            if remaining > 0:
                # Loop timers may fire up to one clock tick early.
                self._schedule_expiry(key, entry, remaining)
                return
            del self._storage[key]
        logger.debug("context key {key!r} expired", key=key)
