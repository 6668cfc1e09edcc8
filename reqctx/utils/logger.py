from __future__ import annotations

import sys
from typing import Any

from loguru import logger

from reqctx.context.scope import current_context
from reqctx.core.settings import settings


def _with_context_identity(record: dict[str, Any]) -> None:
    ctx = current_context()
    record["extra"].setdefault("ctx", (ctx.identity if ctx is not None else None) or "-")


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.configure(patcher=_with_context_identity)
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | ctx={extra[ctx]} | {name}:{function}:{line} - {message}",
        backtrace=False,
        diagnose=False,
        enqueue=True,
        serialize=bool(getattr(settings, "LOG_JSON", False)),
    )
