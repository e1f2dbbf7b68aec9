"""Loguru setup for the API, the sync script and the tests."""

from __future__ import annotations

import logging
from contextvars import ContextVar
from sys import stdout
from typing import Any

from loguru import logger

from dms.core.config import settings

request_id_ctx_var: ContextVar[str] = ContextVar("request_id", default="-")

# Used when LOG_SERIALIZE is off (local runs, pytest output).
_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "{extra[request_id]} | <cyan>{name}</cyan> - <level>{message}</level> {extra}"
)


def _patch_record(record: dict[str, Any]) -> None:
    record["extra"].setdefault("request_id", request_id_ctx_var.get())


def setup_logging() -> None:
    """Route application logs to a single stdout sink, JSON in deployed envs."""

    logging.basicConfig(level=settings.LOG_LEVEL)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    if not settings.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger.remove()
    logger.configure(patcher=_patch_record)
    sink_options: dict[str, Any] = {
        "level": settings.LOG_LEVEL,
        "enqueue": True,
        "backtrace": False,
        "diagnose": False,
    }
    if settings.LOG_SERIALIZE:
        logger.add(stdout, serialize=True, **sink_options)
    else:
        logger.add(stdout, format=_TEXT_FORMAT, **sink_options)
