"""Shared helpers for database error handling."""

from __future__ import annotations

from sqlalchemy.exc import OperationalError

from dms.core.errors import LockConflict

LOCK_CONFLICT_MARKERS = ("could not obtain lock", "could not acquire", "database is locked")


def raise_on_lock_conflict(exc: OperationalError) -> None:
    """Translate lock conflicts that survived retries into a 409 domain error."""

    orig = getattr(exc, "orig", None)
    code = None
    if orig and getattr(orig, "args", None):
        try:
            code = int(orig.args[0])
        except (TypeError, ValueError):
            code = None
    message = str(getattr(exc, "orig", exc)).lower()
    if code == 3572 or any(marker in message for marker in LOCK_CONFLICT_MARKERS):
        raise LockConflict(
            "Resource is locked by another request. Please retry shortly."
        ) from exc
    raise exc
