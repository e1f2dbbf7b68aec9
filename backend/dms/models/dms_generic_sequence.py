"""Generic sequence table scoped by name (invoice, delivery log, city, ledger)."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, String, text
from sqlalchemy.orm import Mapped, mapped_column

from dms.models.base import Base


class DmsGenericSequence(Base):
    """Stores reusable sequence counters keyed by name.

    ``seq_no`` holds the next value to hand out.
    """

    __tablename__ = "dms_gen_seq_no"

    seq_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    seq_no: Mapped[int] = mapped_column(BigInteger, nullable=False, server_default=text("1"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        server_onupdate=text("CURRENT_TIMESTAMP"),
    )
