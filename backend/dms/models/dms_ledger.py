"""Receivable ledger entries posted for invoices."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CHAR, Date, DateTime, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column

from dms.models.base import Base


class DmsLedgerEntry(Base):
    """Represents the ledger table (``dms_ledger_entry``)."""

    __tablename__ = "dms_ledger_entry"

    ledger_no: Mapped[str] = mapped_column(String(32), primary_key=True)
    entry_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    account_code: Mapped[str] = mapped_column(String(32), nullable=False)
    account_details: Mapped[Optional[str]] = mapped_column(String(255))
    cash_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    remarks: Mapped[Optional[str]] = mapped_column(String(500))
    source_type: Mapped[Optional[str]] = mapped_column(String(32))
    source_ref: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    active_flag: Mapped[str] = mapped_column(
        CHAR(1), nullable=False, server_default=text("'Y'")
    )
