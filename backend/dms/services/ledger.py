"""Receivable ledger posting used by invoice mutations.

All functions run inside the caller's transaction so an invoice and its ledger
entry commit or roll back together. Retriable lock errors propagate unchanged
so the caller's retry loop can handle them.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.config import settings
from dms.core.errors import LedgerPostFailure
from dms.models.dms_ledger import DmsLedgerEntry
from dms.services.sequences import (
    RECEIVABLE_LEDGER_SEQUENCE,
    format_ledger_no,
    reserve_sequence_number,
)

RECEIVABLE = "RECEIVABLE"
INVOICE_SOURCE = "invoice"


async def create_receivable(
    session: AsyncSession,
    *,
    account_code: str,
    account_details: str | None,
    cash: Decimal,
    credit: Decimal,
    entry_date: date,
    source_ref: str,
    remarks: str | None = None,
) -> str:
    """Post a receivable entry and return its ledger number."""

    try:
        seq = await reserve_sequence_number(session, RECEIVABLE_LEDGER_SEQUENCE)
        entry = DmsLedgerEntry(
            ledger_no=format_ledger_no(seq),
            entry_type=RECEIVABLE,
            entry_date=entry_date,
            account_code=account_code,
            account_details=account_details,
            cash_amount=cash,
            credit_amount=credit,
            remarks=remarks or f"Auto-generated from Invoice {source_ref}",
            source_type=INVOICE_SOURCE,
            source_ref=source_ref,
        )
        session.add(entry)
        await session.flush()
    except OperationalError:
        raise
    except SQLAlchemyError as exc:
        logger.bind(source_ref=source_ref, error=str(exc)).error("ledger_post_failed")
        raise LedgerPostFailure("Failed to post the receivable ledger entry.") from exc
    return entry.ledger_no


async def _load_entry(session: AsyncSession, ledger_no: str) -> DmsLedgerEntry:
    entry = await session.scalar(
        select(DmsLedgerEntry)
        .where(DmsLedgerEntry.ledger_no == ledger_no)
        .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
    )
    if entry is None:
        raise LedgerPostFailure(f"Ledger entry {ledger_no} not found.")
    return entry


async def update_ledger_entry(
    session: AsyncSession,
    ledger_no: str,
    *,
    cash: Decimal,
    credit: Decimal,
    entry_date: date | None = None,
    remarks: str | None = None,
) -> None:
    try:
        entry = await _load_entry(session, ledger_no)
        entry.cash_amount = cash
        entry.credit_amount = credit
        if entry_date is not None:
            entry.entry_date = entry_date
        if remarks:
            entry.remarks = remarks
        entry.updated_at = datetime.now()
        await session.flush()
    except OperationalError:
        raise
    except SQLAlchemyError as exc:
        logger.bind(ledger_no=ledger_no, error=str(exc)).error("ledger_update_failed")
        raise LedgerPostFailure(f"Failed to update ledger entry {ledger_no}.") from exc


async def delete_ledger_entry(session: AsyncSession, ledger_no: str) -> None:
    """Deactivate the entry; ledger numbers are never reused."""

    try:
        entry = await _load_entry(session, ledger_no)
        entry.active_flag = "N"
        entry.updated_at = datetime.now()
        await session.flush()
    except OperationalError:
        raise
    except SQLAlchemyError as exc:
        logger.bind(ledger_no=ledger_no, error=str(exc)).error("ledger_delete_failed")
        raise LedgerPostFailure(f"Failed to deactivate ledger entry {ledger_no}.") from exc
