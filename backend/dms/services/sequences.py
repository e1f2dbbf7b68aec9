"""Named counters and the external identifiers formatted from them."""

from __future__ import annotations

from datetime import date

from loguru import logger
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.config import settings
from dms.core.errors import SequenceUnavailable
from dms.models.dms_generic_sequence import DmsGenericSequence

INVOICE_SEQUENCE = "invoice"
DELIVERY_LOG_SEQUENCE = "delivery_log"
RECEIVABLE_LEDGER_SEQUENCE = "ledger:RECEIVABLE"


async def reserve_sequence_number(session: AsyncSession, seq_name: str) -> int:
    """Reserve and return the next value for the provided sequence name.

    Must run inside the caller's transaction: the counter row stays locked
    until that transaction ends, so concurrent callers never share a value.
    """

    attempts = 0
    while True:
        attempts += 1
        row = await session.scalar(
            select(DmsGenericSequence)
            .where(DmsGenericSequence.seq_name == seq_name)
            .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
            .execution_options(populate_existing=True)
        )
        if row:
            current = int(row.seq_no or 1)
            row.seq_no = current + 1
            await session.flush()
            return current
        try:
            async with session.begin_nested():
                await session.execute(
                    insert(DmsGenericSequence).values(seq_name=seq_name, seq_no=1)
                )
        except IntegrityError:
            # Another transaction created the counter concurrently; retry the loop
            if attempts >= settings.SEQUENCE_MAX_ATTEMPTS:
                logger.bind(seq_name=seq_name).warning("sequence_reservation_exhausted")
                raise SequenceUnavailable("Sequence allocation failed. Please retry.")


def format_invoice_no(seq: int) -> str:
    return f"INV-{seq:06d}"


def format_delivery_log_no(log_date: date, seq: int) -> str:
    return f"DL-{log_date:%Y%m%d}-{seq:03d}"


def format_ledger_no(seq: int) -> str:
    return f"02{seq:03d}"


def format_city_code(city_code: str, seq: int) -> str:
    return f"{city_code.strip().upper()}{seq:02d}"


async def next_customer_code(session: AsyncSession, city_code: str) -> str:
    """Customer codes are the city code followed by a per-city counter."""

    seq = await reserve_sequence_number(session, f"customer:{city_code.strip().upper()}")
    return format_city_code(city_code, seq)


async def next_employee_code(session: AsyncSession, city_code: str) -> str:
    seq = await reserve_sequence_number(session, f"employee:{city_code.strip().upper()}")
    return format_city_code(city_code, seq)
