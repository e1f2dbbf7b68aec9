"""Reconciliation of invoices that never reached a delivery log.

Safe to re-run: invoices already summarised in an active log are skipped, so
a second pass over the same scope links nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.db import repeatable_read_transaction
from dms.models.dms_invoice import DmsInvoiceHdr
from dms.services.delivery_logs import attach_invoice, is_invoice_summarised


class SyncStep(str, Enum):
    CHECKING = "CHECKING"
    LINKING = "LINKING"
    ERROR = "ERROR"


@dataclass(slots=True)
class SyncScope:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    deliver_by: Optional[str] = None


@dataclass(slots=True)
class SyncItemError:
    invoice_no: str
    error: str


@dataclass(slots=True)
class SyncSummary:
    total: int = 0
    linked: int = 0
    skipped: int = 0
    errors: list[SyncItemError] = field(default_factory=list)


@dataclass(slots=True)
class SyncProgress:
    invoice_no: str
    progress: int
    step: SyncStep
    message: str
    processed: int
    linked: int
    skipped: int
    errors: int


ProgressCallback = Callable[[SyncProgress], Awaitable[None]]


async def _candidate_invoices(
    session: AsyncSession, scope: SyncScope
) -> list[tuple[str, Optional[str], Optional[str]]]:
    stmt = select(
        DmsInvoiceHdr.invoice_no,
        DmsInvoiceHdr.deliver_by,
        DmsInvoiceHdr.delivery_log_no,
    ).where(
        DmsInvoiceHdr.active_flag == "Y",
        DmsInvoiceHdr.delivery_log_no.is_not(None),
    )
    if scope.date_from:
        stmt = stmt.where(DmsInvoiceHdr.invoice_date >= scope.date_from)
    if scope.date_to:
        stmt = stmt.where(DmsInvoiceHdr.invoice_date <= scope.date_to)
    if scope.deliver_by:
        stmt = stmt.where(DmsInvoiceHdr.deliver_by == scope.deliver_by)
    stmt = stmt.order_by(DmsInvoiceHdr.invoice_date, DmsInvoiceHdr.invoice_no)
    async with repeatable_read_transaction(session):
        rows = (await session.execute(stmt)).all()
    return [(row.invoice_no, row.deliver_by, row.delivery_log_no) for row in rows]


async def _already_linked(session: AsyncSession, invoice_no: str) -> bool:
    async with repeatable_read_transaction(session):
        return await is_invoice_summarised(session, invoice_no)


async def iter_sync_progress(
    session: AsyncSession, scope: SyncScope, summary: SyncSummary
) -> AsyncIterator[SyncProgress]:
    """Process each candidate invoice, yielding one progress event per invoice.

    ``summary`` is filled in as the run advances. Per-invoice failures are
    recorded in it and do not stop the batch.
    """

    candidates = await _candidate_invoices(session, scope)
    summary.total = len(candidates)
    for index, (invoice_no, deliver_by, stored_log_no) in enumerate(candidates, start=1):
        step = SyncStep.CHECKING
        try:
            if await _already_linked(session, invoice_no):
                message = f"{invoice_no} already in a delivery log"
            elif not deliver_by:
                step = SyncStep.ERROR
                message = f"{invoice_no} has no deliveryman assigned"
                summary.errors.append(SyncItemError(invoice_no, "No deliveryman assigned"))
            else:
                delivery_log_no = await attach_invoice(session, invoice_no)
                step = SyncStep.LINKING
                summary.linked += 1
                message = f"{invoice_no} linked to {delivery_log_no}"
                if stored_log_no != delivery_log_no:
                    message += f" (reference corrected from {stored_log_no})"
        except Exception as exc:
            if session.in_transaction():
                await session.rollback()
            step = SyncStep.ERROR
            message = f"{invoice_no} failed: {exc}"
            summary.errors.append(SyncItemError(invoice_no, str(exc) or exc.__class__.__name__))
            logger.bind(invoice_no=invoice_no, error=str(exc)).warning(
                "delivery_log_sync_item_failed"
            )

        summary.skipped = index - summary.linked - len(summary.errors)
        yield SyncProgress(
            invoice_no=invoice_no,
            progress=round(index * 100 / summary.total),
            step=step,
            message=message,
            processed=index,
            linked=summary.linked,
            skipped=summary.skipped,
            errors=len(summary.errors),
        )

    summary.skipped = summary.total - summary.linked - len(summary.errors)
    logger.bind(
        total=summary.total,
        linked=summary.linked,
        skipped=summary.skipped,
        errors=len(summary.errors),
    ).info("delivery_log_sync_completed")


async def sync_missing_invoices(
    session: AsyncSession,
    scope: SyncScope | None = None,
    on_progress: ProgressCallback | None = None,
) -> SyncSummary:
    """Attach every in-scope invoice missing from the delivery logs."""

    summary = SyncSummary()
    async for event in iter_sync_progress(session, scope or SyncScope(), summary):
        if on_progress is not None:
            await on_progress(event)
    return summary
