"""Per driver, per day delivery logs built from invoice summaries.

A delivery log's totals are always refolded from its current lines after a
change; they are never patched incrementally. Each mutation runs in its own
transaction, separate from the invoice transaction that triggered it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from loguru import logger
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dms.core.config import settings
from dms.core.db import repeatable_read_transaction
from dms.core.db_retry import with_db_retry
from dms.core.errors import ManifestSyncFailure, NotFoundError
from dms.models.dms_customer import DmsCustomerMaster
from dms.models.dms_delivery_log import DmsDeliveryLogDtl, DmsDeliveryLogHdr
from dms.models.dms_employee import DmsEmployeeMaster
from dms.models.dms_invoice import DmsInvoiceHdr
from dms.services.sequences import (
    DELIVERY_LOG_SEQUENCE,
    format_delivery_log_no,
    reserve_sequence_number,
)

ZERO = Decimal("0")


@dataclass(slots=True)
class DeliveryLogTotals:
    total_invoices: int = 0
    total_amount: Decimal = ZERO
    total_cash_received: Decimal = ZERO
    total_credit_amount: Decimal = ZERO
    total_product_count: int = 0
    total_quantity: int = 0


@dataclass(slots=True)
class DeliveryLogFilters:
    keyword: Optional[str] = None
    deliver_by: Optional[str] = None
    delivery_area: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    include_inactive: bool = False


def delivery_log_key(deliver_by: str, log_date: date) -> str:
    return f"{deliver_by}:{log_date.isoformat()}"


def fold_totals(lines: Iterable[DmsDeliveryLogDtl]) -> DeliveryLogTotals:
    totals = DeliveryLogTotals()
    for line in lines:
        totals.total_invoices += 1
        totals.total_amount += line.grand_total or ZERO
        totals.total_cash_received += line.cash_received or ZERO
        totals.total_credit_amount += line.credit_amount or ZERO
        totals.total_product_count += line.product_count or 0
        totals.total_quantity += line.total_quantity or 0
    return totals


def _refold(header: DmsDeliveryLogHdr) -> None:
    for sno, line in enumerate(header.items, start=1):
        line.sno = sno
    totals = fold_totals(header.items)
    header.total_invoices = totals.total_invoices
    header.total_amount = totals.total_amount
    header.total_cash_received = totals.total_cash_received
    header.total_credit_amount = totals.total_credit_amount
    header.total_product_count = totals.total_product_count
    header.total_quantity = totals.total_quantity
    header.updated_at = datetime.now()


def _write_summary(
    line: DmsDeliveryLogDtl, invoice: DmsInvoiceHdr, customer: DmsCustomerMaster | None
) -> None:
    line.invoice_date = invoice.invoice_date
    line.customer_code = invoice.customer_code
    line.customer_name = invoice.customer_name
    line.customer_area = customer.customer_area if customer else None
    line.license_no = invoice.license_no
    line.grand_total = invoice.grand_total
    line.cash_received = invoice.cash_received
    line.credit_amount = invoice.credit_amount
    line.payment_status = invoice.payment_status
    line.product_count = len(invoice.items)
    line.total_quantity = sum(item.total_qty or 0 for item in invoice.items)


async def _load_invoice(session: AsyncSession, invoice_no: str) -> DmsInvoiceHdr | None:
    return await session.scalar(
        select(DmsInvoiceHdr)
        .options(selectinload(DmsInvoiceHdr.items))
        .where(DmsInvoiceHdr.invoice_no == invoice_no)
        .execution_options(populate_existing=True)
    )


async def _load_summary_log(session: AsyncSession, invoice_no: str) -> DmsDeliveryLogHdr | None:
    """Return the active log holding ``invoice_no``, locked, with its lines."""

    return await session.scalar(
        select(DmsDeliveryLogHdr)
        .join(DmsDeliveryLogDtl, DmsDeliveryLogDtl.delivery_log_no == DmsDeliveryLogHdr.delivery_log_no)
        .options(selectinload(DmsDeliveryLogHdr.items))
        .where(
            DmsDeliveryLogDtl.invoice_no == invoice_no,
            DmsDeliveryLogHdr.active_flag == "Y",
        )
        .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
        .execution_options(populate_existing=True)
    )


async def _find_active_log(
    session: AsyncSession, deliver_by: str, log_date: date
) -> DmsDeliveryLogHdr | None:
    return await session.scalar(
        select(DmsDeliveryLogHdr)
        .options(selectinload(DmsDeliveryLogHdr.items))
        .where(DmsDeliveryLogHdr.active_key == delivery_log_key(deliver_by, log_date))
        .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
        .execution_options(populate_existing=True)
    )


async def _create_log(
    session: AsyncSession, invoice: DmsInvoiceHdr, driver: DmsEmployeeMaster
) -> DmsDeliveryLogHdr | None:
    """Insert a new active log for the invoice's driver and day.

    Returns None when a concurrent writer created the log first; the caller
    then appends to the winner's log.
    """

    salesman = await session.get(DmsEmployeeMaster, invoice.booked_by)
    try:
        async with session.begin_nested():
            seq = await reserve_sequence_number(session, DELIVERY_LOG_SEQUENCE)
            header = DmsDeliveryLogHdr(
                delivery_log_no=format_delivery_log_no(invoice.invoice_date, seq),
                log_date=invoice.invoice_date,
                deliver_by=driver.employee_code,
                deliveryman_name=driver.employee_name,
                delivery_area=driver.employee_area or "N/A",
                booked_by=invoice.booked_by,
                booked_by_name=salesman.employee_name if salesman else None,
                active_key=delivery_log_key(driver.employee_code, invoice.invoice_date),
                items=[],
            )
            session.add(header)
    except IntegrityError:
        logger.bind(
            deliver_by=driver.employee_code, log_date=str(invoice.invoice_date)
        ).info("delivery_log_create_conflict")
        return None
    logger.bind(
        delivery_log_no=header.delivery_log_no, deliver_by=driver.employee_code
    ).info("delivery_log_created")
    return header


async def _attach_once(session: AsyncSession, invoice_no: str) -> str:
    async with repeatable_read_transaction(session):
        invoice = await _load_invoice(session, invoice_no)
        if invoice is None or not invoice.is_active:
            raise ManifestSyncFailure(f"Invoice {invoice_no} is not active.")
        if not invoice.deliver_by:
            raise ManifestSyncFailure(f"Invoice {invoice_no} has no deliveryman assigned.")
        customer = await session.get(DmsCustomerMaster, invoice.customer_code)

        header = await _load_summary_log(session, invoice_no)
        if header is not None:
            # Already summarised: refresh instead of adding a second line.
            line = next(item for item in header.items if item.invoice_no == invoice_no)
            _write_summary(line, invoice, customer)
        else:
            driver = await session.get(DmsEmployeeMaster, invoice.deliver_by)
            if driver is None:
                raise ManifestSyncFailure(f"Deliveryman {invoice.deliver_by} not found.")
            header = await _find_active_log(session, driver.employee_code, invoice.invoice_date)
            if header is None:
                header = await _create_log(session, invoice, driver)
            if header is None:
                header = await _find_active_log(session, driver.employee_code, invoice.invoice_date)
            if header is None:
                raise ManifestSyncFailure(
                    f"No active delivery log for {driver.employee_code} on {invoice.invoice_date}."
                )
            line = DmsDeliveryLogDtl(
                invoice_no=invoice.invoice_no,
                sno=len(header.items) + 1,
                assigned_at=datetime.now(),
            )
            _write_summary(line, invoice, customer)
            header.items.append(line)

        _refold(header)
        invoice.delivery_log_no = header.delivery_log_no
        await session.flush()
        return header.delivery_log_no


async def attach_invoice(session: AsyncSession, invoice_no: str) -> str:
    """Add the invoice to its driver's active log for the invoice day.

    Creates the log on first use. Attaching an invoice that is already in a
    log refreshes its line. Returns the delivery log number used.
    """

    attempts = settings.DELIVERY_LOG_ATTACH_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            delivery_log_no = await with_db_retry(
                session, lambda: _attach_once(session, invoice_no)
            )
        except IntegrityError as exc:
            # Lost a race on the invoice line or the log itself; the next
            # attempt sees the committed winner and appends or refreshes.
            if attempt == attempts:
                raise ManifestSyncFailure(
                    f"Unable to attach invoice {invoice_no} to a delivery log."
                ) from exc
            logger.bind(invoice_no=invoice_no, attempt=attempt).warning(
                "delivery_log_attach_conflict"
            )
            continue
        logger.bind(invoice_no=invoice_no, delivery_log_no=delivery_log_no).info(
            "delivery_log_invoice_attached"
        )
        return delivery_log_no
    raise ManifestSyncFailure(f"Unable to attach invoice {invoice_no} to a delivery log.")


async def update_invoice_summary(session: AsyncSession, invoice_no: str) -> str | None:
    """Refresh the invoice's line in its log. No-op if it is in no log yet."""

    async def _update_once() -> str | None:
        async with repeatable_read_transaction(session):
            header = await _load_summary_log(session, invoice_no)
            if header is None:
                logger.bind(invoice_no=invoice_no).info("delivery_log_invoice_not_found")
                return None
            invoice = await _load_invoice(session, invoice_no)
            if invoice is None:
                raise ManifestSyncFailure(f"Invoice {invoice_no} not found.")
            customer = await session.get(DmsCustomerMaster, invoice.customer_code)
            line = next(item for item in header.items if item.invoice_no == invoice_no)
            _write_summary(line, invoice, customer)
            _refold(header)
            await session.flush()
            return header.delivery_log_no

    return await with_db_retry(session, _update_once)


async def detach_invoice(session: AsyncSession, invoice_no: str) -> str | None:
    """Remove the invoice's line; a log left empty is deactivated, not deleted."""

    async def _detach_once() -> str | None:
        async with repeatable_read_transaction(session):
            header = await _load_summary_log(session, invoice_no)
            if header is None:
                logger.bind(invoice_no=invoice_no).info("delivery_log_invoice_not_found")
                return None
            header.items = [item for item in header.items if item.invoice_no != invoice_no]
            _refold(header)
            if not header.items:
                header.active_flag = "N"
                header.active_key = None
                logger.bind(delivery_log_no=header.delivery_log_no).info(
                    "delivery_log_deactivated"
                )
            await session.flush()
            return header.delivery_log_no

    return await with_db_retry(session, _detach_once)


async def is_invoice_summarised(session: AsyncSession, invoice_no: str) -> bool:
    found = await session.scalar(
        select(DmsDeliveryLogDtl.invoice_no)
        .join(DmsDeliveryLogHdr, DmsDeliveryLogDtl.delivery_log_no == DmsDeliveryLogHdr.delivery_log_no)
        .where(
            DmsDeliveryLogDtl.invoice_no == invoice_no,
            DmsDeliveryLogHdr.active_flag == "Y",
        )
    )
    return found is not None


def _apply_filters(stmt, filters: DeliveryLogFilters):
    if not filters.include_inactive:
        stmt = stmt.where(DmsDeliveryLogHdr.active_flag == "Y")
    if filters.deliver_by:
        stmt = stmt.where(DmsDeliveryLogHdr.deliver_by == filters.deliver_by)
    if filters.delivery_area:
        stmt = stmt.where(DmsDeliveryLogHdr.delivery_area == filters.delivery_area)
    if filters.date_from:
        stmt = stmt.where(DmsDeliveryLogHdr.log_date >= filters.date_from)
    if filters.date_to:
        stmt = stmt.where(DmsDeliveryLogHdr.log_date <= filters.date_to)
    if filters.keyword:
        pattern = f"%{filters.keyword.strip()}%"
        stmt = stmt.where(
            or_(
                DmsDeliveryLogHdr.delivery_log_no.ilike(pattern),
                DmsDeliveryLogHdr.deliveryman_name.ilike(pattern),
                DmsDeliveryLogHdr.delivery_area.ilike(pattern),
            )
        )
    return stmt


async def list_delivery_logs(
    session: AsyncSession, filters: DeliveryLogFilters, *, page: int, page_size: int
) -> tuple[list[DmsDeliveryLogHdr], int]:
    total = await session.scalar(
        _apply_filters(select(func.count()).select_from(DmsDeliveryLogHdr), filters)
    )
    rows = await session.scalars(
        _apply_filters(
            select(DmsDeliveryLogHdr).options(selectinload(DmsDeliveryLogHdr.items)), filters
        )
        .order_by(DmsDeliveryLogHdr.log_date.desc(), DmsDeliveryLogHdr.delivery_log_no.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(rows), int(total or 0)


async def get_delivery_log(session: AsyncSession, delivery_log_no: str) -> DmsDeliveryLogHdr:
    header = await session.scalar(
        select(DmsDeliveryLogHdr)
        .options(selectinload(DmsDeliveryLogHdr.items))
        .where(DmsDeliveryLogHdr.delivery_log_no == delivery_log_no)
        .execution_options(populate_existing=True)
    )
    if header is None:
        raise NotFoundError("Delivery log not found.")
    return header


async def delivery_logs_by_deliveryman(
    session: AsyncSession,
    deliver_by: str,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[DmsDeliveryLogHdr]:
    filters = DeliveryLogFilters(deliver_by=deliver_by, date_from=date_from, date_to=date_to)
    rows = await session.scalars(
        _apply_filters(
            select(DmsDeliveryLogHdr).options(selectinload(DmsDeliveryLogHdr.items)), filters
        ).order_by(DmsDeliveryLogHdr.log_date.desc())
    )
    return list(rows)


async def delivery_stats(session: AsyncSession, filters: DeliveryLogFilters) -> dict[str, object]:
    row = (
        await session.execute(
            _apply_filters(
                select(
                    func.count(DmsDeliveryLogHdr.delivery_log_no).label("total_logs"),
                    func.coalesce(func.sum(DmsDeliveryLogHdr.total_invoices), 0).label("total_invoices"),
                    func.coalesce(func.sum(DmsDeliveryLogHdr.total_amount), 0).label("total_amount"),
                    func.coalesce(func.sum(DmsDeliveryLogHdr.total_cash_received), 0).label(
                        "total_cash_received"
                    ),
                    func.coalesce(func.sum(DmsDeliveryLogHdr.total_credit_amount), 0).label(
                        "total_credit_amount"
                    ),
                    func.count(func.distinct(DmsDeliveryLogHdr.deliver_by)).label("deliverymen"),
                ),
                filters,
            )
        )
    ).one()
    total_logs = int(row.total_logs or 0)
    total_invoices = int(row.total_invoices or 0)
    total_amount = Decimal(str(row.total_amount or 0))
    return {
        "total_logs": total_logs,
        "total_invoices": total_invoices,
        "total_amount": total_amount,
        "total_cash_received": Decimal(str(row.total_cash_received or 0)),
        "total_credit_amount": Decimal(str(row.total_credit_amount or 0)),
        "deliverymen": int(row.deliverymen or 0),
        "average_invoices_per_log": round(total_invoices / total_logs, 2) if total_logs else 0.0,
        "average_amount_per_log": (
            float(round(total_amount / total_logs, 2)) if total_logs else 0.0
        ),
    }
