"""Invoice issuance, payment updates and soft deletion.

The invoice and its receivable ledger entry are written in one transaction.
Delivery log bookkeeping runs afterwards, best effort: a failure there is
logged and left for the reconciliation job, never reported to the caller.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from anyio import fail_after
from loguru import logger
from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dms.core.config import settings
from dms.core.db import repeatable_read_transaction
from dms.core.db_errors import raise_on_lock_conflict
from dms.core.db_retry import with_db_retry
from dms.core.errors import NotFoundError, ValidationError
from dms.models.dms_customer import DmsCustomerMaster
from dms.models.dms_employee import DmsEmployeeMaster
from dms.models.dms_invoice import DmsInvoiceDtl, DmsInvoiceHdr
from dms.models.dms_product import DmsProductMaster
from dms.schemas.invoice import InvoiceCreatePayload, InvoicePaymentPayload
from dms.services import delivery_logs, ledger
from dms.services.pricing import (
    PaymentStatus,
    calculate_invoice_totals,
    calculate_line,
    check_minimum_price,
    derive_payment_status,
    resolve_credit_amount,
)
from dms.services.sequences import INVOICE_SEQUENCE, format_invoice_no, reserve_sequence_number
from dms.services.stock import allocate_stock


@dataclass(slots=True)
class InvoiceFilters:
    search: Optional[str] = None
    customer_code: Optional[str] = None
    employee_code: Optional[str] = None
    payment_status: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    # "active" | "inactive" | "all"
    status: str = "active"


def build_delivery_area_tag(driver: DmsEmployeeMaster, invoice_date: date) -> str:
    area = (driver.employee_area or "").strip() or "AREA"
    name = re.sub(r"\s+", "", driver.employee_name)
    return f"{area}-{name}-{invoice_date:%Y%m%d}"


async def _validate_parties(
    session: AsyncSession, payload: InvoiceCreatePayload
) -> tuple[DmsCustomerMaster, DmsEmployeeMaster, DmsEmployeeMaster]:
    customer = await session.get(DmsCustomerMaster, payload.customer_id)
    if customer is None or customer.active_flag != "Y":
        raise ValidationError(f"Customer {payload.customer_id} not found.")
    driver = await session.get(DmsEmployeeMaster, payload.deliver_by)
    if driver is None or driver.active_flag != "Y":
        raise ValidationError(f"Deliveryman {payload.deliver_by} not found.")
    if not driver.can_deliver:
        raise ValidationError(f"Employee {payload.deliver_by} is not a deliveryman.")
    salesman = await session.get(DmsEmployeeMaster, payload.booked_by)
    if salesman is None or salesman.active_flag != "Y":
        raise ValidationError(f"Salesman {payload.booked_by} not found.")
    if not salesman.can_book:
        raise ValidationError(f"Employee {payload.booked_by} is not a salesman.")
    return customer, driver, salesman


async def _prepare_line_items(
    session: AsyncSession, payload: InvoiceCreatePayload
) -> list[DmsInvoiceDtl]:
    prepared: list[DmsInvoiceDtl] = []
    for idx, item in enumerate(payload.items, start=1):
        product = await session.get(DmsProductMaster, item.product_id)
        if product is None or product.active_flag != "Y":
            raise ValidationError(f"Product {item.product_id} not found.")

        allocation = await allocate_stock(session, item.product_id, item.quantity)
        price = item.price if item.price is not None else allocation.price
        check_minimum_price(item.product_id, price, allocation.min_price, item.less_to_minimum)
        amounts = calculate_line(
            item.quantity,
            item.bonus,
            price,
            item.percentage_discount,
            item.flat_discount,
        )
        prepared.append(
            DmsInvoiceDtl(
                line_no=idx,
                product_code=product.product_code,
                product_name=product.product_name,
                batch_no=allocation.batch_no,
                expiry_date=allocation.expiry_date,
                available_stock=allocation.available_stock,
                qty=item.quantity,
                bonus=item.bonus,
                less_to_minimum=item.less_to_minimum,
                price=price,
                min_price=allocation.min_price,
                disc_pct=amounts.disc_pct,
                flat_disc=amounts.flat_disc,
                total_qty=amounts.total_qty,
                cost_per_piece=amounts.cost_per_piece,
                amount=amounts.amount,
            )
        )
    return prepared


async def _customer_history(
    session: AsyncSession, customer_code: str
) -> tuple[str | None, Decimal]:
    """Most recent active invoice number and outstanding balance before this one."""

    active = (
        DmsInvoiceHdr.customer_code == customer_code,
        DmsInvoiceHdr.active_flag == "Y",
    )
    last_invoice_no = await session.scalar(
        select(DmsInvoiceHdr.invoice_no)
        .where(*active)
        .order_by(DmsInvoiceHdr.created_at.desc(), DmsInvoiceHdr.invoice_no.desc())
        .limit(1)
    )
    balance = await session.scalar(
        select(
            func.coalesce(
                func.sum(DmsInvoiceHdr.grand_total - DmsInvoiceHdr.cash_received), 0
            )
        ).where(*active)
    )
    return last_invoice_no, Decimal(str(balance or 0))


async def _sync_delivery_log(
    session: AsyncSession,
    operation: Callable[[AsyncSession, str], Awaitable[object]],
    invoice_no: str,
) -> None:
    try:
        with fail_after(settings.DELIVERY_SYNC_TIMEOUT_SEC):
            await operation(session, invoice_no)
    except Exception as exc:
        logger.bind(
            invoice_no=invoice_no,
            operation=operation.__name__,
            error=str(exc) or exc.__class__.__name__,
        ).warning("delivery_log_sync_failed")
        try:
            await session.rollback()
        except Exception as rollback_exc:
            # The invoice is already committed; drop the connection instead.
            logger.bind(invoice_no=invoice_no, error=str(rollback_exc)).warning(
                "delivery_log_sync_rollback_failed"
            )
            await session.invalidate()


async def create_invoice(session: AsyncSession, payload: InvoiceCreatePayload) -> DmsInvoiceHdr:
    """Validate, allocate, price and persist an invoice with its ledger entry."""

    async def _create_once() -> str:
        async with repeatable_read_transaction(session):
            customer, driver, _ = await _validate_parties(session, payload)
            invoice_date = payload.invoice_date or date.today()
            payment_date = payload.payment_date or date.today()
            lines = await _prepare_line_items(session, payload)

            totals = calculate_invoice_totals(
                (line.amount for line in lines), payload.total_discount
            )
            cash_received = payload.cash_received
            credit_amount = resolve_credit_amount(
                totals.grand_total, cash_received, payload.credit_amount
            )
            payment_status = derive_payment_status(cash_received, totals.grand_total)
            last_invoice_no, balance = await _customer_history(session, customer.customer_code)

            # Allocated last so a rejected invoice does not consume a number.
            invoice_no = format_invoice_no(
                await reserve_sequence_number(session, INVOICE_SEQUENCE)
            )
            ledger_no = await ledger.create_receivable(
                session,
                account_code=customer.customer_code,
                account_details=customer.customer_name,
                cash=cash_received,
                credit=credit_amount,
                entry_date=payment_date,
                source_ref=invoice_no,
                remarks=payload.payment_notes,
            )

            delivery_area = build_delivery_area_tag(driver, invoice_date)
            for line in lines:
                line.invoice_no = invoice_no
            header = DmsInvoiceHdr(
                invoice_no=invoice_no,
                invoice_date=invoice_date,
                customer_code=customer.customer_code,
                customer_name=customer.customer_name,
                license_no=customer.license_no,
                license_expiry=customer.license_expiry,
                deliver_by=payload.deliver_by,
                booked_by=payload.booked_by,
                delivery_area=delivery_area,
                delivery_log_no=delivery_area,
                last_invoice_no=last_invoice_no,
                current_balance=balance,
                sub_total=totals.sub_total,
                total_discount=totals.total_discount,
                grand_total=totals.grand_total,
                cash_received=cash_received,
                credit_amount=credit_amount,
                payment_status=payment_status.value,
                payment_notes=payload.payment_notes,
                payment_date=payment_date,
                remarks=payload.remarks,
                ledger_no=ledger_no,
                items=lines,
            )
            session.add(header)
            await session.flush()
            return invoice_no

    try:
        invoice_no = await with_db_retry(session, _create_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)

    logger.bind(invoice_no=invoice_no).info("invoice_created")
    await _sync_delivery_log(session, delivery_logs.attach_invoice, invoice_no)
    return await get_invoice(session, invoice_no)


async def update_invoice_payment(
    session: AsyncSession, invoice_no: str, payload: InvoicePaymentPayload
) -> DmsInvoiceHdr:
    async def _update_once() -> None:
        async with repeatable_read_transaction(session):
            header = await session.scalar(
                select(DmsInvoiceHdr)
                .where(DmsInvoiceHdr.invoice_no == invoice_no)
                .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
                .execution_options(populate_existing=True)
            )
            if header is None or header.active_flag != "Y":
                raise NotFoundError("Invoice not found.")

            cash_received = payload.cash_received
            credit_amount = resolve_credit_amount(
                header.grand_total, cash_received, payload.credit_amount
            )
            header.cash_received = cash_received
            header.credit_amount = credit_amount
            header.payment_status = derive_payment_status(
                cash_received, header.grand_total
            ).value
            if payload.payment_notes is not None:
                header.payment_notes = payload.payment_notes
            header.payment_date = payload.payment_date or header.payment_date or date.today()
            header.updated_at = datetime.now()
            if header.ledger_no:
                await ledger.update_ledger_entry(
                    session,
                    header.ledger_no,
                    cash=cash_received,
                    credit=credit_amount,
                    entry_date=header.payment_date,
                    remarks=header.payment_notes,
                )
            await session.flush()

    try:
        await with_db_retry(session, _update_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)

    logger.bind(invoice_no=invoice_no).info("invoice_payment_updated")
    await _sync_delivery_log(session, delivery_logs.update_invoice_summary, invoice_no)
    return await get_invoice(session, invoice_no)


async def delete_invoice(session: AsyncSession, invoice_no: str) -> DmsInvoiceHdr:
    """Deactivate the invoice and its ledger entry; numbers are never reused."""

    async def _delete_once() -> None:
        async with repeatable_read_transaction(session):
            header = await session.scalar(
                select(DmsInvoiceHdr)
                .where(DmsInvoiceHdr.invoice_no == invoice_no)
                .with_for_update(nowait=settings.DB_NOWAIT_LOCKS)
                .execution_options(populate_existing=True)
            )
            if header is None or header.active_flag != "Y":
                raise NotFoundError("Invoice not found.")
            header.active_flag = "N"
            header.updated_at = datetime.now()
            if header.ledger_no:
                await ledger.delete_ledger_entry(session, header.ledger_no)
            await session.flush()

    try:
        await with_db_retry(session, _delete_once)
    except OperationalError as exc:
        raise_on_lock_conflict(exc)

    logger.bind(invoice_no=invoice_no).info("invoice_deleted")
    await _sync_delivery_log(session, delivery_logs.detach_invoice, invoice_no)
    return await get_invoice(session, invoice_no)


async def get_invoice(session: AsyncSession, invoice_no: str) -> DmsInvoiceHdr:
    header = await session.scalar(
        select(DmsInvoiceHdr)
        .options(selectinload(DmsInvoiceHdr.items))
        .where(DmsInvoiceHdr.invoice_no == invoice_no)
        .execution_options(populate_existing=True)
    )
    if header is None:
        raise NotFoundError("Invoice not found.")
    return header


def _apply_filters(stmt, filters: InvoiceFilters):
    if filters.status == "active":
        stmt = stmt.where(DmsInvoiceHdr.active_flag == "Y")
    elif filters.status == "inactive":
        stmt = stmt.where(DmsInvoiceHdr.active_flag == "N")
    if filters.customer_code:
        stmt = stmt.where(DmsInvoiceHdr.customer_code == filters.customer_code)
    if filters.employee_code:
        stmt = stmt.where(
            or_(
                DmsInvoiceHdr.deliver_by == filters.employee_code,
                DmsInvoiceHdr.booked_by == filters.employee_code,
            )
        )
    if filters.payment_status:
        stmt = stmt.where(DmsInvoiceHdr.payment_status == filters.payment_status)
    if filters.date_from:
        stmt = stmt.where(DmsInvoiceHdr.invoice_date >= filters.date_from)
    if filters.date_to:
        stmt = stmt.where(DmsInvoiceHdr.invoice_date <= filters.date_to)
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        stmt = stmt.where(
            or_(
                DmsInvoiceHdr.invoice_no.ilike(pattern),
                DmsInvoiceHdr.customer_name.ilike(pattern),
                DmsInvoiceHdr.license_no.ilike(pattern),
            )
        )
    return stmt


async def list_invoices(
    session: AsyncSession, filters: InvoiceFilters, *, page: int, page_size: int
) -> tuple[list[DmsInvoiceHdr], int]:
    total = await session.scalar(
        _apply_filters(select(func.count()).select_from(DmsInvoiceHdr), filters)
    )
    rows = await session.scalars(
        _apply_filters(select(DmsInvoiceHdr).options(selectinload(DmsInvoiceHdr.items)), filters)
        .order_by(DmsInvoiceHdr.invoice_date.desc(), DmsInvoiceHdr.invoice_no.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(rows), int(total or 0)


async def invoice_stats(session: AsyncSession, filters: InvoiceFilters) -> dict[str, object]:
    def _count_status(value: PaymentStatus):
        return func.coalesce(
            func.sum(case((DmsInvoiceHdr.payment_status == value.value, 1), else_=0)), 0
        )

    row = (
        await session.execute(
            _apply_filters(
                select(
                    func.count(DmsInvoiceHdr.invoice_no).label("total_invoices"),
                    func.coalesce(func.sum(DmsInvoiceHdr.grand_total), 0).label("total_amount"),
                    func.coalesce(func.sum(DmsInvoiceHdr.cash_received), 0).label(
                        "total_cash_received"
                    ),
                    func.coalesce(func.sum(DmsInvoiceHdr.credit_amount), 0).label(
                        "total_credit_amount"
                    ),
                    _count_status(PaymentStatus.FULLY_PAID).label("fully_paid"),
                    _count_status(PaymentStatus.PARTIALLY_PAID).label("partially_paid"),
                    _count_status(PaymentStatus.UNPAID).label("unpaid"),
                ),
                filters,
            )
        )
    ).one()
    return {
        "total_invoices": int(row.total_invoices or 0),
        "total_amount": Decimal(str(row.total_amount or 0)),
        "total_cash_received": Decimal(str(row.total_cash_received or 0)),
        "total_credit_amount": Decimal(str(row.total_credit_amount or 0)),
        "fully_paid": int(row.fully_paid or 0),
        "partially_paid": int(row.partially_paid or 0),
        "unpaid": int(row.unpaid or 0),
    }
