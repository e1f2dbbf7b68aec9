"""Invoice API endpoints."""

from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.config import settings
from dms.core.db import get_session
from dms.models.dms_invoice import DmsInvoiceHdr
from dms.schemas.invoice import (
    InvoiceCreatePayload,
    InvoiceDeleteOut,
    InvoiceItemOut,
    InvoiceListOut,
    InvoiceOut,
    InvoicePaymentPayload,
    InvoiceStatsOut,
)
from dms.services import invoices as invoice_service
from dms.services.invoices import InvoiceFilters

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _money(value: Optional[Decimal]) -> float:
    return float(value or Decimal("0"))


def _serialise_invoice(header: DmsInvoiceHdr) -> InvoiceOut:
    items = [
        InvoiceItemOut(
            line_no=detail.line_no,
            product_id=detail.product_code,
            product_name=detail.product_name,
            batch_number=detail.batch_no,
            expiry=detail.expiry_date,
            available_stock=detail.available_stock,
            quantity=detail.qty,
            bonus=detail.bonus,
            price=_money(detail.price),
            minimum_price=_money(detail.min_price),
            less_to_minimum=bool(detail.less_to_minimum),
            percentage_discount=_money(detail.disc_pct),
            flat_discount=_money(detail.flat_disc),
            total_quantity=detail.total_qty,
            total_amount=_money(detail.amount),
            effective_cost_per_piece=_money(detail.cost_per_piece),
        )
        for detail in sorted(header.items, key=lambda item: item.line_no)
    ]
    return InvoiceOut(
        invoice_id=header.invoice_no,
        invoice_date=header.invoice_date,
        customer_id=header.customer_code,
        customer_name=header.customer_name,
        license=header.license_no,
        license_expiry=header.license_expiry,
        deliver_by=header.deliver_by,
        booked_by=header.booked_by,
        delivery_area=header.delivery_area,
        delivery_log_number=header.delivery_log_no,
        last_invoice=header.last_invoice_no,
        current_balance=_money(header.current_balance),
        items=items,
        sub_total=_money(header.sub_total),
        total_discount=_money(header.total_discount),
        grand_total=_money(header.grand_total),
        cash_received=_money(header.cash_received),
        credit_amount=_money(header.credit_amount),
        payment_status=header.payment_status,
        payment_notes=header.payment_notes,
        payment_date=header.payment_date,
        remarks=header.remarks,
        ledger_entry_id=header.ledger_no,
        is_active=header.is_active,
        created_at=header.created_at,
        updated_at=header.updated_at,
    )


def _filters(
    search: Optional[str] = None,
    customer_id: Optional[str] = Query(None, alias="customerId"),
    employee_id: Optional[str] = Query(None, alias="employeeId"),
    payment_status: Optional[str] = Query(None, alias="paymentStatus"),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    status_filter: Literal["active", "inactive", "all"] = Query("active", alias="status"),
) -> InvoiceFilters:
    return InvoiceFilters(
        search=search,
        customer_code=customer_id,
        employee_code=employee_id,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
        status=status_filter,
    )


@router.post("", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    payload: InvoiceCreatePayload,
    session: AsyncSession = Depends(get_session),
) -> InvoiceOut:
    header = await invoice_service.create_invoice(session, payload)
    return _serialise_invoice(header)


@router.get("", response_model=InvoiceListOut)
async def list_invoices(
    filters: InvoiceFilters = Depends(_filters),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, alias="pageSize"),
    session: AsyncSession = Depends(get_session),
) -> InvoiceListOut:
    size = min(page_size or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    rows, total = await invoice_service.list_invoices(
        session, filters, page=page, page_size=size
    )
    return InvoiceListOut(
        items=[_serialise_invoice(row) for row in rows],
        total=total,
        page=page,
        page_size=size,
    )


@router.get("/stats", response_model=InvoiceStatsOut)
async def get_invoice_stats(
    filters: InvoiceFilters = Depends(_filters),
    session: AsyncSession = Depends(get_session),
) -> InvoiceStatsOut:
    stats = await invoice_service.invoice_stats(session, filters)
    return InvoiceStatsOut(**stats)


@router.get("/{invoice_id}", response_model=InvoiceOut)
async def get_invoice(
    invoice_id: str,
    session: AsyncSession = Depends(get_session),
) -> InvoiceOut:
    header = await invoice_service.get_invoice(session, invoice_id.strip().upper())
    return _serialise_invoice(header)


@router.patch("/{invoice_id}/payment", response_model=InvoiceOut)
async def update_invoice_payment(
    invoice_id: str,
    payload: InvoicePaymentPayload,
    session: AsyncSession = Depends(get_session),
) -> InvoiceOut:
    header = await invoice_service.update_invoice_payment(
        session, invoice_id.strip().upper(), payload
    )
    return _serialise_invoice(header)


@router.delete("/{invoice_id}", response_model=InvoiceDeleteOut)
async def delete_invoice(
    invoice_id: str,
    session: AsyncSession = Depends(get_session),
) -> InvoiceDeleteOut:
    header = await invoice_service.delete_invoice(session, invoice_id.strip().upper())
    return InvoiceDeleteOut(
        invoice_id=header.invoice_no,
        is_active=header.is_active,
        delivery_log_number=header.delivery_log_no,
    )
