"""Delivery log API endpoints, including the reconciliation job."""

from datetime import date
from decimal import Decimal
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.config import settings
from dms.core.db import SessionLocal, get_session
from dms.models.dms_delivery_log import DmsDeliveryLogHdr
from dms.schemas.delivery_log import (
    DeliveryLogInvoiceOut,
    DeliveryLogListOut,
    DeliveryLogOut,
    DeliveryStatsOut,
)
from dms.schemas.sync import (
    SyncCompleteOut,
    SyncErrorOut,
    SyncProgressOut,
    SyncRequest,
    SyncStatsOut,
    SyncSummaryOut,
)
from dms.services import delivery_logs as delivery_log_service
from dms.services.delivery_logs import DeliveryLogFilters
from dms.services.delivery_sync import (
    SyncProgress,
    SyncScope,
    SyncSummary,
    iter_sync_progress,
    sync_missing_invoices,
)

router = APIRouter(prefix="/delivery-logs", tags=["delivery-logs"])


def _money(value: Optional[Decimal]) -> float:
    return float(value or Decimal("0"))


def _serialise_delivery_log(header: DmsDeliveryLogHdr) -> DeliveryLogOut:
    invoices = [
        DeliveryLogInvoiceOut(
            sno=line.sno,
            invoice_id=line.invoice_no,
            invoice_date=line.invoice_date,
            customer_id=line.customer_code,
            customer_name=line.customer_name,
            customer_area=line.customer_area,
            license=line.license_no,
            grand_total=_money(line.grand_total),
            cash_received=_money(line.cash_received),
            credit_amount=_money(line.credit_amount),
            payment_status=line.payment_status,
            product_count=line.product_count,
            total_quantity=line.total_quantity,
            assigned_date=line.assigned_at,
        )
        for line in sorted(header.items, key=lambda item: item.sno)
    ]
    return DeliveryLogOut(
        delivery_log_number=header.delivery_log_no,
        log_date=header.log_date,
        deliver_by=header.deliver_by,
        deliveryman_name=header.deliveryman_name,
        delivery_area=header.delivery_area,
        booked_by=header.booked_by,
        booked_by_name=header.booked_by_name,
        invoices=invoices,
        total_invoices=header.total_invoices,
        total_amount=_money(header.total_amount),
        total_cash_received=_money(header.total_cash_received),
        total_credit_amount=_money(header.total_credit_amount),
        total_product_count=header.total_product_count,
        total_quantity=header.total_quantity,
        is_active=header.active_flag == "Y",
        created_at=header.created_at,
        updated_at=header.updated_at,
    )


def _serialise_summary(summary: SyncSummary) -> SyncSummaryOut:
    return SyncSummaryOut(
        total=summary.total,
        linked=summary.linked,
        skipped=summary.skipped,
        errors=[SyncErrorOut(invoice_id=item.invoice_no, error=item.error) for item in summary.errors],
    )


def _serialise_progress(event: SyncProgress) -> SyncProgressOut:
    return SyncProgressOut(
        invoice_id=event.invoice_no,
        progress=event.progress,
        step=event.step.value,
        message=event.message,
        stats=SyncStatsOut(
            processed=event.processed,
            linked=event.linked,
            skipped=event.skipped,
            errors=event.errors,
        ),
    )


def _filters(
    keyword: Optional[str] = None,
    deliver_by: Optional[str] = Query(None, alias="deliverBy"),
    delivery_area: Optional[str] = Query(None, alias="deliveryArea"),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    include_inactive: bool = Query(False, alias="includeInactive"),
) -> DeliveryLogFilters:
    return DeliveryLogFilters(
        keyword=keyword,
        deliver_by=deliver_by,
        delivery_area=delivery_area,
        date_from=date_from,
        date_to=date_to,
        include_inactive=include_inactive,
    )


@router.get("", response_model=DeliveryLogListOut)
async def list_delivery_logs(
    filters: DeliveryLogFilters = Depends(_filters),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, alias="pageSize"),
    session: AsyncSession = Depends(get_session),
) -> DeliveryLogListOut:
    size = min(page_size or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    rows, total = await delivery_log_service.list_delivery_logs(
        session, filters, page=page, page_size=size
    )
    return DeliveryLogListOut(
        items=[_serialise_delivery_log(row) for row in rows],
        total=total,
        page=page,
        page_size=size,
    )


@router.get("/stats", response_model=DeliveryStatsOut)
async def get_delivery_stats(
    filters: DeliveryLogFilters = Depends(_filters),
    session: AsyncSession = Depends(get_session),
) -> DeliveryStatsOut:
    stats = await delivery_log_service.delivery_stats(session, filters)
    return DeliveryStatsOut(**stats)


@router.get("/deliveryman/{deliver_by}", response_model=List[DeliveryLogOut])
async def get_delivery_logs_by_deliveryman(
    deliver_by: str,
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    session: AsyncSession = Depends(get_session),
) -> List[DeliveryLogOut]:
    rows = await delivery_log_service.delivery_logs_by_deliveryman(
        session, deliver_by.strip(), date_from=date_from, date_to=date_to
    )
    return [_serialise_delivery_log(row) for row in rows]


@router.post("/sync", response_model=SyncSummaryOut)
async def sync_delivery_logs(
    payload: Optional[SyncRequest] = None,
    session: AsyncSession = Depends(get_session),
) -> SyncSummaryOut:
    payload = payload or SyncRequest()
    summary = await sync_missing_invoices(
        session,
        SyncScope(
            date_from=payload.date_from,
            date_to=payload.date_to,
            deliver_by=payload.deliver_by,
        ),
    )
    return _serialise_summary(summary)


@router.post("/sync/stream")
async def stream_sync_delivery_logs(payload: Optional[SyncRequest] = None) -> StreamingResponse:
    """Run the reconciliation job, streaming NDJSON progress events."""

    payload = payload or SyncRequest()
    scope = SyncScope(
        date_from=payload.date_from,
        date_to=payload.date_to,
        deliver_by=payload.deliver_by,
    )

    async def _events() -> AsyncIterator[str]:
        # The stream outlives the request dependencies, so it owns its session.
        summary = SyncSummary()
        async with SessionLocal() as session:
            async for event in iter_sync_progress(session, scope, summary):
                yield _serialise_progress(event).model_dump_json(by_alias=True) + "\n"
        complete = SyncCompleteOut(summary=_serialise_summary(summary))
        yield complete.model_dump_json(by_alias=True) + "\n"

    return StreamingResponse(_events(), media_type="application/x-ndjson")


@router.get("/{delivery_log_no}", response_model=DeliveryLogOut)
async def get_delivery_log(
    delivery_log_no: str,
    session: AsyncSession = Depends(get_session),
) -> DeliveryLogOut:
    header = await delivery_log_service.get_delivery_log(session, delivery_log_no.strip().upper())
    return _serialise_delivery_log(header)
