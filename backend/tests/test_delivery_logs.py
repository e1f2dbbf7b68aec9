from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from dms.core.errors import ManifestSyncFailure, NotFoundError
from dms.models import DmsDeliveryLogHdr, DmsGenericSequence
from dms.schemas.invoice import InvoicePaymentPayload
from dms.services import delivery_logs
from dms.services.delivery_logs import (
    DeliveryLogFilters,
    attach_invoice,
    delivery_logs_by_deliveryman,
    delivery_stats,
    detach_invoice,
    fold_totals,
    get_delivery_log,
    list_delivery_logs,
    update_invoice_summary,
)
from dms.services.invoices import create_invoice, update_invoice_payment

from factories import CUSTOMER_2, DRIVER, DRIVER_2, PANADOL, active_logs, invoice_payload


def _assert_folded(log: DmsDeliveryLogHdr) -> None:
    totals = fold_totals(log.items)
    assert log.total_invoices == totals.total_invoices == len(log.items)
    assert log.total_amount == totals.total_amount
    assert log.total_cash_received == totals.total_cash_received
    assert log.total_credit_amount == totals.total_credit_amount
    assert log.total_product_count == totals.total_product_count
    assert log.total_quantity == totals.total_quantity
    assert [line.sno for line in log.items] == list(range(1, len(log.items) + 1))


@pytest.mark.anyio
async def test_totals_are_refolded_after_every_change(session):
    first = await create_invoice(session, invoice_payload(cashReceived="900"))
    second = await create_invoice(
        session,
        invoice_payload(
            customerId=CUSTOMER_2,
            items=[
                {"productId": PANADOL, "quantity": 2},
                {"productId": PANADOL, "quantity": 1, "bonus": 1},
            ],
        ),
    )

    [log] = await active_logs(session)
    _assert_folded(log)
    assert log.total_invoices == 2
    assert log.total_amount == Decimal("1200.00")
    assert log.total_product_count == 3
    assert log.total_quantity == 12 + 4
    summary = log.items[1]
    assert summary.customer_name == "City Medical Store"
    assert summary.customer_area == "Clifton"

    await update_invoice_payment(
        session, second.invoice_no, InvoicePaymentPayload(cash_received=Decimal("100"))
    )
    [log] = await active_logs(session)
    _assert_folded(log)
    assert log.total_cash_received == Decimal("1000.00")

    await detach_invoice(session, first.invoice_no)
    [log] = await active_logs(session)
    _assert_folded(log)
    assert [line.invoice_no for line in log.items] == [second.invoice_no]
    assert log.total_amount == Decimal("300.00")


@pytest.mark.anyio
async def test_logs_are_keyed_by_driver_and_day(session):
    await create_invoice(session, invoice_payload())
    await create_invoice(session, invoice_payload(deliverBy=DRIVER_2))
    await create_invoice(session, invoice_payload(invoiceDate="2024-05-11"))

    logs = await active_logs(session)
    assert [(log.deliver_by, log.log_date) for log in logs] == [
        (DRIVER, date(2024, 5, 10)),
        (DRIVER_2, date(2024, 5, 10)),
        (DRIVER, date(2024, 5, 11)),
    ]
    assert [log.delivery_log_no for log in logs] == [
        "DL-20240510-001",
        "DL-20240510-002",
        "DL-20240511-003",
    ]


@pytest.mark.anyio
async def test_attach_is_idempotent(session):
    invoice = await create_invoice(session, invoice_payload())

    again = await attach_invoice(session, invoice.invoice_no)

    assert again == invoice.delivery_log_no
    [log] = await active_logs(session)
    assert len(log.items) == 1
    _assert_folded(log)


@pytest.mark.anyio
async def test_losing_create_race_appends_to_the_winner(session, monkeypatch):
    winner = await create_invoice(session, invoice_payload())

    real_find = delivery_logs._find_active_log
    calls = {"count": 0}

    async def stale_first_lookup(session, deliver_by, log_date):
        # The first lookup misses the log another writer just committed.
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return await real_find(session, deliver_by, log_date)

    monkeypatch.setattr(delivery_logs, "_find_active_log", stale_first_lookup)

    loser = await create_invoice(session, invoice_payload())

    assert calls["count"] == 2
    assert loser.delivery_log_no == winner.delivery_log_no
    [log] = await active_logs(session)
    assert [line.invoice_no for line in log.items] == [winner.invoice_no, loser.invoice_no]
    _assert_folded(log)
    total_logs = await session.scalar(select(func.count()).select_from(DmsDeliveryLogHdr))
    assert total_logs == 1
    # The savepoint rollback also returned the delivery log number.
    counter = await session.get(DmsGenericSequence, "delivery_log", populate_existing=True)
    assert counter.seq_no == 2


@pytest.mark.anyio
async def test_update_of_unlinked_invoice_is_a_no_op(session, monkeypatch):
    async def skip_attach(session, invoice_no):
        return None

    monkeypatch.setattr(delivery_logs, "attach_invoice", skip_attach)
    invoice = await create_invoice(session, invoice_payload())

    assert await update_invoice_summary(session, invoice.invoice_no) is None
    assert await detach_invoice(session, invoice.invoice_no) is None
    assert await active_logs(session) == []


@pytest.mark.anyio
async def test_last_detach_deactivates_and_next_invoice_opens_new_log(session):
    first = await create_invoice(session, invoice_payload())
    await detach_invoice(session, first.invoice_no)

    assert await active_logs(session) == []
    old = await get_delivery_log(session, first.delivery_log_no)
    assert old.active_flag == "N"
    assert old.items == []

    second = await create_invoice(session, invoice_payload())
    assert second.delivery_log_no == "DL-20240510-002"
    [log] = await active_logs(session)
    assert log.delivery_log_no == "DL-20240510-002"


@pytest.mark.anyio
async def test_attach_requires_an_active_invoice_with_driver(session):
    with pytest.raises(ManifestSyncFailure):
        await attach_invoice(session, "INV-999999")


@pytest.mark.anyio
async def test_queries_and_stats(session):
    await create_invoice(session, invoice_payload(cashReceived="900"))
    await create_invoice(session, invoice_payload(cashReceived="300"))
    await create_invoice(session, invoice_payload(deliverBy=DRIVER_2))

    rows, total = await list_delivery_logs(session, DeliveryLogFilters(), page=1, page_size=10)
    assert total == 2
    assert {row.deliver_by for row in rows} == {DRIVER, DRIVER_2}

    rows, total = await list_delivery_logs(
        session, DeliveryLogFilters(keyword="bilal"), page=1, page_size=10
    )
    assert total == 1
    assert rows[0].deliver_by == DRIVER_2

    mine = await delivery_logs_by_deliveryman(session, DRIVER)
    assert len(mine) == 1
    assert mine[0].total_invoices == 2

    stats = await delivery_stats(session, DeliveryLogFilters())
    assert stats["total_logs"] == 2
    assert stats["total_invoices"] == 3
    assert stats["total_amount"] == Decimal("2700")
    assert stats["total_cash_received"] == Decimal("1200")
    assert stats["deliverymen"] == 2
    assert stats["average_invoices_per_log"] == 1.5

    with pytest.raises(NotFoundError):
        await get_delivery_log(session, "DL-19990101-001")
