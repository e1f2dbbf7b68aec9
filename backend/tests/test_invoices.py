from datetime import date
from decimal import Decimal

import anyio
import pytest
from sqlalchemy import select

from dms.core.config import settings
from dms.core.db import SessionLocal
from dms.core.errors import (
    InsufficientStock,
    LedgerPostFailure,
    ManifestSyncFailure,
    NoStockAvailable,
    NotFoundError,
    PriceBelowMinimum,
    ValidationError,
)
from dms.models import DmsDeliveryLogHdr, DmsEmployeeMaster, DmsGenericSequence, DmsLedgerEntry
from dms.schemas.invoice import InvoicePaymentPayload
from dms.services import delivery_logs, ledger
from dms.services.delivery_logs import get_delivery_log
from dms.services.invoices import (
    build_delivery_area_tag,
    create_invoice,
    delete_invoice,
    update_invoice_payment,
)

from factories import (
    BRUFEN,
    CLERK,
    CUSTOMER,
    DRIVER,
    DRIVER_3,
    NO_STOCK,
    PANADOL,
    SALESMAN,
    active_logs,
    count_invoices,
    invoice_payload,
)


@pytest.mark.anyio
async def test_create_invoice_computes_lines_and_totals(session):
    invoice = await create_invoice(session, invoice_payload(cashReceived="900"))

    assert invoice.invoice_no == "INV-000001"
    line = invoice.items[0]
    assert line.batch_no == "C-1"
    assert line.available_stock == 100
    assert line.total_qty == 12
    assert line.flat_disc == Decimal("100.00")
    assert line.amount == Decimal("900.00")
    assert line.cost_per_piece == Decimal("75.00")
    assert invoice.sub_total == Decimal("900.00")
    assert invoice.grand_total == Decimal("900.00")
    assert invoice.payment_status == "fully_paid"
    assert invoice.credit_amount == Decimal("0.00")
    assert invoice.customer_name == "Al Noor Pharmacy"
    assert invoice.license_no == "LIC-001"
    assert invoice.delivery_area == "Saddar-Imran-20240510"


@pytest.mark.anyio
async def test_line_order_follows_the_payload(session):
    payload = invoice_payload(
        items=[
            {"productId": PANADOL, "quantity": 2},
            {"productId": BRUFEN, "quantity": 1, "price": "45", "lessToMinimum": True},
        ],
    )
    invoice = await create_invoice(session, payload)

    assert [(line.line_no, line.product_code) for line in invoice.items] == [
        (1, PANADOL),
        (2, BRUFEN),
    ]
    # Price defaults to the allocated batch's sale price.
    assert invoice.items[0].price == Decimal("100.00")
    assert invoice.sub_total == Decimal("245.00")


@pytest.mark.anyio
async def test_unspecified_credit_is_derived_from_cash(session):
    invoice = await create_invoice(session, invoice_payload(cashReceived="300"))

    assert invoice.payment_status == "partially_paid"
    assert invoice.credit_amount == Decimal("600.00")


@pytest.mark.anyio
async def test_explicit_zero_credit_is_kept(session):
    invoice = await create_invoice(
        session, invoice_payload(cashReceived="300", creditAmount="0")
    )

    assert invoice.credit_amount == Decimal("0.00")


@pytest.mark.anyio
async def test_ledger_entry_is_posted_with_the_invoice(session):
    invoice = await create_invoice(session, invoice_payload(cashReceived="300"))

    entry = await session.get(DmsLedgerEntry, invoice.ledger_no)
    assert entry.ledger_no == "02001"
    assert entry.entry_type == "RECEIVABLE"
    assert entry.account_code == CUSTOMER
    assert entry.cash_amount == Decimal("300.00")
    assert entry.credit_amount == Decimal("600.00")
    assert entry.source_ref == invoice.invoice_no
    assert entry.remarks == f"Auto-generated from Invoice {invoice.invoice_no}"


@pytest.mark.anyio
async def test_customer_history_is_snapshotted(session):
    first = await create_invoice(session, invoice_payload(cashReceived="300"))
    second = await create_invoice(session, invoice_payload())

    assert first.last_invoice_no is None
    assert first.current_balance == Decimal("0.00")
    assert second.last_invoice_no == first.invoice_no
    assert second.current_balance == Decimal("600.00")


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"customerId": "NOPE"}, "Customer"),
        ({"deliverBy": SALESMAN}, "not a deliveryman"),
        ({"deliverBy": "NOPE"}, "Deliveryman"),
        ({"bookedBy": CLERK}, "not a salesman"),
        ({"bookedBy": DRIVER}, "not a salesman"),
        ({"items": [{"productId": "NOPE", "quantity": 1}]}, "Product"),
        ({"totalDiscount": "901"}, "discount"),
    ],
)
async def test_validation_failures_write_nothing(session, overrides, message):
    with pytest.raises(ValidationError) as ctx:
        await create_invoice(session, invoice_payload(**overrides))

    assert message in ctx.value.detail
    assert await count_invoices(session) == 0


@pytest.mark.anyio
async def test_stock_failures_abort_the_whole_invoice(session):
    items_short = [
        {"productId": BRUFEN, "quantity": 1, "price": "50"},
        {"productId": PANADOL, "quantity": 10},
    ]
    with pytest.raises(InsufficientStock):
        await create_invoice(session, invoice_payload(items=items_short))

    with pytest.raises(NoStockAvailable):
        await create_invoice(
            session, invoice_payload(items=[{"productId": NO_STOCK, "quantity": 1}])
        )

    assert await count_invoices(session) == 0
    assert await session.get(DmsGenericSequence, "invoice") is None


@pytest.mark.anyio
async def test_price_below_minimum_is_rejected(session):
    payload = invoice_payload(items=[{"productId": PANADOL, "quantity": 1, "price": "80"}])
    with pytest.raises(PriceBelowMinimum):
        await create_invoice(session, payload)

    assert await count_invoices(session) == 0


@pytest.mark.anyio
async def test_ledger_failure_rolls_back_the_invoice(session, monkeypatch):
    async def failing_receivable(*args, **kwargs):
        raise LedgerPostFailure("ledger offline")

    monkeypatch.setattr(ledger, "create_receivable", failing_receivable)

    with pytest.raises(LedgerPostFailure):
        await create_invoice(session, invoice_payload())

    assert await count_invoices(session) == 0
    # The invoice number reserved in the aborted transaction is reused.
    monkeypatch.undo()
    invoice = await create_invoice(session, invoice_payload())
    assert invoice.invoice_no == "INV-000001"


@pytest.mark.anyio
async def test_delivery_log_failure_does_not_fail_creation(session, monkeypatch):
    async def failing_attach(session, invoice_no):
        raise ManifestSyncFailure("delivery log store unavailable")

    monkeypatch.setattr(delivery_logs, "attach_invoice", failing_attach)

    invoice = await create_invoice(session, invoice_payload())

    assert invoice.is_active
    assert invoice.delivery_log_no == invoice.delivery_area
    assert await active_logs(session) == []


@pytest.mark.anyio
async def test_slow_delivery_log_sync_times_out_quietly(session, monkeypatch):
    async def slow_attach(session, invoice_no):
        await anyio.sleep(5)

    monkeypatch.setattr(settings, "DELIVERY_SYNC_TIMEOUT_SEC", 0.05)
    monkeypatch.setattr(delivery_logs, "attach_invoice", slow_attach)

    with anyio.fail_after(3):
        invoice = await create_invoice(session, invoice_payload())

    assert invoice.invoice_no == "INV-000001"
    assert await active_logs(session) == []


@pytest.mark.anyio
async def test_new_invoice_is_attached_to_the_drivers_log(session):
    invoice = await create_invoice(session, invoice_payload())

    assert invoice.delivery_log_no == "DL-20240510-001"
    [log] = await active_logs(session)
    assert log.deliver_by == DRIVER
    assert log.deliveryman_name == "Imran"
    assert log.booked_by_name == "Asad"
    assert [line.invoice_no for line in log.items] == [invoice.invoice_no]


@pytest.mark.anyio
async def test_payment_update_syncs_ledger_and_delivery_log(session):
    invoice = await create_invoice(session, invoice_payload())

    updated = await update_invoice_payment(
        session,
        invoice.invoice_no,
        InvoicePaymentPayload.model_validate({"cashReceived": "400", "paymentNotes": "cheque"}),
    )

    assert updated.payment_status == "partially_paid"
    assert updated.credit_amount == Decimal("500.00")
    assert updated.payment_notes == "cheque"
    entry = await session.get(DmsLedgerEntry, updated.ledger_no, populate_existing=True)
    assert entry.cash_amount == Decimal("400.00")
    assert entry.credit_amount == Decimal("500.00")
    [log] = await active_logs(session)
    assert log.items[0].cash_received == Decimal("400.00")
    assert log.total_cash_received == Decimal("400.00")
    assert log.total_credit_amount == Decimal("500.00")


@pytest.mark.anyio
async def test_delete_invoice_deactivates_ledger_and_log(session):
    invoice = await create_invoice(session, invoice_payload())

    deleted = await delete_invoice(session, invoice.invoice_no)

    assert not deleted.is_active
    entry = await session.get(DmsLedgerEntry, invoice.ledger_no, populate_existing=True)
    assert entry.active_flag == "N"
    assert await active_logs(session) == []
    log = await session.scalar(select(DmsDeliveryLogHdr).execution_options(populate_existing=True))
    assert log.active_flag == "N"
    assert log.active_key is None
    assert log.total_invoices == 0

    with pytest.raises(NotFoundError):
        await delete_invoice(session, invoice.invoice_no)


@pytest.mark.anyio
async def test_concurrent_invoices_share_one_delivery_log(seeded):
    created: list[str] = []

    async def _create() -> None:
        async with SessionLocal() as s:
            invoice = await create_invoice(s, invoice_payload())
            created.append(invoice.invoice_no)

    async with anyio.create_task_group() as tg:
        for _ in range(5):
            tg.start_soon(_create)

    assert len(set(created)) == 5
    async with SessionLocal() as s:
        [log] = await active_logs(s)
        assert sorted(line.invoice_no for line in log.items) == sorted(created)
        assert log.total_invoices == 5
        assert log.total_amount == Decimal("4500.00")


@pytest.mark.anyio
async def test_returned_invoices_stay_readable_across_calls(session):
    first = await create_invoice(session, invoice_payload(cashReceived="300"))
    second = await create_invoice(session, invoice_payload())
    log = await get_delivery_log(session, second.delivery_log_no)

    await update_invoice_payment(
        session, second.invoice_no, InvoicePaymentPayload(cash_received=Decimal("900"))
    )
    await delete_invoice(session, first.invoice_no)

    assert first.invoice_no == "INV-000001"
    assert first.last_invoice_no is None
    assert second.last_invoice_no == "INV-000001"
    assert [item.product_code for item in second.items] == [BRUFEN]
    assert log.delivery_log_no == "DL-20240510-001"


def test_delivery_area_tag_drops_name_whitespace_and_defaults_area():
    driver = DmsEmployeeMaster(
        employee_code="X", employee_name=" Ali \t Khan ", designation="Driver", employee_area=None
    )
    assert build_delivery_area_tag(driver, date(2024, 5, 10)) == "AREA-AliKhan-20240510"

    driver.employee_area = "Gulshan"
    assert build_delivery_area_tag(driver, date(2024, 5, 10)) == "Gulshan-AliKhan-20240510"


@pytest.mark.anyio
async def test_driver_without_area_gets_placeholders(session):
    invoice = await create_invoice(session, invoice_payload(deliverBy=DRIVER_3))

    assert invoice.delivery_area == "AREA-AliKhan-20240510"
    [log] = await active_logs(session)
    assert log.deliver_by == DRIVER_3
    assert log.delivery_area == "N/A"


@pytest.mark.anyio
async def test_ledger_entry_takes_payment_notes_and_date(session):
    invoice = await create_invoice(
        session,
        invoice_payload(cashReceived="300", paymentNotes="cheque 42", paymentDate="2024-05-12"),
    )

    assert invoice.payment_date == date(2024, 5, 12)
    entry = await session.get(DmsLedgerEntry, invoice.ledger_no)
    assert entry.remarks == "cheque 42"
    assert entry.entry_date == date(2024, 5, 12)

    await update_invoice_payment(
        session,
        invoice.invoice_no,
        InvoicePaymentPayload.model_validate(
            {"cashReceived": "900", "paymentNotes": "settled", "paymentDate": "2024-05-20"}
        ),
    )
    entry = await session.get(DmsLedgerEntry, invoice.ledger_no, populate_existing=True)
    assert entry.remarks == "settled"
    assert entry.entry_date == date(2024, 5, 20)


@pytest.mark.anyio
async def test_failed_rollback_after_sync_failure_does_not_fail_creation(session, monkeypatch):
    async def failing_attach(session, invoice_no):
        raise ManifestSyncFailure("delivery log store unavailable")

    async def broken_rollback():
        raise RuntimeError("connection reset during rollback")

    monkeypatch.setattr(delivery_logs, "attach_invoice", failing_attach)
    monkeypatch.setattr(session, "rollback", broken_rollback)

    invoice = await create_invoice(session, invoice_payload())

    assert invoice.invoice_no == "INV-000001"
    assert invoice.is_active
    assert await count_invoices(session) == 1
