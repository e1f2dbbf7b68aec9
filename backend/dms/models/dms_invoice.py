"""Invoice header and line item ORM models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CHAR,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dms.models.base import Base


class DmsInvoiceHdr(Base):
    """Represents the invoice header table (``dms_invoice_hdr``)."""

    __tablename__ = "dms_invoice_hdr"
    __table_args__ = (
        Index("ix_dms_invoice_hdr_customer_date", "customer_code", "invoice_date"),
        Index("ix_dms_invoice_hdr_deliver_by_date", "deliver_by", "invoice_date"),
    )

    invoice_no: Mapped[str] = mapped_column(String(32), primary_key=True)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    customer_code: Mapped[str] = mapped_column(
        String(32), ForeignKey("dms_customer_master.customer_code"), nullable=False
    )
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    license_no: Mapped[Optional[str]] = mapped_column(String(100))
    license_expiry: Mapped[Optional[date]] = mapped_column(Date)
    # Nullable so legacy rows without a driver surface as reconciliation errors.
    deliver_by: Mapped[Optional[str]] = mapped_column(
        String(32), ForeignKey("dms_employee_master.employee_code")
    )
    booked_by: Mapped[str] = mapped_column(
        String(32), ForeignKey("dms_employee_master.employee_code"), nullable=False
    )
    delivery_area: Mapped[Optional[str]] = mapped_column(String(255))
    delivery_log_no: Mapped[Optional[str]] = mapped_column(String(255))
    last_invoice_no: Mapped[Optional[str]] = mapped_column(String(32))
    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    sub_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    total_discount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    grand_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    cash_received: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default=text("'unpaid'")
    )
    payment_notes: Mapped[Optional[str]] = mapped_column(String(500))
    payment_date: Mapped[Optional[date]] = mapped_column(Date)
    remarks: Mapped[Optional[str]] = mapped_column(String(500))
    ledger_no: Mapped[Optional[str]] = mapped_column(
        String(32), ForeignKey("dms_ledger_entry.ledger_no")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    active_flag: Mapped[str] = mapped_column(
        CHAR(1), nullable=False, server_default=text("'Y'")
    )

    items: Mapped[List["DmsInvoiceDtl"]] = relationship(
        back_populates="header",
        cascade="all, delete-orphan",
        order_by="DmsInvoiceDtl.line_no",
    )

    @property
    def is_active(self) -> bool:
        return self.active_flag == "Y"


class DmsInvoiceDtl(Base):
    """Represents the invoice line item table (``dms_invoice_dtl``)."""

    __tablename__ = "dms_invoice_dtl"

    invoice_no: Mapped[str] = mapped_column(
        String(32), ForeignKey("dms_invoice_hdr.invoice_no", ondelete="CASCADE"), primary_key=True
    )
    line_no: Mapped[int] = mapped_column(SmallInteger, primary_key=True)
    product_code: Mapped[str] = mapped_column(
        String(64), ForeignKey("dms_product_master.product_code"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    batch_no: Mapped[str] = mapped_column(String(100), nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    available_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    less_to_minimum: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("0")
    )
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    min_price: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    disc_pct: Mapped[Decimal] = mapped_column(
        Numeric(8, 2), nullable=False, server_default=text("0.00")
    )
    flat_disc: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    total_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_per_piece: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    header: Mapped[DmsInvoiceHdr] = relationship(back_populates="items")
