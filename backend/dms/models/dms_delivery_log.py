"""Delivery log (per driver, per day manifest) header and line models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
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


class DmsDeliveryLogHdr(Base):
    """Represents the delivery log header table (``dms_delivery_log_hdr``).

    ``active_key`` is ``"<driver>:<YYYY-MM-DD>"`` while the log is active and
    NULL once it is deactivated; its unique index keeps one active log per
    driver and day.
    """

    __tablename__ = "dms_delivery_log_hdr"
    __table_args__ = (
        Index("ix_dms_delivery_log_hdr_driver_date", "deliver_by", "log_date"),
    )

    delivery_log_no: Mapped[str] = mapped_column(String(32), primary_key=True)
    log_date: Mapped[date] = mapped_column(Date, nullable=False)
    deliver_by: Mapped[str] = mapped_column(
        String(32), ForeignKey("dms_employee_master.employee_code"), nullable=False
    )
    deliveryman_name: Mapped[str] = mapped_column(String(255), nullable=False)
    delivery_area: Mapped[Optional[str]] = mapped_column(String(100))
    booked_by: Mapped[Optional[str]] = mapped_column(String(32))
    booked_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    total_invoices: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    total_cash_received: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    total_credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    total_product_count: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    active_key: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    active_flag: Mapped[str] = mapped_column(
        CHAR(1), nullable=False, server_default=text("'Y'")
    )

    items: Mapped[List["DmsDeliveryLogDtl"]] = relationship(
        back_populates="header",
        cascade="all, delete-orphan",
        order_by="DmsDeliveryLogDtl.sno",
    )


class DmsDeliveryLogDtl(Base):
    """Invoice summary held by a delivery log (``dms_delivery_log_dtl``).

    A denormalized copy of the invoice, refreshed by explicit updates only.
    """

    __tablename__ = "dms_delivery_log_dtl"

    invoice_no: Mapped[str] = mapped_column(
        String(32), ForeignKey("dms_invoice_hdr.invoice_no"), primary_key=True
    )
    delivery_log_no: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("dms_delivery_log_hdr.delivery_log_no", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sno: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    customer_code: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_area: Mapped[Optional[str]] = mapped_column(String(100))
    license_no: Mapped[Optional[str]] = mapped_column(String(100))
    grand_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    cash_received: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    product_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    header: Mapped[DmsDeliveryLogHdr] = relationship(back_populates="items")
