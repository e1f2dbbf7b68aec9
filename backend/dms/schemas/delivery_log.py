"""Pydantic schemas for delivery logs."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import Field

from dms.schemas.common import CamelModel


class DeliveryLogInvoiceOut(CamelModel):
    sno: int
    invoice_id: str
    invoice_date: date
    customer_id: str
    customer_name: str
    customer_area: Optional[str] = None
    license: Optional[str] = None
    grand_total: float
    cash_received: float
    credit_amount: float
    payment_status: str
    product_count: int
    total_quantity: int
    assigned_date: datetime


class DeliveryLogOut(CamelModel):
    """A driver's delivery log for one day with its invoice summaries."""

    delivery_log_number: str
    log_date: date
    deliver_by: str
    deliveryman_name: str
    delivery_area: Optional[str] = None
    booked_by: Optional[str] = None
    booked_by_name: Optional[str] = None
    invoices: List[DeliveryLogInvoiceOut] = Field(default_factory=list)
    total_invoices: int
    total_amount: float
    total_cash_received: float
    total_credit_amount: float
    total_product_count: int
    total_quantity: int
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DeliveryLogListOut(CamelModel):
    items: List[DeliveryLogOut]
    total: int
    page: int
    page_size: int


class DeliveryStatsOut(CamelModel):
    total_logs: int
    total_invoices: int
    total_amount: float
    total_cash_received: float
    total_credit_amount: float
    deliverymen: int
    average_invoices_per_log: float
    average_amount_per_log: float
