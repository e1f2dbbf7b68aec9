"""Pydantic schemas for invoice operations."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator

from dms.schemas.common import CamelModel


class InvoiceItemPayload(CamelModel):
    """A single invoice line item in create payloads."""

    product_id: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0)
    bonus: int = Field(default=0, ge=0)
    # Defaults to the sale price of the allocated batch.
    price: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    percentage_discount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"), le=Decimal("100"))
    flat_discount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    less_to_minimum: bool = False

    @field_validator("product_id", mode="before")
    @classmethod
    def _strip_product_id(cls, value: Optional[str]) -> str:
        if value is None:
            raise ValueError("Product is required")
        trimmed = str(value).strip()
        if not trimmed:
            raise ValueError("Product is required")
        return trimmed


class InvoiceCreatePayload(CamelModel):
    """Top-level payload for creating an invoice."""

    customer_id: str = Field(..., min_length=1, max_length=32)
    deliver_by: str = Field(..., min_length=1, max_length=32)
    booked_by: str = Field(..., min_length=1, max_length=32)
    invoice_date: Optional[date] = None
    items: List[InvoiceItemPayload] = Field(..., min_length=1)
    total_discount: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    cash_received: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    credit_amount: Optional[Decimal] = Field(
        default=None,
        ge=Decimal("0"),
        description="Leave empty to derive it as grand total minus cash received.",
    )
    payment_notes: Optional[str] = Field(default=None, max_length=500)
    # Defaults to today; also the ledger entry date.
    payment_date: Optional[date] = None
    remarks: Optional[str] = Field(default=None, max_length=500)

    @field_validator("customer_id", "deliver_by", "booked_by", mode="before")
    @classmethod
    def _strip_references(cls, value: Optional[str]) -> str:
        if value is None:
            raise ValueError("Field is required")
        trimmed = str(value).strip()
        if not trimmed:
            raise ValueError("Field is required")
        return trimmed


class InvoicePaymentPayload(CamelModel):
    cash_received: Decimal = Field(..., ge=Decimal("0"))
    credit_amount: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    payment_notes: Optional[str] = Field(default=None, max_length=500)
    payment_date: Optional[date] = None


class InvoiceItemOut(CamelModel):
    """Invoice line item returned from the API."""

    line_no: int
    product_id: str
    product_name: str
    batch_number: str
    expiry: date
    available_stock: int
    quantity: int
    bonus: int
    price: float
    minimum_price: float
    less_to_minimum: bool
    percentage_discount: float
    flat_discount: float
    total_quantity: int
    total_amount: float
    effective_cost_per_piece: float


class InvoiceOut(CamelModel):
    """Full invoice representation returned to clients."""

    invoice_id: str
    invoice_date: date
    customer_id: str
    customer_name: str
    license: Optional[str] = None
    license_expiry: Optional[date] = None
    deliver_by: Optional[str] = None
    booked_by: str
    delivery_area: Optional[str] = None
    delivery_log_number: Optional[str] = None
    last_invoice: Optional[str] = None
    current_balance: float = 0.0
    items: List[InvoiceItemOut]
    sub_total: float
    total_discount: float
    grand_total: float
    cash_received: float
    credit_amount: float
    payment_status: str
    payment_notes: Optional[str] = None
    payment_date: Optional[date] = None
    remarks: Optional[str] = None
    ledger_entry_id: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InvoiceListOut(CamelModel):
    items: List[InvoiceOut]
    total: int
    page: int
    page_size: int


class InvoiceStatsOut(CamelModel):
    total_invoices: int
    total_amount: float
    total_cash_received: float
    total_credit_amount: float
    fully_paid: int
    partially_paid: int
    unpaid: int


class InvoiceDeleteOut(CamelModel):
    invoice_id: str
    is_active: bool
    delivery_log_number: Optional[str] = None
