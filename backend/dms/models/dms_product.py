"""Product master and the inventory lots read by stock allocation."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import CHAR, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dms.models.base import Base


class DmsProductMaster(Base):
    __tablename__ = "dms_product_master"

    product_code: Mapped[str] = mapped_column(String(64), primary_key=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_pack_size: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    active_flag: Mapped[str] = mapped_column(
        CHAR(1), nullable=False, server_default=text("'Y'")
    )

    lots: Mapped[List["DmsInventoryLot"]] = relationship(back_populates="product")


class DmsInventoryLot(Base):
    """One received batch of a product (``dms_inventory_lot``)."""

    __tablename__ = "dms_inventory_lot"
    __table_args__ = (Index("ix_dms_inventory_lot_product_expiry", "product_code", "expiry_date"),)

    lot_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_code: Mapped[str] = mapped_column(
        String(64), ForeignKey("dms_product_master.product_code"), nullable=False
    )
    batch_no: Mapped[str] = mapped_column(String(100), nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    sale_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    min_sale_price: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, server_default=text("0.00")
    )
    active_flag: Mapped[str] = mapped_column(
        CHAR(1), nullable=False, server_default=text("'Y'")
    )

    product: Mapped[DmsProductMaster] = relationship(back_populates="lots")
