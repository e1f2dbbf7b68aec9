"""Read-only inventory queries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dms.models.dms_product import DmsInventoryLot


@dataclass(slots=True)
class InventoryLot:
    batch_no: str
    expiry_date: date
    qty: int
    sale_price: Decimal
    min_sale_price: Decimal


async def available_lots(session: AsyncSession, product_code: str) -> list[InventoryLot]:
    """Return active lots with stock on hand for ``product_code``."""

    rows = await session.execute(
        select(
            DmsInventoryLot.batch_no,
            DmsInventoryLot.expiry_date,
            DmsInventoryLot.qty,
            DmsInventoryLot.sale_price,
            DmsInventoryLot.min_sale_price,
        )
        .where(
            DmsInventoryLot.product_code == product_code,
            DmsInventoryLot.active_flag == "Y",
            DmsInventoryLot.qty > 0,
        )
        .order_by(DmsInventoryLot.lot_id)
    )
    return [
        InventoryLot(
            batch_no=row.batch_no,
            expiry_date=row.expiry_date,
            qty=int(row.qty),
            sale_price=row.sale_price,
            min_sale_price=row.min_sale_price or Decimal("0"),
        )
        for row in rows
    ]
