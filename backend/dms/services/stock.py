"""FIFO batch selection for invoice line items."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from dms.core.errors import InsufficientStock, NoStockAvailable
from dms.services.inventory import InventoryLot, available_lots


@dataclass(slots=True)
class StockAllocation:
    batch_no: str
    expiry_date: date
    available_stock: int
    price: Decimal
    min_price: Decimal


def select_earliest_lot(lots: list[InventoryLot]) -> StockAllocation | None:
    """Group lots by (batch, expiry) and pick the earliest-expiring group.

    Price and minimum price come from the first lot seen for the group.
    """

    grouped: dict[tuple[str, date], StockAllocation] = {}
    for lot in lots:
        key = (lot.batch_no, lot.expiry_date)
        current = grouped.get(key)
        if current is None:
            grouped[key] = StockAllocation(
                batch_no=lot.batch_no,
                expiry_date=lot.expiry_date,
                available_stock=lot.qty,
                price=lot.sale_price,
                min_price=lot.min_sale_price,
            )
        else:
            current.available_stock += lot.qty
    if not grouped:
        return None
    return min(grouped.values(), key=lambda item: (item.expiry_date, item.batch_no))


async def allocate_stock(
    session: AsyncSession, product_code: str, requested_qty: int
) -> StockAllocation:
    """Pick the batch a line item is served from.

    Only the earliest lot is considered; a request it cannot cover is rejected
    rather than split across batches. Nothing is reserved or decremented.
    """

    allocation = select_earliest_lot(await available_lots(session, product_code))
    if allocation is None:
        raise NoStockAvailable(product_code)
    if requested_qty > allocation.available_stock:
        raise InsufficientStock(
            product_code, allocation.batch_no, allocation.available_stock, requested_qty
        )
    return allocation
