"""
Inventory Ledger — the only writer of DeviceStock.available_quantity.

Every mutation is a single conditional UPDATE guarded by the current
quantity, so the check and the write cannot be split by a concurrent
request:

  reserve:  available -= q   WHERE available >= q
  release:  available += q   WHERE available + q <= overall

A guard that matches no row means the request lost (or the SKU is unknown);
nothing is read first and written later.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import DeviceStock
from pickups.errors import InsufficientStock, InventoryConflict, NotFound

logger = structlog.get_logger()


def _sku_filter(dealer_id: uuid.UUID, device_name: str, device_model: str):
    return (
        DeviceStock.dealer_id == dealer_id,
        DeviceStock.device_name == device_name,
        DeviceStock.device_model == device_model,
    )


async def get_stock(
    db: AsyncSession,
    dealer_id: uuid.UUID,
    device_name: str,
    device_model: str,
) -> DeviceStock | None:
    result = await db.execute(
        select(DeviceStock)
        .where(*_sku_filter(dealer_id, device_name, device_model))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_stock_by_id(db: AsyncSession, stock_id: uuid.UUID) -> DeviceStock | None:
    result = await db.execute(
        select(DeviceStock).where(DeviceStock.stock_id == stock_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_stock(db: AsyncSession, dealer_id: uuid.UUID | None = None, in_stock_only: bool = True) -> list[DeviceStock]:
    query = select(DeviceStock)
    if dealer_id:
        query = query.where(DeviceStock.dealer_id == dealer_id)
    if in_stock_only:
        query = query.where(DeviceStock.available_quantity > 0)
    query = query.order_by(DeviceStock.device_name, DeviceStock.device_model)
    result = await db.execute(query)
    return list(result.scalars().all())


async def reserve(
    db: AsyncSession,
    *,
    dealer_id: uuid.UUID,
    device_name: str,
    device_model: str,
    quantity: int,
) -> DeviceStock:
    """
    Atomically take `quantity` units out of available stock.

    Runs inside the caller's transaction; the caller commits together with
    the pickup insert or rolls both back.
    """
    result = await db.execute(
        update(DeviceStock)
        .where(*_sku_filter(dealer_id, device_name, device_model), DeviceStock.available_quantity >= quantity)
        .values(
            available_quantity=DeviceStock.available_quantity - quantity,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )

    stock = await get_stock(db, dealer_id, device_name, device_model)
    if result.rowcount == 1 and stock is not None:
        logger.info(
            "ledger.reserved",
            stock_id=str(stock.stock_id),
            quantity=quantity,
            available=stock.available_quantity,
        )
        return stock

    if stock is None:
        raise NotFound(
            "No stock is registered for this dealer and device",
            dealer_id=dealer_id,
            device_name=device_name,
            device_model=device_model,
        )
    raise InsufficientStock(
        f"Requested {quantity} but only {stock.available_quantity} available",
        requested=quantity,
        available=stock.available_quantity,
        stock_id=stock.stock_id,
    )


async def release(db: AsyncSession, *, stock_id: uuid.UUID, quantity: int) -> DeviceStock:
    """Atomically put `quantity` units back, never above the catalog ceiling."""
    result = await db.execute(
        update(DeviceStock)
        .where(
            DeviceStock.stock_id == stock_id,
            DeviceStock.available_quantity + quantity <= DeviceStock.overall_quantity,
        )
        .values(
            available_quantity=DeviceStock.available_quantity + quantity,
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )

    stock = await get_stock_by_id(db, stock_id)
    if result.rowcount == 1 and stock is not None:
        logger.info("ledger.released", stock_id=str(stock_id), quantity=quantity, available=stock.available_quantity)
        return stock

    if stock is None:
        raise NotFound("Stock record no longer exists", stock_id=stock_id)
    raise InventoryConflict(
        "Restoring this reservation would exceed the overall quantity",
        stock_id=stock_id,
        quantity=quantity,
        available=stock.available_quantity,
        overall=stock.overall_quantity,
    )
