"""
Stock Router — dealer device stock available for pickup.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from pickups import ledger

router = APIRouter(prefix="/api/v1/stock", tags=["stock"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class StockResponse(BaseModel):
    stock_id: UUID
    dealer_id: UUID
    device_name: str
    device_model: str
    available_quantity: int
    overall_quantity: int
    updated_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[StockResponse])
async def list_stock(
    dealer_id: UUID | None = None,
    in_stock_only: bool = True,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Dealer stock, by default only SKUs with units left to pick up."""
    return await ledger.list_stock(db, dealer_id=dealer_id, in_stock_only=in_stock_only)
