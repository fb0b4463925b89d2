"""
Notifications Router — in-app messages written by pickup transitions.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db
from pickups.notifications import list_notifications, mark_notification_read

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class NotificationResponse(BaseModel):
    notification_id: UUID
    user_id: UUID
    pickup_id: UUID | None
    message: str
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


def _user_id(user: dict) -> UUID:
    try:
        return UUID(str(user["sub"]))
    except (KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[NotificationResponse])
async def get_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return await list_notifications(db, _user_id(user), unread_only=unread_only, limit=limit)


@router.patch("/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def read_notification(
    notification_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    await mark_notification_read(db, notification_id, _user_id(user))
