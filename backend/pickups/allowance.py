"""
Pickup allowance — how many pending pickups a marketer may hold at once.

Every marketer starts at the default allowance. A marketer may ask for an
extended allowance once; a master-admin approves or rejects the request.
An approval is standing: it is not used up by the pickups it allows.
A rejected request frees the marketer to ask again.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import AdditionalPickupRequest
from pickups import store
from pickups.errors import AllowanceRequestConflict, Forbidden, InvalidTransition, NotFound
from pickups.hierarchy import HierarchyResolver, Role
from pickups.notifications import add_notifications

logger = structlog.get_logger()

OPEN_REQUEST_STATUSES = ("pending", "approved")


@dataclass
class AllowanceStatus:
    allowance: int
    pending_count: int
    request_status: str | None

    @property
    def remaining(self) -> int:
        return max(self.allowance - self.pending_count, 0)


async def _latest_open_request(db: AsyncSession, marketer_id: uuid.UUID) -> AdditionalPickupRequest | None:
    result = await db.execute(
        select(AdditionalPickupRequest)
        .where(
            AdditionalPickupRequest.marketer_id == marketer_id,
            AdditionalPickupRequest.status.in_(OPEN_REQUEST_STATUSES),
        )
        .order_by(AdditionalPickupRequest.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def allowance_for(db: AsyncSession, marketer_id: uuid.UUID) -> int:
    settings = get_settings()
    request = await _latest_open_request(db, marketer_id)
    if request is not None and request.status == "approved":
        return settings.pickup_extended_allowance
    return settings.pickup_default_allowance


async def get_allowance(db: AsyncSession, marketer_id: uuid.UUID) -> AllowanceStatus:
    request = await _latest_open_request(db, marketer_id)
    return AllowanceStatus(
        allowance=await allowance_for(db, marketer_id),
        pending_count=await store.count_pending_for_marketer(db, marketer_id),
        request_status=request.status if request else None,
    )


async def request_additional_pickup(
    db: AsyncSession,
    hierarchy: HierarchyResolver,
    marketer_id: uuid.UUID,
) -> AdditionalPickupRequest:
    await hierarchy.require_role(marketer_id, Role.MARKETER)

    existing = await _latest_open_request(db, marketer_id)
    if existing is not None:
        raise AllowanceRequestConflict(
            "You already have an active additional-pickup request",
            request_id=existing.request_id,
            request_status=existing.status,
        )

    request = AdditionalPickupRequest(marketer_id=marketer_id, status="pending")
    db.add(request)
    await db.commit()
    await db.refresh(request)
    logger.info("allowance.requested", marketer_id=str(marketer_id), request_id=str(request.request_id))
    return request


async def list_pending_requests(db: AsyncSession) -> list[AdditionalPickupRequest]:
    result = await db.execute(
        select(AdditionalPickupRequest)
        .where(AdditionalPickupRequest.status == "pending")
        .order_by(AdditionalPickupRequest.created_at.desc())
    )
    return list(result.scalars().all())


async def review_additional_pickup(
    db: AsyncSession,
    hierarchy: HierarchyResolver,
    request_id: uuid.UUID,
    reviewer_id: uuid.UUID,
    approve: bool,
) -> AdditionalPickupRequest:
    """Approve or reject a pending request (master-admin only)."""
    reviewer = await hierarchy.get_user(reviewer_id)
    if reviewer is None or reviewer.role != Role.MASTER_ADMIN.value:
        raise Forbidden("Only a master-admin may review additional-pickup requests", reviewer_id=reviewer_id)

    request = await db.get(AdditionalPickupRequest, request_id, populate_existing=True)
    if request is None:
        raise NotFound("Additional-pickup request not found", request_id=request_id)

    current_status = request.status
    new_status = "approved" if approve else "rejected"
    result = await db.execute(
        update(AdditionalPickupRequest)
        .where(AdditionalPickupRequest.request_id == request_id, AdditionalPickupRequest.status == "pending")
        .values(status=new_status, reviewed_at=datetime.utcnow(), reviewer_id=reviewer_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise InvalidTransition(
            f"Request is already {current_status}",
            request_id=request_id,
            current_status=current_status,
        )

    settings = get_settings()
    message = (
        f"Your extra-pickup request has been approved. You may now hold up to "
        f"{settings.pickup_extended_allowance} pickups."
        if approve
        else "Your extra-pickup request has been rejected. You may request again at any time."
    )
    add_notifications(db, [request.marketer_id], message)
    await db.commit()
    await db.refresh(request)

    logger.info(
        "allowance.reviewed",
        request_id=str(request_id),
        marketer_id=str(request.marketer_id),
        status=new_status,
    )
    return request
