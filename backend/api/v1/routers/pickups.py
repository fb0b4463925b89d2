"""
Pickups Router — stock pickup lifecycle, scoped reads and allowance requests.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db, get_hierarchy, get_publisher
from core.config import get_settings
from db.models import PickupRecord
from pickups import allowance as allowance_service
from pickups import queries
from pickups.countdown import present
from pickups.hierarchy import HierarchyResolver, Role
from pickups.lifecycle import PickupLifecycleEngine
from pickups.status import PickupStatus, status_label
from pickups.store import PickupFilters
from pickups.sweeper import sweep_expired_pickups
from realtime.publisher import PickupEventPublisher

router = APIRouter(prefix="/api/v1/pickups", tags=["pickups"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class PickupCreate(BaseModel):
    dealer_id: UUID
    device_name: str = Field(min_length=1, max_length=255)
    device_model: str = Field(min_length=1, max_length=255)
    quantity: int


class PickupTransfer(BaseModel):
    new_marketer_id: UUID


class PickupResponse(BaseModel):
    pickup_id: UUID
    marketer_id: UUID
    admin_id: UUID | None
    dealer_id: UUID
    stock_id: UUID
    device_name: str
    device_model: str
    quantity: int
    pickup_date: datetime
    deadline: datetime
    status: str
    location: str | None
    sold_at: datetime | None
    returned_at: datetime | None
    expired_at: datetime | None
    transferred_at: datetime | None
    transferred_to_marketer_id: UUID | None
    successor_pickup_id: UUID | None
    predecessor_pickup_id: UUID | None
    status_label: str = ""
    countdown: str = ""

    model_config = {"from_attributes": True}


class TransferResponse(BaseModel):
    original: PickupResponse
    successor: PickupResponse


class PickupSummary(BaseModel):
    total: int
    pending: int
    sold: int
    expired: int
    returned: int
    transferred: int


class SweepResponse(BaseModel):
    expired: int
    swept_at: datetime


class AllowanceResponse(BaseModel):
    marketer_id: UUID
    allowance: int
    pending_count: int
    remaining: int
    request_status: str | None


class AllowanceRequestResponse(BaseModel):
    request_id: UUID
    marketer_id: UUID
    status: str
    created_at: datetime
    reviewed_at: datetime | None
    reviewer_id: UUID | None

    model_config = {"from_attributes": True}


class AllowanceReview(BaseModel):
    approve: bool


# ─── Helpers ────────────────────────────────────────────────────────────────


def _viewer(user: dict) -> tuple[UUID, Role]:
    try:
        return UUID(str(user["sub"])), Role(user.get("role"))
    except (KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")


def _to_response(record: PickupRecord, now: datetime | None = None) -> PickupResponse:
    now = now or datetime.utcnow()
    response = PickupResponse.model_validate(record)
    response.status_label = status_label(record.status)
    response.countdown = present(record.deadline, now, record.status)
    return response


def _engine(db: AsyncSession, hierarchy: HierarchyResolver, publisher: PickupEventPublisher) -> PickupLifecycleEngine:
    return PickupLifecycleEngine(db, hierarchy=hierarchy, publisher=publisher)


# ─── Lifecycle ──────────────────────────────────────────────────────────────


@router.post("/", response_model=PickupResponse, status_code=status.HTTP_201_CREATED)
async def create_pickup(
    data: PickupCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
    publisher: PickupEventPublisher = Depends(get_publisher),
):
    """Reserve stock from a dealer and open a pending pickup for the calling marketer."""
    viewer_id, _ = _viewer(user)
    await hierarchy.require_role(viewer_id, Role.MARKETER)
    record = await _engine(db, hierarchy, publisher).create_pickup(
        viewer_id, data.dealer_id, data.device_name, data.device_model, data.quantity
    )
    return _to_response(record)


@router.post("/{pickup_id}/sale", response_model=PickupResponse)
async def confirm_sale(
    pickup_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
    publisher: PickupEventPublisher = Depends(get_publisher),
):
    viewer_id, _ = _viewer(user)
    record = await _engine(db, hierarchy, publisher).confirm_sale(pickup_id, viewer_id)
    return _to_response(record)


@router.post("/{pickup_id}/return", response_model=PickupResponse)
async def return_pickup(
    pickup_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
    publisher: PickupEventPublisher = Depends(get_publisher),
):
    """Return unsold units to the dealer's available stock (supervisors only)."""
    viewer_id, _ = _viewer(user)
    record = await _engine(db, hierarchy, publisher).return_pickup(pickup_id, viewer_id)
    return _to_response(record)


@router.post("/{pickup_id}/transfer", response_model=TransferResponse)
async def transfer_pickup(
    pickup_id: UUID,
    data: PickupTransfer,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
    publisher: PickupEventPublisher = Depends(get_publisher),
):
    """Hand a pending pickup to another marketer; the recipient gets a fresh deadline."""
    viewer_id, _ = _viewer(user)
    original, successor = await _engine(db, hierarchy, publisher).transfer_pickup(
        pickup_id, data.new_marketer_id, viewer_id
    )
    now = datetime.utcnow()
    return TransferResponse(original=_to_response(original, now), successor=_to_response(successor, now))


@router.delete("/{pickup_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_pickup(
    pickup_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
    publisher: PickupEventPublisher = Depends(get_publisher),
):
    viewer_id, _ = _viewer(user)
    await _engine(db, hierarchy, publisher).delete_pickup(pickup_id, viewer_id)


# ─── Reads ──────────────────────────────────────────────────────────────────


@router.get("/", response_model=list[PickupResponse])
async def list_pickups(
    status_filter: PickupStatus | None = Query(None, alias="status"),
    dealer_id: UUID | None = None,
    marketer_id: UUID | None = None,
    device_name: str | None = None,
    picked_up_from: datetime | None = None,
    picked_up_to: datetime | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
    publisher: PickupEventPublisher = Depends(get_publisher),
):
    """Pickups visible to the caller, newest first."""
    viewer_id, role = _viewer(user)
    now = datetime.utcnow()
    filters = PickupFilters(
        status=status_filter,
        dealer_id=dealer_id,
        marketer_id=marketer_id,
        device_name=device_name,
        picked_up_from=picked_up_from,
        picked_up_to=picked_up_to,
        skip=skip,
        limit=limit,
    )
    records = await queries.list_pickups(db, hierarchy, viewer_id, role, filters, publisher=publisher, now=now)
    return [_to_response(r, now) for r in records]


@router.get("/summary", response_model=PickupSummary)
async def get_pickup_summary(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
    publisher: PickupEventPublisher = Depends(get_publisher),
):
    viewer_id, role = _viewer(user)
    counts = await queries.summarize_pickups(db, hierarchy, viewer_id, role, publisher=publisher)
    return PickupSummary(**counts)


@router.post("/sweep", response_model=SweepResponse)
async def force_expiry_sweep(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
    publisher: PickupEventPublisher = Depends(get_publisher),
):
    """Expire every overdue pending pickup now (master-admin only)."""
    viewer_id, _ = _viewer(user)
    await hierarchy.require_role(viewer_id, Role.MASTER_ADMIN)
    now = datetime.utcnow()
    expired = await sweep_expired_pickups(
        db, now, get_settings().expiry_sweep_batch_size, hierarchy=hierarchy, publisher=publisher
    )
    return SweepResponse(expired=expired, swept_at=now)


# ─── Allowance ──────────────────────────────────────────────────────────────


@router.get("/allowance", response_model=AllowanceResponse)
async def get_allowance(
    marketer_id: UUID | None = None,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
):
    """Allowance for the calling marketer, or for any visible marketer when a supervisor asks."""
    viewer_id, role = _viewer(user)
    target = marketer_id or viewer_id
    visible = await hierarchy.resolve_visible_marketers(viewer_id, role)
    if visible is not None and target not in visible:
        raise HTTPException(status_code=404, detail="Marketer not found")

    current = await allowance_service.get_allowance(db, target)
    return AllowanceResponse(
        marketer_id=target,
        allowance=current.allowance,
        pending_count=current.pending_count,
        remaining=current.remaining,
        request_status=current.request_status,
    )


@router.post(
    "/allowance/requests",
    response_model=AllowanceRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_additional_pickup(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
):
    viewer_id, _ = _viewer(user)
    return await allowance_service.request_additional_pickup(db, hierarchy, viewer_id)


@router.get("/allowance/requests", response_model=list[AllowanceRequestResponse])
async def list_allowance_requests(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
):
    """Pending additional-pickup requests awaiting review (master-admin only)."""
    viewer_id, _ = _viewer(user)
    await hierarchy.require_role(viewer_id, Role.MASTER_ADMIN)
    return await allowance_service.list_pending_requests(db)


@router.patch("/allowance/requests/{request_id}", response_model=AllowanceRequestResponse)
async def review_allowance_request(
    request_id: UUID,
    data: AllowanceReview,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
):
    viewer_id, _ = _viewer(user)
    return await allowance_service.review_additional_pickup(db, hierarchy, request_id, viewer_id, data.approve)


# ─── Single pickup ──────────────────────────────────────────────────────────


@router.get("/{pickup_id}", response_model=PickupResponse)
async def get_pickup(
    pickup_id: UUID,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
    hierarchy: HierarchyResolver = Depends(get_hierarchy),
    publisher: PickupEventPublisher = Depends(get_publisher),
):
    viewer_id, role = _viewer(user)
    now = datetime.utcnow()
    record = await queries.get_pickup(db, hierarchy, viewer_id, role, pickup_id, publisher=publisher, now=now)
    return _to_response(record, now)
