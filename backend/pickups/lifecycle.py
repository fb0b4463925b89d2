"""
Lifecycle Engine — the pickup state machine and its ledger invariants.

  pending --confirm_sale-->    sold
  pending --return_pickup-->   returned     (reservation restored)
  pending --transfer_pickup--> transferred  (+ new pending record, reservation moves)
  pending --expire_pickup-->   expired      (deadline passed, reservation NOT restored)

Each operation is one database transaction: the status compare-and-set,
the ledger update, the successor insert and the notifications commit or
roll back together. Events are published after commit.

Expiry marks an SLA breach, not a physical return, so the units stay out of
available stock until catalog management restocks them. A sale or transfer
attempted on an overdue pickup expires it instead; a supervisor can still
take the units back with a return.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import PickupRecord
from pickups import ledger, store
from pickups.allowance import allowance_for
from pickups.errors import (
    AllowanceExceeded,
    Forbidden,
    InvalidQuantity,
    InvalidTransferTarget,
    InvalidTransition,
    LocationMismatch,
    NotFound,
    StockLedgerUnavailable,
)
from pickups.hierarchy import HierarchyResolver, Role, SqlHierarchyResolver, SupervisorChain
from pickups.notifications import (
    notify_pickup_created,
    notify_pickup_expired,
    notify_pickup_returned,
    notify_pickup_transferred,
)
from pickups.status import PickupStatus, can_transition, is_terminal
from realtime.publisher import (
    PickupEvent,
    PickupEventPublisher,
    RedisPickupEventPublisher,
    audience_channels,
    pickup_payload,
)

logger = structlog.get_logger()

DEADLINE_PASSED = "deadline_passed"


class PickupLifecycleEngine:
    """Creates pickups and drives them through the one-way state machine."""

    def __init__(
        self,
        db: AsyncSession,
        hierarchy: HierarchyResolver | None = None,
        publisher: PickupEventPublisher | None = None,
        sla_window: timedelta | None = None,
    ):
        settings = get_settings()
        self.db = db
        self.hierarchy = hierarchy or SqlHierarchyResolver(db)
        self.publisher = publisher or RedisPickupEventPublisher(settings.redis_url)
        self.sla_window = sla_window or timedelta(hours=settings.pickup_sla_hours)

    # ── Plumbing ──────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _atomic(self):
        try:
            yield
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _publish(self, event: PickupEvent, record: PickupRecord, chain: SupervisorChain, now: datetime) -> None:
        try:
            await self.publisher.publish(event, pickup_payload(record, chain, now), audience_channels(record, chain))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "realtime.publish_failed",
                pickup_event=event.value,
                pickup_id=str(record.pickup_id),
                error=str(exc),
            )

    async def _require_marketer(self, marketer_id: uuid.UUID, label: str = "Marketer"):
        user = await self.hierarchy.get_user(marketer_id)
        if user is None or user.role != Role.MARKETER.value:
            raise NotFound(f"{label} not found", marketer_id=marketer_id)
        return user

    async def _check_allowance(self, marketer_id: uuid.UUID) -> None:
        allowance = await allowance_for(self.db, marketer_id)
        pending = await store.count_pending_for_marketer(self.db, marketer_id)
        if pending >= allowance:
            raise AllowanceExceeded(
                f"Marketer has reached the pickup allowance of {allowance}",
                marketer_id=marketer_id,
                allowance=allowance,
                pending=pending,
            )

    @asynccontextmanager
    async def _pending_action(self, pickup_id: uuid.UUID, now: datetime):
        """Transaction for a sale or transfer. An overdue pickup is expired instead."""
        try:
            async with self._atomic():
                yield
        except InvalidTransition as exc:
            if exc.context.get("reason") != DEADLINE_PASSED:
                raise
            raise await self._expire_refused(pickup_id, now) from exc

    async def _expire_refused(self, pickup_id: uuid.UUID, now: datetime) -> InvalidTransition:
        try:
            record = await self.expire_pickup(pickup_id, now=now)
        except InvalidTransition as closed:
            # A sweep got there first.
            return closed
        return self._terminal_error(record, reason=DEADLINE_PASSED)

    async def _load_pending(
        self,
        pickup_id: uuid.UUID,
        actor_id: uuid.UUID,
        target: PickupStatus,
        *,
        allow_owner: bool,
        now: datetime | None = None,
    ) -> PickupRecord:
        """Load a record the actor may move to `target`. With `now`, an overdue record is refused."""
        record = await store.get(self.db, pickup_id)
        if record is None:
            raise NotFound("Stock pickup not found", pickup_id=pickup_id)
        if not await self.hierarchy.can_act_on(
            actor_id, record.marketer_id, allow_owner=allow_owner, recorded_admin_id=record.admin_id
        ):
            raise Forbidden("Actor has no authority over this pickup", pickup_id=pickup_id, actor_id=actor_id)
        if not can_transition(record.status, target):
            raise self._terminal_error(record)
        if now is not None and record.deadline < now:
            raise self._terminal_error(record, reason=DEADLINE_PASSED)
        return record

    @staticmethod
    def _terminal_error(record: PickupRecord, reason: str = "not_pending") -> InvalidTransition:
        return InvalidTransition(
            f"Pickup is already {record.status}",
            pickup_id=record.pickup_id,
            current_status=record.status,
            deadline=record.deadline,
            reason=reason,
        )

    async def _claim(self, record: PickupRecord, target: PickupStatus, *, extra_conditions: tuple = (), **values):
        if not can_transition(record.status, target):
            raise self._terminal_error(record)
        claimed = await store.claim_transition(
            self.db,
            record.pickup_id,
            expected=PickupStatus(record.status),
            target=target,
            extra_conditions=extra_conditions,
            **values,
        )
        if not claimed:
            # Lost the race: another transition landed first.
            current = await store.get(self.db, record.pickup_id)
            if current is None:
                raise NotFound("Stock pickup not found", pickup_id=record.pickup_id)
            raise self._terminal_error(current)

    # ── Operations ────────────────────────────────────────────────────────

    async def create_pickup(
        self,
        marketer_id: uuid.UUID,
        dealer_id: uuid.UUID,
        device_name: str,
        device_model: str,
        quantity: int,
        *,
        now: datetime | None = None,
    ) -> PickupRecord:
        """
        Reserve `quantity` units for a marketer and open a pending pickup.

        The decrement and the insert commit together. If the store fails the
        request is rejected rather than risking an oversell.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantity("Quantity must be a positive integer", quantity=quantity)
        now = now or datetime.utcnow()

        try:
            async with self._atomic():
                marketer = await self._require_marketer(marketer_id)
                dealer = await self.hierarchy.get_user(dealer_id)
                if dealer is None or dealer.role != Role.DEALER.value:
                    raise NotFound("Dealer not found", dealer_id=dealer_id)
                if dealer.location != marketer.location:
                    raise LocationMismatch(
                        "Cannot pick up from a dealer outside your location",
                        dealer_id=dealer_id,
                        dealer_location=dealer.location,
                        marketer_location=marketer.location,
                    )
                chain = await self.hierarchy.supervisor_chain(marketer_id)
                await self._check_allowance(marketer_id)

                stock = await ledger.reserve(
                    self.db,
                    dealer_id=dealer_id,
                    device_name=device_name,
                    device_model=device_model,
                    quantity=quantity,
                )
                record = await store.insert(
                    self.db,
                    PickupRecord(
                        pickup_id=uuid.uuid4(),
                        marketer_id=marketer_id,
                        admin_id=chain.admin_id,
                        dealer_id=dealer_id,
                        stock_id=stock.stock_id,
                        device_name=device_name,
                        device_model=device_model,
                        quantity=quantity,
                        pickup_date=now,
                        deadline=now + self.sla_window,
                        status=PickupStatus.PENDING.value,
                        location=marketer.location,
                        last_actor_id=marketer_id,
                        updated_at=now,
                    ),
                )
                notify_pickup_created(self.db, record, chain)
        except SQLAlchemyError as exc:
            logger.error("pickup.create_rejected", marketer_id=str(marketer_id), error=str(exc))
            raise StockLedgerUnavailable("Inventory ledger unavailable; pickup rejected") from exc

        logger.info(
            "pickup.created",
            pickup_id=str(record.pickup_id),
            marketer_id=str(marketer_id),
            stock_id=str(record.stock_id),
            quantity=quantity,
            deadline=record.deadline.isoformat(),
        )
        await self._publish(PickupEvent.CREATED, record, chain, now)
        return record

    async def confirm_sale(self, pickup_id: uuid.UUID, actor_id: uuid.UUID, *, now: datetime | None = None) -> PickupRecord:
        """pending → sold. Stock is consumed by the sale; the ledger is untouched."""
        now = now or datetime.utcnow()
        async with self._pending_action(pickup_id, now):
            record = await self._load_pending(pickup_id, actor_id, PickupStatus.SOLD, allow_owner=True, now=now)
            await self._claim(record, PickupStatus.SOLD, sold_at=now, last_actor_id=actor_id)
            record = await store.get(self.db, pickup_id)
            chain = await self.hierarchy.supervisor_chain(record.marketer_id)

        logger.info("pickup.sold", pickup_id=str(pickup_id), actor_id=str(actor_id))
        await self._publish(PickupEvent.UPDATED, record, chain, now)
        return record

    async def return_pickup(self, pickup_id: uuid.UUID, actor_id: uuid.UUID, *, now: datetime | None = None) -> PickupRecord:
        """
        pending → returned, restoring the reservation to available stock.

        Allowed past the deadline: a return is how overdue units get back on
        the shelf.
        """
        now = now or datetime.utcnow()
        async with self._atomic():
            record = await self._load_pending(pickup_id, actor_id, PickupStatus.RETURNED, allow_owner=False)
            await self._claim(record, PickupStatus.RETURNED, returned_at=now, last_actor_id=actor_id)
            record = await store.get(self.db, pickup_id)
            await ledger.release(self.db, stock_id=record.stock_id, quantity=record.quantity)
            notify_pickup_returned(self.db, record)
            chain = await self.hierarchy.supervisor_chain(record.marketer_id)

        logger.info("pickup.returned", pickup_id=str(pickup_id), actor_id=str(actor_id), quantity=record.quantity)
        await self._publish(PickupEvent.UPDATED, record, chain, now)
        return record

    async def transfer_pickup(
        self,
        pickup_id: uuid.UUID,
        new_marketer_id: uuid.UUID,
        actor_id: uuid.UUID,
        *,
        now: datetime | None = None,
    ) -> tuple[PickupRecord, PickupRecord]:
        """
        pending → transferred, plus a fresh pending record for the recipient.

        The reservation moves with the units: the ledger is not touched, and the
        original is closed and its successor inserted in one transaction.
        """
        now = now or datetime.utcnow()
        async with self._pending_action(pickup_id, now):
            record = await self._load_pending(
                pickup_id, actor_id, PickupStatus.TRANSFERRED, allow_owner=False, now=now
            )
            if new_marketer_id == record.marketer_id:
                raise InvalidTransferTarget(
                    "Pickup already belongs to this marketer", pickup_id=pickup_id, marketer_id=new_marketer_id
                )
            recipient = await self._require_marketer(new_marketer_id, label="Target marketer")
            if recipient.location != record.location:
                raise LocationMismatch(
                    "Transfers must stay within the same location",
                    pickup_id=pickup_id,
                    location=record.location,
                    target_location=recipient.location,
                )
            recipient_chain = await self.hierarchy.supervisor_chain(new_marketer_id)
            await self._check_allowance(new_marketer_id)

            successor_id = uuid.uuid4()
            await self._claim(
                record,
                PickupStatus.TRANSFERRED,
                transferred_at=now,
                transferred_to_marketer_id=new_marketer_id,
                successor_pickup_id=successor_id,
                last_actor_id=actor_id,
            )
            successor = await store.insert(
                self.db,
                PickupRecord(
                    pickup_id=successor_id,
                    marketer_id=new_marketer_id,
                    admin_id=recipient_chain.admin_id,
                    dealer_id=record.dealer_id,
                    stock_id=record.stock_id,
                    device_name=record.device_name,
                    device_model=record.device_model,
                    quantity=record.quantity,
                    pickup_date=now,
                    deadline=now + self.sla_window,
                    status=PickupStatus.PENDING.value,
                    location=recipient.location,
                    predecessor_pickup_id=record.pickup_id,
                    last_actor_id=actor_id,
                    updated_at=now,
                ),
            )
            original = await store.get(self.db, pickup_id)
            notify_pickup_transferred(self.db, original, successor)
            original_chain = await self.hierarchy.supervisor_chain(original.marketer_id)

        logger.info(
            "pickup.transferred",
            pickup_id=str(pickup_id),
            successor_pickup_id=str(successor_id),
            from_marketer_id=str(original.marketer_id),
            to_marketer_id=str(new_marketer_id),
            actor_id=str(actor_id),
        )
        await self._publish(PickupEvent.UPDATED, original, original_chain, now)
        await self._publish(PickupEvent.CREATED, successor, recipient_chain, now)
        return original, successor

    async def expire_pickup(self, pickup_id: uuid.UUID, *, now: datetime | None = None) -> PickupRecord:
        """
        pending → expired once the deadline has passed.

        Internal: driven by the expiry sweeper and by read-time checks, never by
        a user request. Inventory is not restored.
        """
        now = now or datetime.utcnow()
        async with self._atomic():
            record = await store.get(self.db, pickup_id)
            if record is None:
                raise NotFound("Stock pickup not found", pickup_id=pickup_id)
            if not can_transition(record.status, PickupStatus.EXPIRED):
                raise self._terminal_error(record)
            if record.deadline >= now:
                raise self._terminal_error(record, reason="deadline_not_passed")
            await self._claim(
                record,
                PickupStatus.EXPIRED,
                extra_conditions=(PickupRecord.deadline < now,),
                expired_at=now,
            )
            record = await store.get(self.db, pickup_id)
            chain = await self.hierarchy.supervisor_chain(record.marketer_id)
            await notify_pickup_expired(
                self.db, record, chain, self.hierarchy, int(self.sla_window.total_seconds() // 3600)
            )

        logger.info(
            "pickup.expired",
            pickup_id=str(pickup_id),
            marketer_id=str(record.marketer_id),
            deadline=record.deadline.isoformat(),
        )
        await self._publish(PickupEvent.UPDATED, record, chain, now)
        return record

    async def delete_pickup(self, pickup_id: uuid.UUID, actor_id: uuid.UUID, *, now: datetime | None = None) -> None:
        """Remove a closed pickup (master-admin only). Pending pickups hold a reservation and cannot be deleted."""
        now = now or datetime.utcnow()
        async with self._atomic():
            actor = await self.hierarchy.get_user(actor_id)
            if actor is None or actor.role != Role.MASTER_ADMIN.value:
                raise Forbidden("Only a master-admin may delete pickups", pickup_id=pickup_id, actor_id=actor_id)
            record = await store.get(self.db, pickup_id)
            if record is None:
                raise NotFound("Stock pickup not found", pickup_id=pickup_id)
            if not is_terminal(record.status):
                raise self._terminal_error(record, reason="pending_holds_reservation")
            chain = await self.hierarchy.supervisor_chain(record.marketer_id)
            await store.delete(self.db, record)

        logger.info("pickup.deleted", pickup_id=str(pickup_id), actor_id=str(actor_id))
        await self._publish(PickupEvent.DELETED, record, chain, now)
