"""
Tests for the pickup lifecycle engine: creation, the one-way state machine,
ledger conservation, transfer atomicity and authority checks.
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from conftest import SKU, T0, FailingPublisher
from db.models import Notification, PickupRecord
from pickups import ledger, store
from pickups.errors import (
    AllowanceExceeded,
    Forbidden,
    InsufficientStock,
    InvalidQuantity,
    InvalidTransferTarget,
    InvalidTransition,
    LocationMismatch,
    NotFound,
    StockLedgerUnavailable,
)
from pickups.lifecycle import PickupLifecycleEngine
from pickups.status import PickupStatus, can_transition


async def _available(db, org) -> int:
    stock = await ledger.get_stock_by_id(db, org["stock"].stock_id)
    return stock.available_quantity


async def _conserved(db, org) -> bool:
    """overall == available + units held by pending, sold or expired records."""
    stock = await ledger.get_stock_by_id(db, org["stock"].stock_id)
    result = await db.execute(
        select(func.coalesce(func.sum(PickupRecord.quantity), 0)).where(
            PickupRecord.stock_id == stock.stock_id,
            PickupRecord.status.in_(["pending", "sold", "expired"]),
        )
    )
    return stock.overall_quantity == stock.available_quantity + int(result.scalar())


async def _create(engine, org, marketer="marketer_a", quantity=1, now=T0):
    return await engine.create_pickup(
        org[marketer].user_id, org["dealer"].user_id, SKU["device_name"], SKU["device_model"], quantity, now=now
    )


@pytest.mark.asyncio
class TestCreatePickup:
    async def test_reserves_stock_and_sets_deadline(self, engine, org, test_db, publisher):
        record = await _create(engine, org, quantity=2)

        assert record.status == PickupStatus.PENDING.value
        assert record.pickup_date == T0
        assert record.deadline == T0 + timedelta(hours=48)
        assert record.admin_id == org["admin"].user_id
        assert record.location == "Lagos"
        assert await _available(test_db, org) == 1
        assert await _conserved(test_db, org)
        assert publisher.types() == ["pickup_created"]

    async def test_insufficient_stock_reports_available(self, engine, org, test_db):
        with pytest.raises(InsufficientStock) as exc_info:
            await _create(engine, org, quantity=4)

        assert exc_info.value.context["available"] == 3
        assert exc_info.value.context["requested"] == 4
        assert await _available(test_db, org) == 3

    @pytest.mark.parametrize("quantity", [0, -1, True, 1.5])
    async def test_invalid_quantity(self, engine, org, quantity):
        with pytest.raises(InvalidQuantity):
            await _create(engine, org, quantity=quantity)

    async def test_unknown_sku(self, engine, org):
        with pytest.raises(NotFound):
            await engine.create_pickup(org["marketer_a"].user_id, org["dealer"].user_id, "Nokia", "3310", 1, now=T0)

    async def test_non_marketer_cannot_pick_up(self, engine, org):
        with pytest.raises(NotFound):
            await _create(engine, org, marketer="admin")

    async def test_allowance_blocks_second_pending(self, engine, org, test_db):
        await _create(engine, org)
        with pytest.raises(AllowanceExceeded) as exc_info:
            await _create(engine, org)

        assert exc_info.value.context["allowance"] == 1
        assert await _available(test_db, org) == 2

    async def test_notifies_admin(self, engine, org, test_db):
        record = await _create(engine, org)

        result = await test_db.execute(select(Notification).where(Notification.pickup_id == record.pickup_id))
        notes = result.scalars().all()
        assert [n.user_id for n in notes] == [org["admin"].user_id]

    async def test_publish_failure_does_not_fail_create(self, test_db, org):
        engine = PickupLifecycleEngine(test_db, publisher=FailingPublisher())
        record = await _create(engine, org)

        stored = await store.get(test_db, record.pickup_id)
        assert stored.status == "pending"
        assert await _available(test_db, org) == 2

    async def test_store_failure_rejects_create(self, engine, org, test_db, publisher, monkeypatch):
        async def broken_insert(db, record):
            raise OperationalError("INSERT INTO pickup_records", {}, Exception("database is locked"))

        monkeypatch.setattr(store, "insert", broken_insert)
        with pytest.raises(StockLedgerUnavailable):
            await _create(engine, org, quantity=2)

        assert await _available(test_db, org) == 3
        count = await test_db.execute(select(func.count(PickupRecord.pickup_id)))
        assert count.scalar() == 0
        assert publisher.events == []

    async def test_dealer_outside_location_is_rejected(self, engine, org, test_db):
        with pytest.raises(LocationMismatch) as exc_info:
            await _create(engine, org, marketer="marketer_c")

        assert exc_info.value.context["marketer_location"] == "Ikeja"
        assert exc_info.value.context["dealer_location"] == "Lagos"
        assert await _available(test_db, org) == 3

    async def test_unknown_dealer(self, engine, org):
        with pytest.raises(NotFound):
            await engine.create_pickup(
                org["marketer_a"].user_id, uuid.uuid4(), SKU["device_name"], SKU["device_model"], 1, now=T0
            )


@pytest.mark.asyncio
class TestConfirmSale:
    async def test_owner_confirms_sale(self, engine, org, test_db, publisher):
        record = await _create(engine, org, quantity=2)
        sold = await engine.confirm_sale(record.pickup_id, org["marketer_a"].user_id, now=T0 + timedelta(hours=5))

        assert sold.status == "sold"
        assert sold.sold_at == T0 + timedelta(hours=5)
        assert sold.last_actor_id == org["marketer_a"].user_id
        assert await _available(test_db, org) == 1
        assert await _conserved(test_db, org)
        assert publisher.types() == ["pickup_created", "pickup_updated"]

    async def test_supervisor_confirms_sale(self, engine, org):
        record = await _create(engine, org)
        sold = await engine.confirm_sale(record.pickup_id, org["super_admin"].user_id, now=T0)
        assert sold.status == "sold"

    async def test_other_marketer_is_forbidden(self, engine, org):
        record = await _create(engine, org)
        with pytest.raises(Forbidden):
            await engine.confirm_sale(record.pickup_id, org["marketer_b"].user_id)

    async def test_admin_of_other_chain_is_forbidden(self, engine, org):
        record = await _create(engine, org)
        with pytest.raises(Forbidden):
            await engine.confirm_sale(record.pickup_id, org["admin_2"].user_id)

    async def test_unknown_pickup(self, engine, org):
        with pytest.raises(NotFound):
            await engine.confirm_sale(uuid.uuid4(), org["master"].user_id)


@pytest.mark.asyncio
class TestReturnPickup:
    async def test_return_restores_stock(self, engine, org, test_db):
        record = await _create(engine, org, quantity=2)
        returned = await engine.return_pickup(record.pickup_id, org["admin"].user_id, now=T0 + timedelta(hours=1))

        assert returned.status == "returned"
        assert returned.returned_at == T0 + timedelta(hours=1)
        assert await _available(test_db, org) == 3
        assert await _conserved(test_db, org)

    async def test_owner_cannot_return(self, engine, org, test_db):
        record = await _create(engine, org)
        with pytest.raises(Forbidden):
            await engine.return_pickup(record.pickup_id, org["marketer_a"].user_id)
        assert await _available(test_db, org) == 2

    async def test_return_notifies_marketer(self, engine, org, test_db):
        record = await _create(engine, org)
        await engine.return_pickup(record.pickup_id, org["master"].user_id)

        result = await test_db.execute(
            select(Notification.user_id).where(
                Notification.pickup_id == record.pickup_id,
                Notification.user_id == org["marketer_a"].user_id,
            )
        )
        assert result.scalar_one() == org["marketer_a"].user_id


@pytest.mark.asyncio
class TestTransferPickup:
    async def test_transfer_closes_original_and_opens_successor(self, engine, org, test_db, publisher):
        record = await _create(engine, org, quantity=2)
        later = T0 + timedelta(hours=20)
        original, successor = await engine.transfer_pickup(
            record.pickup_id, org["marketer_b"].user_id, org["admin"].user_id, now=later
        )

        assert original.status == "transferred"
        assert original.transferred_to_marketer_id == org["marketer_b"].user_id
        assert original.successor_pickup_id == successor.pickup_id
        assert successor.status == "pending"
        assert successor.marketer_id == org["marketer_b"].user_id
        assert successor.predecessor_pickup_id == original.pickup_id
        assert successor.quantity == 2
        assert successor.stock_id == original.stock_id
        assert successor.deadline == later + timedelta(hours=48)
        assert await _available(test_db, org) == 1
        assert await _conserved(test_db, org)
        assert publisher.types()[-2:] == ["pickup_updated", "pickup_created"]

    async def test_transfer_to_same_marketer(self, engine, org):
        record = await _create(engine, org)
        with pytest.raises(InvalidTransferTarget):
            await engine.transfer_pickup(record.pickup_id, org["marketer_a"].user_id, org["admin"].user_id, now=T0)

    async def test_transfer_to_non_marketer(self, engine, org):
        record = await _create(engine, org)
        with pytest.raises(NotFound):
            await engine.transfer_pickup(record.pickup_id, org["admin_2"].user_id, org["admin"].user_id, now=T0)

    async def test_failed_transfer_leaves_original_pending(self, engine, org, test_db):
        await _create(engine, org, marketer="marketer_b")
        record = await _create(engine, org, marketer="marketer_a")
        pickup_id = record.pickup_id

        with pytest.raises(AllowanceExceeded):
            await engine.transfer_pickup(pickup_id, org["marketer_b"].user_id, org["admin"].user_id, now=T0)

        original = await store.get(test_db, pickup_id)
        assert original.status == "pending"
        assert original.successor_pickup_id is None
        count = await test_db.execute(select(func.count(PickupRecord.pickup_id)))
        assert count.scalar() == 2
        assert await _conserved(test_db, org)

    async def test_marketer_cannot_transfer(self, engine, org):
        record = await _create(engine, org)
        with pytest.raises(Forbidden):
            await engine.transfer_pickup(record.pickup_id, org["marketer_b"].user_id, org["marketer_a"].user_id)

    async def test_transfer_must_stay_in_location(self, engine, org, test_db):
        record = await _create(engine, org)
        pickup_id = record.pickup_id

        with pytest.raises(LocationMismatch):
            await engine.transfer_pickup(pickup_id, org["marketer_c"].user_id, org["admin"].user_id, now=T0)

        original = await store.get(test_db, pickup_id)
        assert original.status == "pending"
        assert original.successor_pickup_id is None


@pytest.mark.asyncio
class TestOverduePickups:
    async def test_sale_past_deadline_expires_instead(self, engine, org, test_db, publisher):
        record = await _create(engine, org, quantity=2)
        pickup_id = record.pickup_id
        late = T0 + timedelta(hours=200)

        with pytest.raises(InvalidTransition) as exc_info:
            await engine.confirm_sale(pickup_id, org["marketer_a"].user_id, now=late)

        assert exc_info.value.context["reason"] == "deadline_passed"
        assert exc_info.value.context["current_status"] == "expired"
        stored = await store.get(test_db, pickup_id)
        assert stored.status == "expired"
        assert stored.expired_at == late
        assert stored.sold_at is None
        assert await _available(test_db, org) == 1
        assert publisher.types() == ["pickup_created", "pickup_updated"]

    async def test_transfer_past_deadline_expires_instead(self, engine, org, test_db):
        record = await _create(engine, org)
        pickup_id = record.pickup_id

        with pytest.raises(InvalidTransition) as exc_info:
            await engine.transfer_pickup(
                pickup_id, org["marketer_b"].user_id, org["admin"].user_id, now=T0 + timedelta(hours=200)
            )

        assert exc_info.value.context["reason"] == "deadline_passed"
        assert (await store.get(test_db, pickup_id)).status == "expired"
        assert await store.count_pending_for_marketer(test_db, org["marketer_b"].user_id) == 0

    async def test_sale_just_before_deadline(self, engine, org):
        record = await _create(engine, org)
        sold = await engine.confirm_sale(record.pickup_id, org["admin"].user_id, now=T0 + timedelta(hours=48))
        assert sold.status == "sold"

    async def test_overdue_units_can_still_be_returned(self, engine, org, test_db):
        record = await _create(engine, org, quantity=2)
        returned = await engine.return_pickup(
            record.pickup_id, org["admin"].user_id, now=T0 + timedelta(hours=200)
        )

        assert returned.status == "returned"
        assert await _available(test_db, org) == 3


@pytest.mark.asyncio
class TestOneWayStateMachine:
    async def _closed(self, engine, org, how):
        record = await _create(engine, org)
        if how == "sold":
            await engine.confirm_sale(record.pickup_id, org["admin"].user_id, now=T0)
        elif how == "returned":
            await engine.return_pickup(record.pickup_id, org["admin"].user_id)
        elif how == "transferred":
            await engine.transfer_pickup(record.pickup_id, org["marketer_b"].user_id, org["admin"].user_id, now=T0)
        elif how == "expired":
            await engine.expire_pickup(record.pickup_id, now=T0 + timedelta(hours=49))
        return record.pickup_id

    @pytest.mark.parametrize("how", ["sold", "returned", "transferred", "expired"])
    async def test_no_transition_out_of_terminal(self, engine, org, test_db, how):
        pickup_id = await self._closed(engine, org, how)
        available = await _available(test_db, org)
        actor = org["master"].user_id

        with pytest.raises(InvalidTransition) as exc_info:
            await engine.confirm_sale(pickup_id, actor)
        assert exc_info.value.context["current_status"] == how
        assert exc_info.value.context["deadline"] == T0 + timedelta(hours=48)

        with pytest.raises(InvalidTransition):
            await engine.return_pickup(pickup_id, actor)
        with pytest.raises(InvalidTransition):
            await engine.transfer_pickup(pickup_id, org["marketer_d"].user_id, actor)
        with pytest.raises(InvalidTransition):
            await engine.expire_pickup(pickup_id, now=T0 + timedelta(days=10))

        stored = await store.get(test_db, pickup_id)
        assert stored.status == how
        assert await _available(test_db, org) == available


def test_transition_table():
    assert can_transition("pending", "sold")
    assert not can_transition("sold", "pending")
    assert not can_transition("expired", "returned")


@pytest.mark.asyncio
class TestExpireAndDelete:
    async def test_expire_before_deadline_is_rejected(self, engine, org):
        record = await _create(engine, org)
        with pytest.raises(InvalidTransition) as exc_info:
            await engine.expire_pickup(record.pickup_id, now=T0 + timedelta(hours=48))
        assert exc_info.value.context["reason"] == "deadline_not_passed"

    async def test_expire_keeps_stock_reserved(self, engine, org, test_db):
        record = await _create(engine, org, quantity=2)
        expired = await engine.expire_pickup(record.pickup_id, now=T0 + timedelta(hours=49))

        assert expired.status == "expired"
        assert expired.expired_at == T0 + timedelta(hours=49)
        assert await _available(test_db, org) == 1
        assert await _conserved(test_db, org)

    async def test_expire_notifies_chain_and_master(self, engine, org, test_db):
        record = await _create(engine, org)
        await engine.expire_pickup(record.pickup_id, now=T0 + timedelta(hours=49))

        result = await test_db.execute(
            select(Notification.user_id).where(
                Notification.pickup_id == record.pickup_id,
                Notification.user_id != org["admin"].user_id,
            )
        )
        assert set(result.scalars().all()) == {org["master"].user_id, org["super_admin"].user_id}

    async def test_delete_requires_master_and_terminal(self, engine, org, test_db, publisher):
        record = await _create(engine, org)
        pickup_id = record.pickup_id

        with pytest.raises(InvalidTransition):
            await engine.delete_pickup(pickup_id, org["master"].user_id)

        await engine.confirm_sale(pickup_id, org["admin"].user_id, now=T0)
        with pytest.raises(Forbidden):
            await engine.delete_pickup(pickup_id, org["admin"].user_id)

        await engine.delete_pickup(pickup_id, org["master"].user_id)
        assert await store.get(test_db, pickup_id) is None
        assert publisher.types()[-1] == "pickup_deleted"
