"""
Driver pickup batching tests.

Verifies:
- Only dirty or long-on-test cycles can be queued for a driver
- Completing a batch touches exactly the listed cycles
- Atomic batches are all-or-nothing; non-atomic batches commit the
  valid items and report the rest
- Pickups close once every cycle on them is completed
"""

import pytest

from matcycle.extensions import db
from matcycle.models import DriverPickup, DriverPickupItem
from matcycle.services import cycle_service, pickup_service
from matcycle.services.code_service import PreconditionFailed
from matcycle.services.cycle_service import InvalidTransition
from matcycle.services.pickup_service import PartialBatchFailure
from matcycle.validation import NotFoundError, ValidationError


@pytest.fixture
def dirty_cycle(make_cycle):
    def _make():
        return cycle_service.mark_dirty(make_cycle().id)
    return _make


def _status(cycle_id):
    db.session.expire_all()
    return cycle_service.get_cycle(cycle_id).status


class TestCreatePickup:

    def test_queues_dirty_cycles(self, dirty_cycle):
        a, b = dirty_cycle(), dirty_cycle()

        pickup = pickup_service.create_pickup(
            [a.id, b.id], notes="Route north", created_by="op", assigned_driver="Janez"
        )

        assert pickup.status == "pending"
        assert [i.cycle_id for i in pickup.items] == [a.id, b.id]
        assert all(not i.picked_up for i in pickup.items)
        assert _status(a.id) == "waiting_driver"
        assert _status(b.id) == "waiting_driver"
        assert cycle_service.get_cycle(a.id).pickup_requested_at is not None

    def test_long_on_test_cycle_is_eligible(self, make_cycle):
        cycle = make_cycle(days_ago=20)
        pickup_service.create_pickup([cycle.id])
        assert _status(cycle.id) == "waiting_driver"

    def test_ineligible_cycle_rejects_whole_batch(self, dirty_cycle, make_cycle):
        ok = dirty_cycle()
        fresh = make_cycle(days_ago=2)

        with pytest.raises(InvalidTransition):
            pickup_service.create_pickup([ok.id, fresh.id])

        assert _status(ok.id) == "dirty"
        assert _status(fresh.id) == "on_test"
        assert db.session.query(DriverPickup).count() == 0
        assert db.session.query(DriverPickupItem).count() == 0

    def test_contract_signed_cycle_is_not_long_on_test(self, make_cycle):
        cycle = make_cycle(days_ago=30)
        cycle_service.sign_contract(cycle.id)
        with pytest.raises(InvalidTransition):
            pickup_service.create_pickup([cycle.id])

    def test_cycle_cannot_be_queued_twice(self, dirty_cycle):
        cycle = dirty_cycle()
        pickup_service.create_pickup([cycle.id])
        with pytest.raises(InvalidTransition):
            pickup_service.create_pickup([cycle.id])
        assert db.session.query(DriverPickup).count() == 1

    @pytest.mark.parametrize("ids", [[], [1, 1], ["x"], None])
    def test_bad_id_lists(self, db_session, ids):
        with pytest.raises(ValidationError):
            pickup_service.create_pickup(ids)

    def test_unknown_cycle(self, db_session):
        with pytest.raises(NotFoundError):
            pickup_service.create_pickup([4242])


class TestCompletePickup:

    def test_completes_exactly_the_listed_cycles(self, dirty_cycle):
        a, b = dirty_cycle(), dirty_cycle()
        pickup = pickup_service.create_pickup([a.id, b.id])

        result = pickup_service.complete_pickup([a.id], performed_by="driver")

        assert result.ok
        assert result.completed == [a.id]
        assert result.closed_pickups == []
        assert _status(a.id) == "completed"
        assert _status(b.id) == "waiting_driver"
        assert cycle_service.get_cycle(a.id).qr_code.status == "available"
        assert cycle_service.get_cycle(b.id).qr_code.status == "active"

        pickup = pickup_service.get_pickup(pickup.id)
        assert pickup.status == "in_progress"
        assert {i.cycle_id: i.picked_up for i in pickup.items} == {a.id: True, b.id: False}

    def test_last_cycle_closes_pickup(self, dirty_cycle):
        a, b = dirty_cycle(), dirty_cycle()
        pickup = pickup_service.create_pickup([a.id, b.id])
        pickup_service.complete_pickup([a.id])

        result = pickup_service.complete_pickup([b.id])

        assert result.closed_pickups == [pickup.id]
        pickup = pickup_service.get_pickup(pickup.id)
        assert pickup.status == "completed"
        assert pickup.completed_at is not None

    def test_atomic_batch_rejects_on_one_bad_id(self, dirty_cycle):
        a = dirty_cycle()
        b = dirty_cycle()
        pickup_service.create_pickup([a.id])

        with pytest.raises(InvalidTransition):
            pickup_service.complete_pickup([a.id, b.id])

        assert _status(a.id) == "waiting_driver"
        assert _status(b.id) == "dirty"

    def test_atomic_batch_unknown_id(self, dirty_cycle):
        a = dirty_cycle()
        pickup_service.create_pickup([a.id])
        with pytest.raises(NotFoundError):
            pickup_service.complete_pickup([a.id, 999])
        assert _status(a.id) == "waiting_driver"

    def test_non_atomic_batch_commits_valid_items(self, dirty_cycle):
        a, b, c = dirty_cycle(), dirty_cycle(), dirty_cycle()
        pickup_service.create_pickup([a.id, b.id])

        with pytest.raises(PartialBatchFailure) as excinfo:
            pickup_service.complete_pickup([a.id, c.id, 999, b.id], atomic=False)

        result = excinfo.value.result
        assert result.completed == [a.id, b.id]
        assert set(result.failed) == {c.id, 999}
        assert "dirty" in result.failed[c.id]
        assert len(result.closed_pickups) == 1

        assert _status(a.id) == "completed"
        assert _status(b.id) == "completed"
        assert _status(c.id) == "dirty"

        body = result.to_dict()
        assert [f["cycle_id"] for f in body["failed"]] == [c.id, 999]

    def test_non_atomic_batch_without_failures(self, dirty_cycle):
        a = dirty_cycle()
        pickup_service.create_pickup([a.id])
        result = pickup_service.complete_pickup([a.id], atomic=False)
        assert result.ok
        assert result.completed == [a.id]

    def test_completed_cycle_cannot_be_completed_again(self, dirty_cycle):
        a = dirty_cycle()
        pickup_service.create_pickup([a.id])
        pickup_service.complete_pickup([a.id])
        with pytest.raises(InvalidTransition):
            pickup_service.complete_pickup([a.id])


class TestCompletePickupById:

    def test_completes_outstanding_cycles(self, dirty_cycle):
        a, b = dirty_cycle(), dirty_cycle()
        pickup = pickup_service.create_pickup([a.id, b.id])
        cycle_service.confirm_driver_pickup(a.id)

        pickup = pickup_service.complete_pickup_by_id(pickup.id, performed_by="driver")

        assert pickup.status == "completed"
        assert _status(a.id) == "completed"
        assert _status(b.id) == "completed"
        assert all(i.picked_up for i in pickup_service.get_pickup(pickup.id).items)

    def test_already_completed(self, dirty_cycle):
        a = dirty_cycle()
        pickup = pickup_service.create_pickup([a.id])
        pickup_service.complete_pickup_by_id(pickup.id)
        with pytest.raises(InvalidTransition):
            pickup_service.complete_pickup_by_id(pickup.id)

    def test_unknown_pickup(self, db_session):
        with pytest.raises(NotFoundError):
            pickup_service.complete_pickup_by_id(77)


class TestConfirmSingleCycle:

    def test_confirming_only_cycle_closes_pickup(self, dirty_cycle):
        cycle = dirty_cycle()
        pickup = pickup_service.create_pickup([cycle.id])

        cycle_service.confirm_driver_pickup(cycle.id, performed_by="driver")

        db.session.expire_all()
        pickup = pickup_service.get_pickup(pickup.id)
        assert pickup.status == "completed"
        assert pickup.completed_at is not None
        assert [i.picked_up for i in pickup.items] == [True]
        assert pickup.items[0].picked_up_at is not None

    def test_confirming_one_of_two_starts_pickup(self, dirty_cycle):
        a, b = dirty_cycle(), dirty_cycle()
        pickup = pickup_service.create_pickup([a.id, b.id])

        cycle_service.confirm_driver_pickup(a.id)

        db.session.expire_all()
        pickup = pickup_service.get_pickup(pickup.id)
        assert pickup.status == "in_progress"
        assert {i.cycle_id: i.picked_up for i in pickup.items} == {a.id: True, b.id: False}

        cycle_service.confirm_driver_pickup(b.id)
        db.session.expire_all()
        assert pickup_service.get_pickup(pickup.id).status == "completed"


class TestPickupItems:

    def test_checkbox_does_not_move_cycles(self, dirty_cycle):
        a = dirty_cycle()
        pickup = pickup_service.create_pickup([a.id])
        item_id = pickup.items[0].id

        item = pickup_service.mark_item_picked_up(item_id, True, notes="Back door")

        assert item.picked_up is True
        assert item.picked_up_at is not None
        assert item.notes == "Back door"
        assert item.pickup.status == "in_progress"
        assert _status(a.id) == "waiting_driver"

        item = pickup_service.mark_item_picked_up(item_id, False)
        assert item.picked_up is False
        assert item.picked_up_at is None

    def test_closed_pickup_items_are_frozen(self, dirty_cycle):
        a = dirty_cycle()
        pickup = pickup_service.create_pickup([a.id])
        item_id = pickup.items[0].id
        pickup_service.complete_pickup_by_id(pickup.id)

        with pytest.raises(PreconditionFailed):
            pickup_service.mark_item_picked_up(item_id, False)

    def test_picked_up_must_be_boolean(self, db_session):
        with pytest.raises(ValidationError):
            pickup_service.mark_item_picked_up(1, "yes")


class TestPickupStatus:

    def test_moves_forward_only(self, dirty_cycle):
        a = dirty_cycle()
        pickup = pickup_service.create_pickup([a.id])

        pickup = pickup_service.update_pickup_status(pickup.id, "in_progress")
        assert pickup.status == "in_progress"

        with pytest.raises(InvalidTransition):
            pickup_service.update_pickup_status(pickup.id, "pending")

    def test_completing_closes_cycles(self, dirty_cycle):
        a = dirty_cycle()
        pickup = pickup_service.create_pickup([a.id])

        pickup = pickup_service.update_pickup_status(pickup.id, "completed")

        assert pickup.status == "completed"
        assert _status(a.id) == "completed"

    def test_invalid_status(self, dirty_cycle):
        pickup = pickup_service.create_pickup([dirty_cycle().id])
        with pytest.raises(ValidationError):
            pickup_service.update_pickup_status(pickup.id, "lost")

    def test_list_filters(self, dirty_cycle):
        first = pickup_service.create_pickup([dirty_cycle().id])
        second = pickup_service.create_pickup([dirty_cycle().id])
        pickup_service.complete_pickup_by_id(first.id)

        assert [p.id for p in pickup_service.list_pickups(status="pending")] == [second.id]
        assert {p.id for p in pickup_service.list_pickups()} == {first.id, second.id}
