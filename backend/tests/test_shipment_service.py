"""
Shipment request workflow tests (pending -> approved).
"""

import pytest

from matcycle.extensions import db
from matcycle.models import QRCode, ShipmentRequest
from matcycle.services import allocation_service, code_service, concurrency, shipment_service
from matcycle.services.allocation_service import AllocationConflict
from matcycle.services.cycle_service import InvalidTransition
from matcycle.validation import NotFoundError, ValidationError


class TestCreateRequest:

    def test_pending_request_persisted(self, seller, mat_types):
        request = shipment_service.create_request(
            seller.id, {"mbw2": 3, "MBW1": 2}, created_by="seller-ui", notes="for Ljubljana"
        )
        assert request.status == "pending"
        assert request.quantities == {"MBW2": 3, "MBW1": 2}
        assert request.total_quantity == 5
        assert request.generated_qr_codes is None

    @pytest.mark.parametrize(
        "quantities",
        [
            {},
            None,
            [("MBW2", 1)],
            {"MBW2": 0},
            {"MBW2": -3},
            {"MBW2": True},
            {"MBW2": "three"},
            {"MBW2": 1.5},
            {"": 2},
        ],
    )
    def test_invalid_quantities_rejected(self, seller, mat_types, quantities):
        with pytest.raises(ValidationError):
            shipment_service.create_request(seller.id, quantities)
        assert db.session.query(ShipmentRequest).count() == 0

    def test_unknown_mat_type_rejected(self, seller, mat_types):
        with pytest.raises(ValidationError, match="XXL"):
            shipment_service.create_request(seller.id, {"MBW2": 1, "XXL": 1})

    def test_unknown_seller(self, db_session, mat_types):
        with pytest.raises(NotFoundError):
            shipment_service.create_request(4242, {"MBW2": 1})


class TestApproveRequest:

    def test_existing_codes_then_approval(self, seller, mat_types):
        code_service.generate_codes(seller.id, 10)
        request = shipment_service.create_request(seller.id, {"MBW2": 3})

        approved = shipment_service.approve_request(request.id, approved_by="admin-7")

        assert approved.status == "approved"
        assert approved.generated_qr_codes == ["RIS-011", "RIS-012", "RIS-013"]
        assert approved.approved_by == "admin-7"
        assert approved.approved_at is not None

        seller = code_service.get_seller(seller.id)
        assert (seller.range_start, seller.range_end) == (1, 13)

    def test_approval_creates_reserved_codes(self, seller, mat_types):
        request = shipment_service.create_request(seller.id, {"MBW2": 2, "MBW1": 1})
        shipment_service.approve_request(request.id, approved_by="op")

        codes = code_service.list_codes(seller.id)
        assert [c.code for c in codes] == ["RIS-001", "RIS-002", "RIS-003"]
        assert {c.state for c in codes} == {"reserved"}
        assert {c.status for c in codes} == {"pending"}
        assert {c.shipment_request_id for c in codes} == {request.id}

    def test_approval_is_irreversible(self, seller, mat_types):
        request = shipment_service.create_request(seller.id, {"MBW2": 1})
        shipment_service.approve_request(request.id, approved_by="op")

        with pytest.raises(InvalidTransition, match="current status is .approved."):
            shipment_service.approve_request(request.id, approved_by="op")
        assert db.session.query(QRCode).count() == 1

    def test_seller_without_prefix(self, db_session, mat_types):
        bare = code_service.create_seller("No Prefix")
        request = shipment_service.create_request(bare.id, {"MBW2": 1})
        with pytest.raises(ValidationError):
            shipment_service.approve_request(request.id, approved_by="op")
        assert shipment_service.get_request(request.id).status == "pending"

    def test_unknown_request(self, db_session):
        with pytest.raises(NotFoundError):
            shipment_service.approve_request(999, approved_by="op")

    def test_approvals_in_sequence_never_overlap(self, seller, mat_types):
        first = shipment_service.create_request(seller.id, {"MBW2": 2})
        second = shipment_service.create_request(seller.id, {"MBW1": 2})

        # Approved out of creation order
        b = shipment_service.approve_request(second.id, approved_by="op")
        a = shipment_service.approve_request(first.id, approved_by="op")

        assert b.generated_qr_codes == ["RIS-001", "RIS-002"]
        assert a.generated_qr_codes == ["RIS-003", "RIS-004"]

    def test_failed_allocation_leaves_request_pending(self, seller, mat_types, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda _seconds: None)

        def always_conflict(plan, **_kwargs):
            raise AllocationConflict("collision", numbers=plan.numbers)

        monkeypatch.setattr(allocation_service, "commit_allocation", always_conflict)
        request = shipment_service.create_request(seller.id, {"MBW2": 2})

        with pytest.raises(AllocationConflict):
            shipment_service.approve_request(request.id, approved_by="op")

        db.session.expire_all()
        request = shipment_service.get_request(request.id)
        assert request.status == "pending"
        assert request.generated_qr_codes is None
        assert code_service.get_seller(seller.id).range_end is None

    def test_concurrent_approvals_with_same_read(self, seller, mat_types):
        """Two approvals planned from the same U: one wins, the other conflicts."""
        first = shipment_service.create_request(seller.id, {"MBW2": 2})
        second = shipment_service.create_request(seller.id, {"MBW2": 2})

        plan_first = allocation_service.plan_allocation(seller.id, "RIS", 2)
        plan_second = allocation_service.plan_allocation(seller.id, "RIS", 2)

        allocation_service.commit_allocation(plan_first, reserved=True, shipment_request_id=first.id)
        allocation_service.commit_or_conflict(plan_first)

        with pytest.raises(AllocationConflict):
            allocation_service.commit_allocation(plan_second, reserved=True, shipment_request_id=second.id)
        db.session.rollback()

        # The full operation re-reads U and lands after the winner
        approved = shipment_service.approve_request(second.id, approved_by="op")
        assert approved.generated_qr_codes == ["RIS-003", "RIS-004"]


class TestListRequests:

    def test_filter_by_seller_and_status(self, seller, other_seller, mat_types):
        a = shipment_service.create_request(seller.id, {"MBW2": 1})
        shipment_service.create_request(seller.id, {"MBW2": 1})
        shipment_service.create_request(other_seller.id, {"MBW2": 1})
        shipment_service.approve_request(a.id, approved_by="op")

        assert len(shipment_service.list_requests(seller_id=seller.id)) == 2
        approved = shipment_service.list_requests(status="approved")
        assert [r.id for r in approved] == [a.id]

    def test_invalid_status_filter(self, db_session):
        with pytest.raises(ValidationError):
            shipment_service.list_requests(status="rejected")
