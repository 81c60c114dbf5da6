"""
Seller prefix, range and QR code management tests.
"""

from datetime import datetime

import pytest

from matcycle.extensions import db
from matcycle.models import QRCode, ShipmentRequest
from matcycle.services import code_service, cycle_service, shipment_service
from matcycle.services.code_service import PreconditionFailed
from matcycle.validation import ConflictError, NotFoundError, ValidationError


class TestPrefixRegistration:

    def test_prefix_is_upper_cased(self, db_session):
        seller = code_service.create_seller("Ana")
        code_service.register_prefix(seller.id, " ana ")
        assert seller.prefix == "ANA"

    @pytest.mark.parametrize("prefix", ["A", "ABCDE", "R1S", "RI-S", "", None, 12])
    def test_invalid_prefix_rejected(self, db_session, prefix):
        seller = code_service.create_seller("Ana")
        with pytest.raises(ValidationError):
            code_service.register_prefix(seller.id, prefix)

    def test_prefix_owned_by_another_seller(self, seller):
        with pytest.raises(ConflictError):
            code_service.create_seller("Copycat", prefix="ris")

    def test_prefix_cannot_change_once_codes_exist(self, seller):
        code_service.generate_codes(seller.id, 1)
        with pytest.raises(PreconditionFailed):
            code_service.register_prefix(seller.id, "RSX")

    def test_prefix_can_change_before_any_code(self, seller):
        code_service.register_prefix(seller.id, "RSX")
        assert code_service.get_seller(seller.id).prefix == "RSX"

    def test_unknown_seller(self, db_session):
        with pytest.raises(NotFoundError):
            code_service.register_prefix(9999, "ABC")


class TestSellerRange:

    def test_generation_extends_range(self, seller):
        code_service.generate_codes(seller.id, 4)
        code_service.generate_codes(seller.id, 2)
        seller = code_service.get_seller(seller.id)
        assert (seller.range_start, seller.range_end) == (1, 6)

    def test_sync_recomputes_from_used_numbers(self, db_session, seller):
        code_service.generate_codes(seller.id, 3)
        db_session.add(ShipmentRequest(
            seller_id=seller.id,
            status="approved",
            quantities={"MBW2": 1},
            generated_qr_codes=["RIS-040"],
        ))
        seller.range_start, seller.range_end = 50, 60
        db_session.commit()

        assert code_service.sync_seller_range(seller.id) == (1, 40)

    def test_sync_with_no_numbers_clears_range(self, seller):
        assert code_service.sync_seller_range(seller.id) == (None, None)

    def test_extend_only_widens(self, seller):
        seller.range_start, seller.range_end = 5, 10
        code_service.extend_seller_range(seller, [7, 8])
        assert (seller.range_start, seller.range_end) == (5, 10)
        code_service.extend_seller_range(seller, [3, 12])
        assert (seller.range_start, seller.range_end) == (3, 12)


class TestCodeQueries:

    def test_list_codes_by_pattern_and_status(self, seller, other_seller):
        code_service.generate_codes(seller.id, 3)
        code_service.generate_codes(other_seller.id, 2)

        codes = code_service.list_codes(seller.id, "RIS-%")
        assert [c.code for c in codes] == ["RIS-001", "RIS-002", "RIS-003"]
        assert code_service.list_codes(seller.id, "MAR-%") == []
        assert code_service.list_codes(seller.id, status="active") == []

    def test_list_codes_rejects_unknown_status(self, seller):
        with pytest.raises(ValidationError):
            code_service.list_codes(seller.id, status="lost")

    def test_list_reserved_codes_per_request(self, seller, mat_types):
        first = shipment_service.create_request(seller.id, {"MBW2": 2})
        second = shipment_service.create_request(seller.id, {"MBW1": 1})
        shipment_service.create_request(seller.id, {"MBW1": 4})
        shipment_service.approve_request(first.id, approved_by="op")
        shipment_service.approve_request(second.id, approved_by="op")

        assert code_service.list_reserved_codes(seller.id) == [
            ["RIS-001", "RIS-002"],
            ["RIS-003"],
        ]

    def test_lookup_normalizes_scanned_value(self, seller):
        code_service.generate_codes(seller.id, 2)
        assert code_service.get_code_by_value("  ris-002 ").code == "RIS-002"

    def test_lookup_unknown_code(self, seller):
        with pytest.raises(NotFoundError):
            code_service.get_code_by_value("RIS-404")


class TestCodeStatus:

    def test_update_status_and_reset_time(self, seller):
        codes = code_service.generate_codes(seller.id, 2)
        stamp = datetime(2026, 5, 1, 12, 0, 0)
        updated = code_service.update_code_status(
            [c.id for c in codes], "pending", last_reset_at=stamp
        )
        assert {c.status for c in updated} == {"pending"}
        assert {c.last_reset_at for c in updated} == {stamp}

    def test_code_with_active_cycle_cannot_be_made_available(self, make_cycle):
        cycle = make_cycle()
        with pytest.raises(PreconditionFailed):
            code_service.update_code_status(cycle.qr_code_id, "available")
        db.session.rollback()
        assert db.session.get(QRCode, cycle.qr_code_id).status == "active"

    def test_missing_ids_reported(self, seller):
        with pytest.raises(NotFoundError):
            code_service.update_code_status([12345], "pending")

    def test_empty_id_list_rejected(self, seller):
        with pytest.raises(ValidationError):
            code_service.update_code_status([], "pending")


class TestDeleteCode:

    def test_deleted_code_is_deactivated_not_removed(self, seller):
        code = code_service.generate_codes(seller.id, 1)[0]
        code_service.delete_code(code.id)

        row = db.session.get(QRCode, code.id)
        assert row is not None
        assert row.is_active is False
        assert row.deactivated_at is not None

    def test_code_on_test_cannot_be_deleted(self, make_cycle):
        cycle = make_cycle()
        with pytest.raises(PreconditionFailed):
            code_service.delete_code(cycle.qr_code_id)

    def test_code_with_past_cycle_cannot_be_deleted(self, make_cycle):
        cycle = make_cycle()
        cycle_service.self_deliver([cycle.id])
        code = db.session.get(QRCode, cycle.qr_code_id)
        assert code.status == "available"

        with pytest.raises(PreconditionFailed, match="cycle history"):
            code_service.delete_code(code.id)

    def test_reserved_code_cannot_be_deleted(self, seller, mat_types):
        request = shipment_service.create_request(seller.id, {"MBW2": 1})
        shipment_service.approve_request(request.id, approved_by="op")
        code = code_service.get_code_by_value("RIS-001")
        with pytest.raises(PreconditionFailed):
            code_service.delete_code(code.id)

    def test_deleted_number_is_never_reissued(self, seller):
        codes = code_service.generate_codes(seller.id, 2)
        code_service.delete_code(codes[-1].id)
        assert code_service.generate_codes(seller.id, 1)[0].code == "RIS-003"

    def test_deleting_highest_code_keeps_its_number_taken(self, seller):
        codes = code_service.generate_codes(seller.id, 3)
        code_service.delete_code(codes[-1].id)
        assert code_service.generate_codes(seller.id, 1)[0].code == "RIS-004"

    def test_deleted_code_is_hidden(self, seller):
        keep, gone = code_service.generate_codes(seller.id, 2)
        code_service.delete_code(gone.id)

        with pytest.raises(NotFoundError):
            code_service.get_code_by_value("RIS-002")
        assert [c.code for c in code_service.list_codes(seller.id)] == [keep.code]
        with pytest.raises(NotFoundError):
            code_service.update_code_status([gone.id], "pending")

    def test_deleted_code_cannot_be_scanned(self, seller, mat_types):
        code = code_service.generate_codes(seller.id, 1)[0]
        code_service.delete_code(code.id)
        with pytest.raises(NotFoundError):
            cycle_service.scan_code("RIS-001", salesperson_id=seller.id, mat_type_code="MBW2")

    def test_second_delete_rejected(self, seller):
        code = code_service.generate_codes(seller.id, 1)[0]
        code_service.delete_code(code.id)
        with pytest.raises(PreconditionFailed, match="already deleted"):
            code_service.delete_code(code.id)

    def test_summary_skips_deleted_codes(self, seller):
        codes = code_service.generate_codes(seller.id, 3)
        code_service.delete_code(codes[0].id)
        summary = code_service.seller_code_summary(seller.id)
        assert summary["total"] == 2
        assert summary["available"] == 2


class TestSummary:

    def test_counts(self, seller, mat_types, make_cycle):
        code_service.generate_codes(seller.id, 3)
        make_cycle()
        approved = shipment_service.create_request(seller.id, {"MBW2": 2})
        shipment_service.approve_request(approved.id, approved_by="op")
        shipment_service.create_request(seller.id, {"MBW1": 1})

        summary = code_service.seller_code_summary(seller.id)
        assert summary["total"] == 6
        assert summary["available"] == 3
        assert summary["active"] == 1
        assert summary["reserved"] == 2
        assert summary["pending_requests"] == 1
        assert summary["prefix"] == "RIS"
