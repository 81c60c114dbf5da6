"""
CLI command tests (flask sellers/codes/mattypes/cycles groups).
"""

import pytest

from matcycle.services import code_service


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_create_seller_and_generate(runner, db_session):
    result = runner.invoke(args=["sellers", "create", "--name", "Rok Isk", "--prefix", "ris"])
    assert "PASS Created seller: Rok Isk" in result.output
    seller = code_service.list_sellers()[0]
    assert seller.prefix == "RIS"

    result = runner.invoke(args=["codes", "generate", str(seller.id), "--count", "3"])
    assert "PASS Generated 3 codes: RIS-001 .. RIS-003" in result.output

    result = runner.invoke(args=["codes", "list", str(seller.id), "--status", "available"])
    assert "RIS-002" in result.output

    result = runner.invoke(args=["sellers", "sync-range", str(seller.id)])
    assert "range: 1-3" in result.output


def test_domain_errors_print_fail(runner, seller):
    result = runner.invoke(args=["sellers", "create", "--name", "Copycat", "--prefix", "RIS"])
    assert result.output.startswith("FAIL")

    result = runner.invoke(args=["codes", "generate", "999", "--count", "1"])
    assert "FAIL Seller 999 not found" in result.output

    result = runner.invoke(args=["codes", "list", str(seller.id), "--status", "gone"])
    assert "FAIL" in result.output


def test_mat_type_create(runner, db_session):
    result = runner.invoke(args=["mattypes", "create", "--code", "mbw1", "--name", "Mat 60x85"])
    assert "PASS Created mat type: MBW1 (Mat 60x85)" in result.output

    result = runner.invoke(args=["mattypes", "create", "--code", "MBW1", "--name", "Again"])
    assert "FAIL" in result.output


def test_long_on_test_listing(runner, make_cycle):
    assert "No long-on-test cycles." in runner.invoke(args=["cycles", "long-on-test"]).output

    cycle = make_cycle(days_ago=22)
    result = runner.invoke(args=["cycles", "long-on-test"])
    assert cycle.qr_code.code in result.output
    assert "WARNING" in result.output


def test_inventory(runner, make_cycle):
    make_cycle()
    result = runner.invoke(args=["cycles", "inventory"])
    assert "Rok Isk" in result.output
    assert "TOTAL" in result.output
