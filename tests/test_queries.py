"""Tests for the paginated read side and dashboard aggregates."""

import uuid

import pytest

from conftest import stock_up
from military_assets.services import assignments, queries, transfers
from military_assets.services.errors import ValidationError


@pytest.fixture
def history(db, admin, base_a, base_b, base_c, rifle, radio, rifles_at_a):
    """Assignments and transfers spread across three bases."""
    stock_up(db, admin, base_b, radio, 8)
    first = assignments.create(db, admin, quantity=2, assigned_to="Sgt. Rivera", stock_id=rifles_at_a)
    assignments.create(db, admin, quantity=1, assigned_to="Cpl. Chen", stock_id=rifles_at_a)
    assignments.return_(db, admin, first.assignment.id)
    assignments.create(db, admin, quantity=3, assigned_to="Lt. Park", base_id=base_b.id, equipment_type_id=radio.id)

    done = transfers.request_transfer(db, admin, base_a.id, base_b.id, rifle.id, 4).transfer
    transfers.approve(db, admin, done.id)
    transfers.request_transfer(db, admin, base_a.id, base_c.id, rifle.id, 1)
    transfers.request_transfer(db, admin, base_b.id, base_c.id, radio.id, 2)


class TestPaging:
    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 101), (-1, 5)])
    def test_bounds(self, page, limit):
        with pytest.raises(ValidationError):
            queries.validate_paging(page, limit)

    def test_total_pages(self):
        assert queries.total_pages(0, 10) == 0
        assert queries.total_pages(10, 10) == 1
        assert queries.total_pages(11, 10) == 2

    def test_blank_uuid_filter_means_no_filter(self):
        assert queries.parse_uuid_filter("", "baseId") is None
        assert queries.parse_uuid_filter(None, "baseId") is None
        value = uuid.uuid4()
        assert queries.parse_uuid_filter(str(value), "baseId") == value
        with pytest.raises(ValidationError):
            queries.parse_uuid_filter("not-an-id", "baseId")


class TestAssignmentList:
    def test_status_filters_and_completed_alias(self, db, history):
        active, active_total = queries.list_assignments(db, status="active")
        returned, returned_total = queries.list_assignments(db, status="returned")
        completed, completed_total = queries.list_assignments(db, status="completed")

        assert active_total == 2
        assert {a.status for a in active} == {"active"}
        assert returned_total == completed_total == 1
        assert returned[0].id == completed[0].id

    def test_base_filter(self, db, history, base_b):
        rows, total = queries.list_assignments(db, base_id=base_b.id)
        assert total == 1
        assert rows[0].assigned_to == "Lt. Park"

    def test_pagination(self, db, history):
        rows, total = queries.list_assignments(db, page=2, limit=2)
        assert total == 3
        assert len(rows) == 1

    def test_unknown_status(self, db, history):
        with pytest.raises(ValidationError):
            queries.list_assignments(db, status="lost")


class TestTransferList:
    def test_base_filter_matches_either_side(self, db, history, base_b):
        rows, total = queries.list_transfers(db, base_id=base_b.id)
        assert total == 2
        assert all(base_b.id in (t.from_base_id, t.to_base_id) for t in rows)

    def test_status_filter(self, db, history):
        rows, total = queries.list_transfers(db, status="pending")
        assert total == 2
        rows, total = queries.list_transfers(db, status="completed")
        assert total == 1

    def test_status_filter_ignores_case(self, db, history):
        rows, total = queries.list_transfers(db, status="PENDING")
        assert total == 2
        assert {t.status for t in rows} == {"pending"}

    def test_sort_by_quantity(self, db, history):
        asc, _ = queries.list_transfers(db, sort_by="quantity", order="asc")
        desc, _ = queries.list_transfers(db, sort_by="quantity", order="desc")
        assert [t.quantity for t in asc] == [1, 2, 4]
        assert [t.quantity for t in desc] == [4, 2, 1]

    @pytest.mark.parametrize("kwargs", [
        {"sort_by": "color"},
        {"order": "sideways"},
        {"status": "lost"},
    ])
    def test_rejects_unknown_options(self, db, kwargs):
        with pytest.raises(ValidationError):
            queries.list_transfers(db, **kwargs)


class TestStockReads:
    def test_list_base_stock_ordered_by_type_name(self, db, admin, base_a, rifle, radio, rifles_at_a):
        stock_up(db, admin, base_a, radio, 3)
        rows = queries.list_base_stock(db, base_a.id)
        assert [r.equipment_type.name for r in rows] == ["Field Radio", "Rifle M4"]

    def test_list_movements(self, db, admin, rifles_at_a):
        assignments.create(db, admin, quantity=2, assigned_to="Sgt. Rivera", stock_id=rifles_at_a)
        movements = queries.list_movements(db, rifles_at_a)
        assert sorted(m.kind for m in movements) == ["receive", "reserve"]


class TestDashboard:
    def test_base_metrics(self, db, history, base_a):
        metrics = queries.dashboard_metrics(db, base_id=base_a.id)

        # 10 received, 4 transferred out, 1 assigned, 1 pending out
        assert metrics["quantity_total"] == 6
        assert metrics["quantity_reserved"] == 2
        assert metrics["quantity_available"] == 4
        assert metrics["quantity_assigned"] == 1
        assert metrics["received"] == 10
        assert metrics["transferred_out"] == 4
        assert metrics["transferred_in"] == 0
        assert metrics["net_movement"] == 6
        assert metrics["pending_transfers_out"] == 1
        assert metrics["pending_transfers_in"] == 0

    def test_destination_metrics(self, db, history, base_b, rifle):
        metrics = queries.dashboard_metrics(db, base_id=base_b.id, equipment_type_id=rifle.id)
        assert metrics["transferred_in"] == 4
        assert metrics["quantity_available"] == 4
        assert metrics["pending_transfers_out"] == 0

    def test_global_metrics(self, db, history):
        metrics = queries.dashboard_metrics(db)
        assert metrics["quantity_assigned"] == 4
        assert metrics["expended"] == 0
        assert metrics["pending_transfers_in"] == metrics["pending_transfers_out"] == 3
