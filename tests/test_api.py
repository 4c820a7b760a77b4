"""End-to-end tests over the HTTP API."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from conftest import auth_headers, make_user
from military_assets.auth import router as auth_router
from military_assets.models.models import AuditLog, MilitaryBase, User
from military_assets.services import catalog


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


# ============================================================
# AUTH
# ============================================================


class TestAuth:
    def test_login_and_me(self, client, commander_a, base_a):
        resp = client.post("/api/auth/login", json={"username": "commander.alpha", "password": "password123"})
        assert resp.status_code == 200
        tokens = resp.json()
        assert tokens["token_type"] == "bearer"

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
        assert me.status_code == 200
        body = me.json()
        assert body["username"] == "commander.alpha"
        assert body["role"] == "base_commander"
        assert body["baseId"] == str(base_a.id)

    def test_login_with_wrong_password(self, client, admin_user):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid credentials"

    def test_refresh_issues_new_pair(self, client, admin_user):
        tokens = client.post("/api/auth/login", json={"username": "admin", "password": "password123"}).json()
        resp = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200
        assert resp.json()["access_token"]

    def test_refresh_token_cannot_call_api(self, client, admin_user):
        tokens = client.post("/api/auth/login", json={"username": "admin", "password": "password123"}).json()
        resp = client.get("/api/bases", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
        assert resp.status_code == 401

    def test_missing_token(self, client):
        resp = client.get("/api/bases")
        assert resp.status_code == 401
        assert resp.json()["error"] == "Not authenticated"

    def test_garbage_token(self, client):
        resp = client.get("/api/bases", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_admin_creates_commander(self, client, admin_headers, base_a):
        resp = client.post(
            "/api/auth/users",
            headers=admin_headers,
            json={"username": "new.commander", "password": "password123", "roles": ["base_commander"], "baseId": str(base_a.id)},
        )
        assert resp.status_code == 201
        assert resp.json()["roles"] == ["base_commander"]

        listed = client.get("/api/auth/users", headers=admin_headers).json()
        assert "new.commander" in [u["username"] for u in listed]

    def test_commander_needs_home_base(self, client, admin_headers):
        resp = client.post(
            "/api/auth/users",
            headers=admin_headers,
            json={"username": "homeless", "password": "password123", "roles": ["base_commander"]},
        )
        assert resp.status_code == 400

    def test_non_admin_cannot_manage_users(self, client, commander_a):
        resp = client.get("/api/auth/users", headers=auth_headers(commander_a))
        assert resp.status_code == 403


# ============================================================
# REFERENCE DATA AND STOCK INTAKE
# ============================================================


class TestReferenceData:
    def test_bases_wrapped_list(self, client, admin_headers, base_a, base_b):
        resp = client.get("/api/bases", headers=admin_headers)
        assert resp.status_code == 200
        assert [b["name"] for b in resp.json()["bases"]] == ["Camp Bravo", "Fort Alpha"]

    def test_create_base_admin_only(self, client, admin_headers, commander_a):
        denied = client.post("/api/bases", headers=auth_headers(commander_a), json={"name": "Delta"})
        assert denied.status_code == 403

        created = client.post("/api/bases", headers=admin_headers, json={"name": "Delta", "location": "West"})
        assert created.status_code == 201
        duplicate = client.post("/api/bases", headers=admin_headers, json={"name": "Delta"})
        assert duplicate.status_code == 400
        assert duplicate.json()["code"] == "validation_error"

    def test_categories(self, client, admin_headers):
        created = client.post(
            "/api/assets/categories", headers=admin_headers,
            json={"name": "Humvee", "category": "vehicle", "description": "Light utility vehicle"},
        )
        assert created.status_code == 201
        listed = client.get("/api/assets/categories", headers=admin_headers).json()
        assert [c["name"] for c in listed] == ["Humvee"]

    def test_register_asset_credits_stock(self, client, admin_headers, base_a, rifle):
        resp = client.post(
            "/api/assets", headers=admin_headers,
            json={"baseId": str(base_a.id), "equipmentTypeId": str(rifle.id), "name": "Rifle crate", "quantity": 12, "serialNumber": ""},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["asset"]["serialNumber"] is None
        assert body["stock"]["quantityAvailable"] == 12

        stock = client.get(f"/api/assets/base/{base_a.id}", headers=admin_headers).json()
        assert len(stock) == 1
        assert stock[0]["quantity"] == 12
        assert stock[0]["equipmentType"]["name"] == "Rifle M4"

        movements = client.get(f"/api/assets/stock/{stock[0]['id']}/movements", headers=admin_headers).json()
        assert [m["kind"] for m in movements] == ["receive"]

    def test_unknown_base_stock(self, client, admin_headers):
        resp = client.get(f"/api/assets/base/{uuid.uuid4()}", headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json() == {"error": "Base not found", "code": "not_found"}


# ============================================================
# ASSIGNMENTS AND EXPENDITURES
# ============================================================


class TestAssignmentsApi:
    def test_create_list_and_return(self, db, client, admin_headers, rifles_at_a):
        created = client.post(
            "/api/assignments", headers=admin_headers,
            json={"assetId": str(rifles_at_a), "quantity": 4, "assignedTo": "Sgt. Rivera"},
        )
        assert created.status_code == 201
        body = created.json()
        assert body["assignment"]["status"] == "active"
        assert body["assignment"]["equipmentType"]["name"] == "Rifle M4"
        assert body["stock"]["quantityAvailable"] == 6

        listed = client.get("/api/assignments?status=active&baseId=", headers=admin_headers).json()
        assert listed["totalAssignments"] == 1
        assert listed["totalPages"] == 1
        assert listed["page"] == 1

        assignment_id = body["assignment"]["id"]
        returned = client.put(f"/api/assignments/{assignment_id}/return", headers=admin_headers, json={"notes": "ok"})
        assert returned.status_code == 200
        assert returned.json()["stock"]["quantityAvailable"] == 10

        again = client.put(f"/api/assignments/{assignment_id}/return", headers=admin_headers)
        assert again.status_code == 409
        assert again.json()["code"] == "invalid_state"

        completed = client.get("/api/assignments?status=completed", headers=admin_headers).json()
        assert completed["totalAssignments"] == 1

    def test_over_assignment_is_409(self, client, admin_headers, rifles_at_a):
        resp = client.post(
            "/api/assignments", headers=admin_headers,
            json={"assetId": str(rifles_at_a), "quantity": 11, "assignedTo": "Alpha squad"},
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "insufficient_stock"
        assert "exceeds available stock" in body["error"]
        assert body["details"] == {"available": 10, "requested": 11}

    def test_other_commander_gets_403(self, client, commander_b, rifles_at_a):
        resp = client.post(
            "/api/assignments", headers=auth_headers(commander_b),
            json={"assetId": str(rifles_at_a), "quantity": 1, "assignedTo": "Pvt. Doe"},
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "unauthorized"

    def test_missing_quantity_is_422(self, client, admin_headers, rifles_at_a):
        resp = client.post("/api/assignments", headers=admin_headers, json={"assetId": str(rifles_at_a), "assignedTo": "x"})
        assert resp.status_code == 422

    def test_snake_case_input_accepted(self, client, admin_headers, rifles_at_a):
        resp = client.post(
            "/api/assignments", headers=admin_headers,
            json={"asset_id": str(rifles_at_a), "quantity": 1, "assigned_to": "Pvt. Doe"},
        )
        assert resp.status_code == 201
        assert "assignedTo" in resp.json()["assignment"]

    def test_bad_paging(self, client, admin_headers):
        resp = client.get("/api/assignments?page=0", headers=admin_headers)
        assert resp.status_code == 400

    def test_expenditure(self, client, admin_headers, rifles_at_a):
        resp = client.post(
            "/api/expenditures", headers=admin_headers,
            json={"assetId": str(rifles_at_a), "quantity": 3, "reason": "Live fire"},
        )
        assert resp.status_code == 201
        assert resp.json()["stock"]["quantityTotal"] == 7

        listed = client.get("/api/expenditures", headers=admin_headers).json()
        assert listed["totalExpenditures"] == 1
        assert listed["expenditures"][0]["reason"] == "Live fire"

    def test_assignment_nests_user_and_asset(self, client, admin_headers, rifles_at_a):
        client.post(
            "/api/assignments", headers=admin_headers,
            json={"assetId": str(rifles_at_a), "quantity": 2, "assignedTo": "Cpl. Chen"},
        )
        row = client.get("/api/assignments", headers=admin_headers).json()["assignments"][0]
        assert row["assignedBy"]["username"] == "admin"
        assert row["asset"]["id"] == str(rifles_at_a)
        assert row["asset"]["equipmentType"]["name"] == "Rifle M4"
        assert "serialNumber" in row["asset"]


# ============================================================
# TRANSFERS
# ============================================================


class TestTransfersApi:
    def _request(self, client, headers, base_a, base_b, rifle, quantity=6):
        return client.post(
            "/api/transfers/request", headers=headers,
            json={"fromBaseId": str(base_a.id), "toBaseId": str(base_b.id), "equipmentTypeId": str(rifle.id), "quantity": quantity},
        )

    def test_request_and_approve(self, db, client, admin_headers, base_a, base_b, rifle, rifles_at_a):
        requested = self._request(client, admin_headers, base_a, base_b, rifle)
        assert requested.status_code == 201
        body = requested.json()
        assert body["transfer"]["status"] == "pending"
        assert body["fromStock"]["quantityReserved"] == 6
        assert body["toStock"] is None

        transfer_id = body["transfer"]["id"]
        approved = client.put(f"/api/transfers/{transfer_id}/approve", headers=admin_headers)
        assert approved.status_code == 200
        body = approved.json()
        assert body["transfer"]["status"] == "completed"
        assert body["fromStock"]["quantityTotal"] == 4
        assert body["toStock"]["quantityAvailable"] == 6

        again = client.put(f"/api/transfers/{transfer_id}/approve", headers=admin_headers)
        assert again.status_code == 409
        rejected = client.put(f"/api/transfers/{transfer_id}/reject", headers=admin_headers, json={"reason": "late"})
        assert rejected.status_code == 409

        detail = client.get(f"/api/transfers/{transfer_id}", headers=admin_headers).json()
        assert detail["fromBase"]["name"] == "Fort Alpha"
        assert detail["toBase"]["name"] == "Camp Bravo"

        assert db.query(AuditLog).filter(AuditLog.entity_type == "transfer").count() == 2

    def test_same_base_is_400(self, client, admin_headers, base_a, rifle, rifles_at_a):
        resp = self._request(client, admin_headers, base_a, base_a, rifle)
        assert resp.status_code == 400

    def test_reject(self, client, admin_headers, base_a, base_b, rifle, rifles_at_a):
        transfer_id = self._request(client, admin_headers, base_a, base_b, rifle).json()["transfer"]["id"]
        resp = client.put(f"/api/transfers/{transfer_id}/reject", headers=admin_headers, json={"reason": "Not needed"})
        assert resp.status_code == 200
        assert resp.json()["transfer"]["decisionReason"] == "Not needed"
        assert resp.json()["fromStock"]["quantityAvailable"] == 10

    def test_list_with_filters_and_sort(self, client, admin_headers, base_a, base_b, rifle, rifles_at_a):
        self._request(client, admin_headers, base_a, base_b, rifle, quantity=1)
        self._request(client, admin_headers, base_a, base_b, rifle, quantity=3)

        resp = client.get(
            f"/api/transfers?sortBy=quantity&order=asc&status=&baseId={base_b.id}&page=1&limit=10",
            headers=admin_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["totalTransfers"] == 2
        assert [t["quantity"] for t in body["transfers"]] == [1, 3]

        bad = client.get("/api/transfers?sortBy=color", headers=admin_headers)
        assert bad.status_code == 400

    def test_unknown_transfer(self, client, admin_headers):
        resp = client.get(f"/api/transfers/{uuid.uuid4()}", headers=admin_headers)
        assert resp.status_code == 404


class TestDashboardApi:
    def test_metrics(self, client, admin_headers, base_a, rifles_at_a):
        resp = client.get(f"/api/dashboard/metrics?baseId={base_a.id}", headers=admin_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["base"]["name"] == "Fort Alpha"
        assert body["quantityTotal"] == 10
        assert body["pendingTransfersOut"] == 0


class TestPlumbing:
    def test_request_id_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert resp.status_code == 200
        assert resp.headers["X-Request-ID"] == "abc-123"


def _utc(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


# ============================================================
# DATETIMES
# ============================================================


class TestUtcDatetimes:
    def _request(self, client, headers, base_a, base_b, rifle, transfer_date, notes):
        return client.post(
            "/api/transfers/request", headers=headers,
            json={"fromBaseId": str(base_a.id), "toBaseId": str(base_b.id), "equipmentTypeId": str(rifle.id),
                  "quantity": 1, "transferDate": transfer_date, "notes": notes},
        )

    def test_transfer_dates_sort_by_instant(self, client, admin_headers, base_a, base_b, rifle, rifles_at_a):
        early = self._request(client, admin_headers, base_a, base_b, rifle, "2026-01-01T10:00:00+05:00", "early")
        late = self._request(client, admin_headers, base_a, base_b, rifle, "2026-01-01T06:00:00+00:00", "late")
        assert early.status_code == late.status_code == 201

        assert _utc(early.json()["transfer"]["transferDate"]) == datetime(2026, 1, 1, 5, 0, tzinfo=timezone.utc)
        assert _utc(late.json()["transfer"]["transferDate"]) == datetime(2026, 1, 1, 6, 0, tzinfo=timezone.utc)

        listed = client.get("/api/transfers?sortBy=transferDate&order=asc", headers=admin_headers).json()
        assert [t["notes"] for t in listed["transfers"]] == ["early", "late"]
        assert _utc(listed["transfers"][0]["transferDate"]).hour == 5

    def test_return_date_compared_as_instants(self, client, admin_headers, rifles_at_a):
        # 10:00+05:00 is 05:00Z, so a 06:00Z return is after it
        resp = client.post(
            "/api/assignments", headers=admin_headers,
            json={"assetId": str(rifles_at_a), "quantity": 1, "assignedTo": "Pvt. Doe",
                  "assignmentDate": "2026-01-01T10:00:00+05:00", "expectedReturnDate": "2026-01-01T06:00:00Z"},
        )
        assert resp.status_code == 201
        assignment = resp.json()["assignment"]
        assert _utc(assignment["assignmentDate"]) == datetime(2026, 1, 1, 5, 0, tzinfo=timezone.utc)

        too_early = client.post(
            "/api/assignments", headers=admin_headers,
            json={"assetId": str(rifles_at_a), "quantity": 1, "assignedTo": "Pvt. Doe",
                  "assignmentDate": "2026-01-01T10:00:00+05:00", "expectedReturnDate": "2026-01-01T04:00:00Z"},
        )
        assert too_early.status_code == 400

    def test_dashboard_window_with_offset(self, client, admin_headers, base_a, rifles_at_a):
        plus_five = timezone(timedelta(hours=5))
        an_hour_ago = (datetime.now(timezone.utc) - timedelta(hours=1)).astimezone(plus_five)
        resp = client.get(
            "/api/dashboard/metrics", headers=admin_headers,
            params={"baseId": str(base_a.id), "startDate": an_hour_ago.isoformat()},
        )
        assert resp.status_code == 200
        assert resp.json()["received"] == 10


# ============================================================
# AUDIT TRAIL
# ============================================================


class TestAuditApi:
    def test_admin_reads_trail_by_entity(self, client, admin_headers, base_a, base_b, rifle, rifles_at_a):
        transfer_id = client.post(
            "/api/transfers/request", headers=admin_headers,
            json={"fromBaseId": str(base_a.id), "toBaseId": str(base_b.id), "equipmentTypeId": str(rifle.id), "quantity": 2},
        ).json()["transfer"]["id"]
        client.put(f"/api/transfers/{transfer_id}/reject", headers=admin_headers, json={"reason": "No transport"})

        resp = client.get(f"/api/audit?entityType=transfer&entityId={transfer_id}", headers=admin_headers)
        assert resp.status_code == 200
        logs = resp.json()
        assert sorted(log["action"] for log in logs) == ["REJECT", "REQUEST"]
        assert all(log["integrityHash"] for log in logs)

        everything = client.get("/api/audit?entityType=&entityId=", headers=admin_headers).json()
        assert len(everything) > len(logs)

    def test_commander_cannot_read_trail(self, client, commander_a):
        resp = client.get("/api/audit", headers=auth_headers(commander_a))
        assert resp.status_code == 403

    def test_bad_entity_id(self, client, admin_headers):
        resp = client.get("/api/audit?entityId=nope", headers=admin_headers)
        assert resp.status_code == 400


# ============================================================
# UNIQUE NAME RACES
# ============================================================


def _miss_once(monkeypatch, module, attr):
    """The first lookup misses, as if a concurrent insert had not committed yet."""
    real = getattr(module, attr)
    calls = []

    def lookup(db, name):
        calls.append(name)
        return None if len(calls) == 1 else real(db, name)

    monkeypatch.setattr(module, attr, lookup)
    return calls


class TestUniqueNameRaces:
    def test_duplicate_base_insert_is_400(self, db, client, admin_headers, base_a, monkeypatch):
        calls = _miss_once(monkeypatch, catalog, "base_by_name")
        resp = client.post("/api/bases", headers=admin_headers, json={"name": "Fort Alpha"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"
        assert len(calls) == 2
        assert db.query(MilitaryBase).filter(MilitaryBase.name == "Fort Alpha").count() == 1

    def test_duplicate_category_insert_is_400(self, client, admin_headers, rifle, monkeypatch):
        calls = _miss_once(monkeypatch, catalog, "equipment_type_by_name")
        resp = client.post("/api/assets/categories", headers=admin_headers, json={"name": "Rifle M4", "category": "weapon"})
        assert resp.status_code == 400
        assert len(calls) == 2

    def test_duplicate_username_insert_is_400(self, db, client, admin_headers, monkeypatch):
        make_user(db, "quartermaster", ["logistics_officer"])
        calls = _miss_once(monkeypatch, auth_router, "username_taken")
        resp = client.post(
            "/api/auth/users", headers=admin_headers,
            json={"username": "quartermaster", "password": "password123", "roles": ["logistics_officer"]},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Username already taken"
        assert len(calls) == 2
        assert db.query(User).filter(User.username == "quartermaster").count() == 1
