"""
Tests 401-450: Approval lifecycle and user administration

registration → pending approval → approved (active / suspended) or
rejected (deleted), plus role edits, the last-Admin guard and the
activity trail every administrative action leaves behind.
"""
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from taxihub.models import ActivityLog, MarshalProfile, Principal
from taxihub.routes.admin import active_admins_query

from conftest import auth_headers, login, seed_user

MOKOENA = {
    "email": "t.mokoena@taxihub.test",
    "password": "mokoena1",
    "name": "T. Mokoena",
    "phone": "0711234567",
}


async def _register(client, payload=MOKOENA) -> str:
    r = await client.post("/api/auth/register", json=payload)
    assert r.status_code == 201, r.text
    return r.json()["id"]


class TestRegistration:

    async def test_401_registration_creates_pending_profile(self, client, db):
        """A fresh registration is unapproved with no role and no rank."""
        user_id = await _register(client)

        profile = (
            await db.execute(select(MarshalProfile).where(MarshalProfile.email == MOKOENA["email"]))
        ).scalar_one()
        assert str(profile.id) == user_id
        assert profile.name == "T. Mokoena"
        assert profile.phone == "0711234567"
        assert profile.approved is False
        assert profile.role is None
        assert profile.rank_id is None

    async def test_402_registration_issues_no_session(self, client):
        r = await client.post("/api/auth/register", json=MOKOENA)
        assert "access_token" not in r.json()

    async def test_403_pending_login_rejected(self, client):
        await _register(client)
        r = await client.post(
            "/api/auth/login",
            json={"email": MOKOENA["email"], "password": MOKOENA["password"]},
        )
        assert r.status_code == 403
        assert "pending approval" in r.json()["detail"]

    async def test_404_duplicate_email_409(self, client):
        await _register(client)
        r = await client.post("/api/auth/register", json={**MOKOENA, "email": "T.Mokoena@TaxiHub.test"})
        assert r.status_code == 409
        assert r.json()["detail"] == "This email is already registered. Please login instead."

    async def test_405_short_password_422(self, client):
        r = await client.post("/api/auth/register", json={**MOKOENA, "password": "abc"})
        assert r.status_code == 422

    async def test_406_missing_phone_422(self, client):
        payload = {k: v for k, v in MOKOENA.items() if k != "phone"}
        r = await client.post("/api/auth/register", json=payload)
        assert r.status_code == 422

    async def test_407_registration_logged(self, client, db):
        await _register(client)
        logs = (
            await db.execute(select(ActivityLog).where(ActivityLog.action == "registration"))
        ).scalars().all()
        assert len(logs) == 1
        assert logs[0].actor_email == MOKOENA["email"]


class TestApproval:

    async def test_411_approve_as_marshal_then_login_bound(self, client, admin_headers, bree_rank_id):
        """Approval as Marshal at Bree Taxi Rank lets the principal sign in."""
        user_id = await _register(client)

        r = await client.get("/api/admin/users/pending", headers=admin_headers)
        assert [u["id"] for u in r.json()["items"]] == [user_id]

        r = await client.post(
            f"/api/admin/users/{user_id}/approve",
            headers=admin_headers,
            json={"role": "Marshal", "rank_id": str(bree_rank_id)},
        )
        assert r.status_code == 200, r.text
        data = r.json()
        assert data["approved"] is True
        assert data["role"] == "Marshal"
        assert data["rank_name"] == "Bree Taxi Rank"
        assert data["approved_by"] == "admin@taxihub.test"

        r = await client.post(
            "/api/auth/login",
            json={"email": MOKOENA["email"], "password": MOKOENA["password"]},
        )
        assert r.status_code == 200
        assert r.json()["profile"]["rank_name"] == "Bree Taxi Rank"

        r = await client.get("/api/admin/users/pending", headers=admin_headers)
        assert r.json()["total"] == 0

    async def test_412_marshal_approval_requires_rank(self, client, admin_headers):
        user_id = await _register(client)
        r = await client.post(
            f"/api/admin/users/{user_id}/approve",
            headers=admin_headers,
            json={"role": "Marshal"},
        )
        assert r.status_code == 422
        assert "taxi rank" in r.json()["detail"]

    async def test_413_invalid_role_rejected(self, client, admin_headers):
        user_id = await _register(client)
        r = await client.post(
            f"/api/admin/users/{user_id}/approve",
            headers=admin_headers,
            json={"role": "Driver"},
        )
        assert r.status_code == 422

    async def test_414_unknown_rank_404(self, client, admin_headers):
        user_id = await _register(client)
        r = await client.post(
            f"/api/admin/users/{user_id}/approve",
            headers=admin_headers,
            json={"role": "Supervisor", "rank_id": "00000000-0000-0000-0000-000000000001"},
        )
        assert r.status_code == 404

    async def test_415_double_approval_409(self, client, admin_headers):
        user_id = await _register(client)
        body = {"role": "Admin"}
        r = await client.post(f"/api/admin/users/{user_id}/approve", headers=admin_headers, json=body)
        assert r.status_code == 200
        r = await client.post(f"/api/admin/users/{user_id}/approve", headers=admin_headers, json=body)
        assert r.status_code == 409

    async def test_416_marshal_cannot_approve(self, client, marshal_headers):
        user_id = await _register(client)
        r = await client.post(
            f"/api/admin/users/{user_id}/approve",
            headers=marshal_headers,
            json={"role": "Supervisor"},
        )
        assert r.status_code == 403
        assert "approve_users" in r.json()["detail"]

    async def test_417_supervisor_cannot_list_pending(self, client, supervisor_headers):
        r = await client.get("/api/admin/users/pending", headers=supervisor_headers)
        assert r.status_code == 403

    async def test_418_approval_logged(self, client, db, admin_headers, bree_rank_id):
        user_id = await _register(client)
        await client.post(
            f"/api/admin/users/{user_id}/approve",
            headers=admin_headers,
            json={"role": "Marshal", "rank_id": str(bree_rank_id)},
        )
        log = (
            await db.execute(select(ActivityLog).where(ActivityLog.action == "user_approved"))
        ).scalar_one()
        assert log.target_id == user_id
        assert log.details["role"] == "Marshal"


class TestRejection:

    async def test_421_reject_deletes_profile_and_principal(self, client, db, admin_headers):
        user_id = await _register(client)

        r = await client.post(f"/api/admin/users/{user_id}/reject", headers=admin_headers)
        assert r.status_code == 200

        profile_emails = [p.email for p in (await db.execute(select(MarshalProfile))).scalars().all()]
        principal_emails = [p.email for p in (await db.execute(select(Principal))).scalars().all()]
        assert MOKOENA["email"] not in profile_emails
        assert MOKOENA["email"] not in principal_emails

        r = await client.post(
            "/api/auth/login",
            json={"email": MOKOENA["email"], "password": MOKOENA["password"]},
        )
        assert r.status_code == 401

    async def test_422_rejected_email_can_register_again(self, client, admin_headers):
        user_id = await _register(client)
        await client.post(f"/api/admin/users/{user_id}/reject", headers=admin_headers)
        await _register(client)

    async def test_423_cannot_reject_approved_user(self, client, admin_headers, marshal_id):
        r = await client.post(f"/api/admin/users/{marshal_id}/reject", headers=admin_headers)
        assert r.status_code == 409


class TestUserManagement:

    async def test_431_list_users_filters_by_role(self, client, admin_headers, marshal_id, supervisor_id):
        r = await client.get("/api/admin/users", params={"role": "Marshal"}, headers=admin_headers)
        assert r.status_code == 200
        assert [u["email"] for u in r.json()["items"]] == ["marshal@taxihub.test"]

        r = await client.get("/api/admin/users", headers=admin_headers)
        assert r.json()["total"] == 3

    async def test_432_delete_last_admin_refused(self, client, db, admin_headers, admin_id):
        r = await client.delete(f"/api/admin/users/{admin_id}", headers=admin_headers)
        assert r.status_code == 409
        assert "last Admin" in r.json()["detail"]

        still_there = (
            await db.execute(select(Principal).where(Principal.id == admin_id))
        ).scalar_one_or_none()
        assert still_there is not None

    async def test_433_delete_admin_when_another_exists(self, client, admin_headers, admin_id):
        second_id = await seed_user("second.admin@taxihub.test", role="Admin")
        r = await client.delete(f"/api/admin/users/{second_id}", headers=admin_headers)
        assert r.status_code == 200

        r = await client.get("/api/admin/users", params={"role": "Admin"}, headers=admin_headers)
        assert [u["id"] for u in r.json()["items"]] == [str(admin_id)]

    async def test_434_delete_marshal(self, client, admin_headers, marshal_id):
        r = await client.delete(f"/api/admin/users/{marshal_id}", headers=admin_headers)
        assert r.status_code == 200

        r = await client.post(
            "/api/auth/login", json={"email": "marshal@taxihub.test", "password": "secret123"}
        )
        assert r.status_code == 401

    async def test_435_demoting_last_admin_refused(self, client, admin_headers, admin_id):
        r = await client.put(
            f"/api/admin/users/{admin_id}", headers=admin_headers, json={"role": "Supervisor"}
        )
        assert r.status_code == 409

    async def test_436_role_change_logged(self, client, db, admin_headers, supervisor_id, park_rank_id):
        r = await client.put(
            f"/api/admin/users/{supervisor_id}",
            headers=admin_headers,
            json={"role": "Marshal", "rank_id": str(park_rank_id), "phone": "0829999999"},
        )
        assert r.status_code == 200, r.text
        data = r.json()
        assert data["role"] == "Marshal"
        assert data["rank_name"] == "Park Station"
        assert data["phone"] == "0829999999"

        actions = [
            log.action
            for log in (await db.execute(select(ActivityLog))).scalars().all()
        ]
        assert "user_edited" in actions
        assert "role_changed" in actions

    async def test_437_marshal_cannot_lose_rank(self, client, admin_headers, marshal_id):
        r = await client.put(
            f"/api/admin/users/{marshal_id}", headers=admin_headers, json={"rank_id": None}
        )
        assert r.status_code == 422

    async def test_438_cannot_suspend_self(self, client, admin_headers, admin_id):
        r = await client.put(
            f"/api/admin/users/{admin_id}/suspension", headers=admin_headers, json={"suspended": True}
        )
        assert r.status_code == 409

    async def test_439_create_admin_is_auto_approved(self, client, admin_headers):
        r = await client.post(
            "/api/admin/admins",
            headers=admin_headers,
            json={"email": "ops@taxihub.test", "password": "opspass1", "name": "Ops Admin"},
        )
        assert r.status_code == 201
        assert r.json()["approved"] is True
        assert r.json()["role"] == "Admin"

        token = await login(client, "ops@taxihub.test", "opspass1")
        r = await client.get("/api/auth/me", headers=auth_headers(token))
        assert r.json()["scope"] == "global"

    async def test_440_roles_table(self, client, supervisor_headers):
        r = await client.get("/api/admin/roles", headers=supervisor_headers)
        assert r.status_code == 200
        roles = {role["code"]: role for role in r.json()["roles"]}
        assert set(roles) == {"Admin", "Supervisor", "Marshal"}
        assert roles["Admin"]["scope"] == "global"
        assert roles["Marshal"]["scope"] == "rank"
        assert [p["code"] for p in roles["Supervisor"]["permissions"]] == ["view", "view_reports"]

    async def test_441_activity_log_newest_first(self, client, admin_headers):
        await _register(client)
        r = await client.get("/api/admin/activity-logs", headers=admin_headers)
        assert r.status_code == 200
        actions = [e["action"] for e in r.json()["items"]]
        assert actions[0] == "registration"
        assert "login" in actions

        r = await client.get(
            "/api/admin/activity-logs", params={"action": "login"}, headers=admin_headers
        )
        assert all(e["action"] == "login" for e in r.json()["items"])

    async def test_442_suspended_admin_does_not_count(self, client, db, admin_headers, admin_id):
        """With the only other Admin suspended, the remaining Admin cannot delete itself."""
        second_id = await seed_user("second.admin@taxihub.test", role="Admin")
        r = await client.put(
            f"/api/admin/users/{second_id}/suspension",
            headers=admin_headers,
            json={"suspended": True},
        )
        assert r.status_code == 200

        r = await client.delete(f"/api/admin/users/{admin_id}", headers=admin_headers)
        assert r.status_code == 409
        assert "last Admin" in r.json()["detail"]

        r = await client.put(
            f"/api/admin/users/{admin_id}", headers=admin_headers, json={"role": "Supervisor"}
        )
        assert r.status_code == 409

        still_there = (
            await db.execute(select(Principal).where(Principal.id == admin_id))
        ).scalar_one_or_none()
        assert still_there is not None

    async def test_443_reinstated_admin_counts_again(self, client, admin_headers, admin_id):
        second_id = await seed_user("second.admin@taxihub.test", role="Admin", suspended=True)
        r = await client.put(
            f"/api/admin/users/{second_id}/suspension",
            headers=admin_headers,
            json={"suspended": False},
        )
        assert r.status_code == 200

        r = await client.delete(f"/api/admin/users/{admin_id}", headers=admin_headers)
        assert r.status_code == 200

    async def test_444_admin_rows_locked_on_postgres(self):
        sql = str(active_admins_query().compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE" in sql
        assert "suspended" in sql
