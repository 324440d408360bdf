"""
Tests 301-330: Scope Filter

Rank-level data scoping: Admins read everything, Supervisors and Marshals
only their own rank, and a rank-scoped profile without a rank reads nothing.
"""
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from taxihub.models import ActivityLog, Taxi
from taxihub.scoping import SCOPED_COLLECTIONS, apply_rank_scope, build_scoped_query, get_rank_scope

from conftest import auth_headers, login, seed_user


async def _seed_taxis(db, bree_rank_id, park_rank_id):
    db.add_all([
        Taxi(registration="BREE001GP", driver_name="Sipho", rank_id=bree_rank_id),
        Taxi(registration="BREE002GP", driver_name="Lerato", rank_id=bree_rank_id),
        Taxi(registration="PARK001GP", driver_name="Thabo", rank_id=park_rank_id),
    ])
    db.add(ActivityLog(action="seed", actor_email="system"))
    await db.commit()


async def _registrations(db, stmt):
    return sorted(t.registration for t in (await db.execute(stmt)).scalars().all())


class TestBuildScopedQuery:

    async def test_301_admin_reads_everything(self, db, bree_rank_id, park_rank_id):
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        admin = SimpleNamespace(role="Admin", rank_id=None)

        regs = await _registrations(db, build_scoped_query("taxis", admin))
        assert regs == ["BREE001GP", "BREE002GP", "PARK001GP"]

    async def test_302_marshal_reads_own_rank(self, db, bree_rank_id, park_rank_id):
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        marshal = SimpleNamespace(role="Marshal", rank_id=bree_rank_id)

        regs = await _registrations(db, build_scoped_query("taxis", marshal))
        assert regs == ["BREE001GP", "BREE002GP"]

    async def test_303_supervisor_reads_own_rank(self, db, bree_rank_id, park_rank_id):
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        supervisor = SimpleNamespace(role="Supervisor", rank_id=park_rank_id)

        regs = await _registrations(db, build_scoped_query("taxis", supervisor))
        assert regs == ["PARK001GP"]

    async def test_304_rank_role_without_rank_reads_nothing(self, db, bree_rank_id, park_rank_id):
        """A missing rank fails closed instead of widening to everything."""
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        marshal = SimpleNamespace(role="Marshal", rank_id=None)

        assert await _registrations(db, build_scoped_query("taxis", marshal)) == []

    async def test_305_unassigned_role_reads_nothing(self, db, bree_rank_id, park_rank_id):
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        pending = SimpleNamespace(role=None, rank_id=bree_rank_id)

        assert await _registrations(db, build_scoped_query("taxis", pending)) == []

    async def test_306_no_profile_reads_nothing(self, db, bree_rank_id, park_rank_id):
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        assert await _registrations(db, build_scoped_query("taxis", None)) == []

    async def test_307_rank_collection_filters_on_id(self, db, bree_rank_id, park_rank_id):
        marshal = SimpleNamespace(role="Marshal", rank_id=park_rank_id)
        ranks = (await db.execute(build_scoped_query("taxiRanks", marshal))).scalars().all()
        assert [r.name for r in ranks] == ["Park Station"]

    async def test_308_activity_log_is_admin_only(self, db, bree_rank_id, park_rank_id):
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        marshal = SimpleNamespace(role="Marshal", rank_id=bree_rank_id)
        admin = SimpleNamespace(role="Admin", rank_id=None)

        assert (await db.execute(build_scoped_query("activityLogs", marshal))).scalars().all() == []
        assert len((await db.execute(build_scoped_query("activityLogs", admin))).scalars().all()) == 1

    async def test_309_unknown_collection_is_an_error(self):
        with pytest.raises(KeyError):
            build_scoped_query("drivers", SimpleNamespace(role="Admin", rank_id=None))

    async def test_310_apply_scope_keeps_existing_filters(self, db, bree_rank_id, park_rank_id):
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        marshal = SimpleNamespace(role="Marshal", rank_id=bree_rank_id)

        stmt = apply_rank_scope(select(Taxi).where(Taxi.driver_name == "Lerato"), "taxis", marshal)
        assert await _registrations(db, stmt) == ["BREE002GP"]

    async def test_311_rank_scope_value(self, bree_rank_id):
        assert get_rank_scope(SimpleNamespace(role="Admin", rank_id=bree_rank_id)) is None
        assert get_rank_scope(SimpleNamespace(role="Marshal", rank_id=bree_rank_id)) == bree_rank_id
        assert get_rank_scope(None) is None

    async def test_312_every_rank_collection_registered(self):
        assert set(SCOPED_COLLECTIONS) == {
            "marshalls", "taxiRanks", "taxis", "loads", "payments", "meetings", "activityLogs",
        }


class TestScopedReadsOverHttp:

    async def test_321_marshal_sees_only_bree_taxis(
        self, client, db, marshal_headers, bree_rank_id, park_rank_id
    ):
        """The Bree marshal's taxi list never includes Park Station taxis."""
        await _seed_taxis(db, bree_rank_id, park_rank_id)

        r = await client.get("/api/taxis", headers=marshal_headers)
        assert r.status_code == 200
        items = r.json()["items"]
        assert {t["registration"] for t in items} == {"BREE001GP", "BREE002GP"}
        assert all(t["rank_name"] == "Bree Taxi Rank" for t in items)

    async def test_322_admin_sees_all_taxis(self, client, db, admin_headers, bree_rank_id, park_rank_id):
        await _seed_taxis(db, bree_rank_id, park_rank_id)

        r = await client.get("/api/taxis", headers=admin_headers)
        assert r.json()["total"] == 3

    async def test_323_out_of_scope_taxi_is_404(
        self, client, db, marshal_headers, bree_rank_id, park_rank_id
    ):
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        park_taxi = (
            await db.execute(select(Taxi).where(Taxi.registration == "PARK001GP"))
        ).scalar_one()

        r = await client.get(f"/api/taxis/{park_taxi.id}", headers=marshal_headers)
        assert r.status_code == 404

    async def test_324_supervisor_rank_list_is_own_rank(
        self, client, supervisor_headers, bree_rank_id, park_rank_id
    ):
        r = await client.get("/api/ranks", headers=supervisor_headers)
        assert [rank["name"] for rank in r.json()["items"]] == ["Bree Taxi Rank"]

        r = await client.get(f"/api/ranks/{park_rank_id}", headers=supervisor_headers)
        assert r.status_code == 404

    async def test_325_marshal_activity_log_is_empty(self, client, marshal_headers):
        r = await client.get("/api/admin/activity-logs", headers=marshal_headers)
        assert r.status_code == 200
        assert r.json()["items"] == []
        assert r.json()["total"] == 0

    async def test_326_marshal_without_rank_sees_nothing(self, client, db, bree_rank_id, park_rank_id):
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        await seed_user("floating@taxihub.test", role="Marshal", rank_id=None)
        headers = auth_headers(await login(client, "floating@taxihub.test"))

        r = await client.get("/api/taxis", headers=headers)
        assert r.status_code == 200
        assert r.json()["items"] == []

    async def test_327_search_stays_inside_scope(
        self, client, db, marshal_headers, bree_rank_id, park_rank_id
    ):
        await _seed_taxis(db, bree_rank_id, park_rank_id)
        r = await client.get("/api/taxis", params={"search": "thabo"}, headers=marshal_headers)
        assert r.json()["items"] == []

        r = await client.get("/api/taxis", params={"search": "sip"}, headers=marshal_headers)
        assert [t["registration"] for t in r.json()["items"]] == ["BREE001GP"]
