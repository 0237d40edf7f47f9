"""
Tests for SqlPermissionStore and catalog seeding against a seeded in-memory DB.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from civic_authz.db.init_db import seed_catalog
from civic_authz.models.security import Permission, Role
from civic_authz.rbac.errors import LookupFailure
from civic_authz.rbac.store import SqlPermissionStore


def test_snapshot_for_admin(store, seeded):
    snap = store.load_subject_snapshot(seeded["alice_admin"])
    assert snap.is_admin
    assert snap.level == 2
    assert snap.role_names == {"ADMIN"}


def test_snapshot_for_editor(store, seeded):
    snap = store.load_subject_snapshot(seeded["ed_editor"])
    assert not snap.is_admin
    assert snap.level == 1
    assert snap.tenant_id is not None
    assert snap.direct == ()
    names = {p.name for p in snap.role_permissions()}
    assert "sites:update" in names
    assert "sites:delete" not in names


def test_snapshot_for_unknown_and_roleless(store, seeded):
    assert store.load_subject_snapshot(99999) is None
    snap = store.load_subject_snapshot(seeded["nobody"])
    assert snap.level == 0
    assert list(snap.all_permissions()) == []


def test_admin_role_name_is_case_insensitive_and_configurable(session_factory, seeded):
    assert SqlPermissionStore(session_factory, admin_role_name="admin").load_subject_snapshot(seeded["alice_admin"]).is_admin
    custom = SqlPermissionStore(session_factory, admin_role_name="Tenant Admin")
    assert custom.load_subject_snapshot(seeded["tina_tenant_admin"]).is_admin
    assert not custom.load_subject_snapshot(seeded["alice_admin"]).is_admin


def test_subjects_with_role(store, seeded, role_ids):
    holders = store.subjects_with_role(role_ids["Editor"])
    assert holders == sorted([seeded["ed_editor"], seeded["ghost_editor"]])


def test_subjects_with_permission_includes_role_holders(store, seeded, permission_ids):
    holders = store.subjects_with_permission(permission_ids["sites:update"])
    assert seeded["ed_editor"] in holders
    assert seeded["alice_admin"] in holders
    assert seeded["vera_viewer"] not in holders


def test_subject_levels(store, seeded):
    levels = dict(store.subject_levels())
    assert levels[seeded["alice_admin"]] == 2
    assert levels[seeded["uma_user"]] == 1
    assert levels[seeded["nobody"]] == 0


def test_database_errors_become_lookup_failure():
    def broken_factory():
        session = MagicMock()
        session.__enter__.return_value = session
        session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("db down"))
        return session

    store = SqlPermissionStore(broken_factory)
    with pytest.raises(LookupFailure):
        store.load_subject_snapshot(1)
    with pytest.raises(LookupFailure):
        store.subjects_with_role(1)
    with pytest.raises(LookupFailure):
        store.subject_levels()


def test_seed_catalog_is_idempotent(session_factory, seeded, catalog):
    with session_factory() as db:
        before = db.scalar(select(func.count()).select_from(Permission))
        seed_catalog(db, catalog)
        db.commit()
        after = db.scalar(select(func.count()).select_from(Permission))
        assert before == after == len(catalog.permissions)


def test_seed_catalog_keeps_tuned_levels(session_factory, seeded, catalog):
    with session_factory() as db:
        editor = db.execute(select(Role).where(Role.name == "Editor")).scalar_one()
        editor.level = 0
        db.commit()

        seed_catalog(db, catalog)
        db.commit()

        assert db.execute(select(Role.level).where(Role.name == "Editor")).scalar_one() == 0
