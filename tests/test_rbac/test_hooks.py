"""Tests for cache invalidation hooks and the assignment service that calls them."""

from unittest.mock import MagicMock

import pytest

from civic_authz.rbac.errors import AuthorizationDenied, LookupFailure
from civic_authz.rbac.hooks import InvalidationHooks
from civic_authz.services.assignments import RecordNotFound


# ---- Hooks -------------------------------------------------------------------------


def test_assignments_changed_invalidates_each_subject_once():
    authz = MagicMock()
    hooks = InvalidationHooks(authz, store=MagicMock())
    hooks.assignments_changed(1, 2, 1)
    assert [c.args for c in authz.invalidate_user_cache.call_args_list] == [(1,), (2,)]


def test_role_changed_invalidates_holders():
    authz = MagicMock()
    store = MagicMock()
    store.subjects_with_role.return_value = [3, 4]
    hooks = InvalidationHooks(authz, store=store)

    assert hooks.role_changed(7) == [3, 4]
    store.subjects_with_role.assert_called_once_with(7)
    assert authz.invalidate_user_cache.call_count == 2


def test_role_changed_with_explicit_affected_skips_lookup():
    authz = MagicMock()
    store = MagicMock()
    hooks = InvalidationHooks(authz, store=store)
    assert hooks.role_changed(7, affected=[9]) == [9]
    store.subjects_with_role.assert_not_called()


def test_lookup_failure_clears_everything():
    authz = MagicMock()
    store = MagicMock()
    store.subjects_with_permission.side_effect = LookupFailure("down")
    hooks = InvalidationHooks(authz, store=store)

    assert hooks.permission_changed(5) == []
    authz.clear_all_cache.assert_called_once_with()


def test_catalog_reset_clears_cache():
    authz = MagicMock()
    InvalidationHooks(authz, store=MagicMock()).catalog_reset()
    authz.clear_all_cache.assert_called_once_with()


# ---- Assignment service ------------------------------------------------------------


def test_assign_role_takes_effect_immediately(authz, assignments, seeded, role_ids):
    actor, uma = seeded["tina_tenant_admin"], seeded["uma_user"]
    assert not authz.has_permission(uma, "sites", "update")

    assert assignments.assign_role(actor, uma, role_ids["Editor"]) is True
    assert authz.has_permission(uma, "sites", "update")

    assert assignments.assign_role(actor, uma, role_ids["Editor"]) is False


def test_revoke_role_takes_effect_immediately(authz, assignments, seeded, role_ids):
    actor, ed = seeded["tina_tenant_admin"], seeded["ed_editor"]
    assert authz.has_permission(ed, "sites", "update")

    assert assignments.revoke_role(actor, ed, role_ids["Editor"]) is True
    assert not authz.has_permission(ed, "sites", "update")
    assert authz.subject_level(ed) == 0


def test_cannot_hand_out_role_at_own_level(assignments, seeded, role_ids):
    with pytest.raises(AuthorizationDenied):
        assignments.assign_role(seeded["tina_tenant_admin"], seeded["uma_user"], role_ids["Tenant Admin"])


def test_cannot_manage_peer(assignments, seeded, role_ids):
    with pytest.raises(AuthorizationDenied):
        assignments.assign_role(seeded["tina_tenant_admin"], seeded["alice_admin"], role_ids["Viewer"])


def test_assign_without_permission_is_denied(assignments, seeded, role_ids):
    with pytest.raises(AuthorizationDenied):
        assignments.assign_role(seeded["ed_editor"], seeded["nobody"], role_ids["Viewer"])


def test_assign_unknown_role_is_not_found(assignments, seeded):
    with pytest.raises(RecordNotFound):
        assignments.assign_role(seeded["alice_admin"], seeded["uma_user"], 99999)


def test_direct_grant_and_revoke(authz, assignments, seeded, permission_ids):
    alice, vera = seeded["alice_admin"], seeded["vera_viewer"]
    perm = permission_ids["sites:delete"]

    assert not authz.has_permission(vera, "sites", "delete")
    assert assignments.grant_permission(alice, vera, perm) is True
    assert authz.has_permission(vera, "sites", "delete")

    assert assignments.revoke_permission(alice, vera, perm) is True
    assert not authz.has_permission(vera, "sites", "delete")


def test_grant_requires_permissions_assign(assignments, seeded, permission_ids):
    # Tenant Admin outranks the viewer but lacks permissions:assign
    with pytest.raises(AuthorizationDenied):
        assignments.grant_permission(seeded["tina_tenant_admin"], seeded["vera_viewer"], permission_ids["sites:delete"])


def test_set_role_permissions_invalidates_every_holder(authz, assignments, seeded, role_ids, permission_ids):
    ed = seeded["ed_editor"]
    assert authz.has_permission(ed, "sites", "update")
    assert not authz.has_permission(ed, "sites", "delete")

    affected = assignments.set_role_permissions(
        seeded["alice_admin"], role_ids["Editor"], [permission_ids["sites:delete"]]
    )

    assert ed in affected
    assert authz.has_permission(ed, "sites", "delete")
    assert not authz.has_permission(ed, "sites", "update")


def test_set_role_level_changes_hierarchy(authz, assignments, seeded, role_ids):
    ed = seeded["ed_editor"]
    assert authz.subject_level(ed) == 1
    assignments.set_role_level(seeded["alice_admin"], role_ids["Editor"], 2)
    assert authz.subject_level(ed) == 2


def test_create_and_delete_role(authz, assignments, seeded, permission_ids):
    alice, uma = seeded["alice_admin"], seeded["uma_user"]
    role_id = assignments.create_role(alice, "Fleet Clerk", permission_ids=[permission_ids["vehicles:update"]])
    assignments.assign_role(alice, uma, role_id)
    assert authz.has_permission(uma, "vehicles", "update")

    affected = assignments.delete_role(alice, role_id)

    assert affected == [uma]
    assert not authz.has_permission(uma, "vehicles", "update")


def test_created_role_gets_name_derived_level(authz, assignments, seeded, session_factory):
    from civic_authz.models.security import Role

    role_id = assignments.create_role(seeded["alice_admin"], "Depot Admin")
    with session_factory() as db:
        assert db.get(Role, role_id).level == 2


def test_role_management_needs_admin_level(assignments, seeded):
    with pytest.raises(AuthorizationDenied):
        assignments.create_role(seeded["ed_editor"], "Sneaky")
