"""Tests for the permission name grammar."""

import pytest

from civic_authz.rbac.errors import ConfigurationError
from civic_authz.rbac.names import (
    PermissionKey,
    normalize_action,
    normalize_name,
    normalize_resource,
    parse_permission_name,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("site", "sites"),
        ("Sites", "sites"),
        ("inventory", "inventories"),
        ("day", "days"),
        ("box", "boxes"),
        ("branch", "branches"),
        ("users", "users"),
        ("work-order", "work_orders"),
        ("  Device  ", "devices"),
    ],
)
def test_normalize_resource_pluralizes_and_lowercases(raw, expected):
    assert normalize_resource(raw) == expected


def test_normalize_action_lowercases():
    assert normalize_action(" UPDATE ") == "update"


@pytest.mark.parametrize("bad", ["", "   ", None])
def test_normalizers_reject_empty(bad):
    with pytest.raises(ConfigurationError):
        normalize_resource(bad)
    with pytest.raises(ConfigurationError):
        normalize_action(bad)
    with pytest.raises(ConfigurationError):
        normalize_name(bad)


def test_both_grammars_parse_to_the_same_key():
    assert parse_permission_name("sites:update") == PermissionKey("sites", "update")
    assert parse_permission_name("UPDATE_SITES") == PermissionKey("sites", "update")
    assert parse_permission_name("READ_REPORTS") == parse_permission_name("reports:read")


def test_singular_resource_is_normalized():
    assert parse_permission_name("site:read") == PermissionKey("sites", "read")
    assert parse_permission_name("READ_SITE") == PermissionKey("sites", "read")


def test_manage_prefix_form():
    assert parse_permission_name("manage:users:delete") == PermissionKey("users", "delete")


def test_underscore_form_keeps_rest_as_resource():
    assert parse_permission_name("UPDATE_WORK_ORDERS") == PermissionKey("work_orders", "update")


@pytest.mark.parametrize(
    "bad",
    [
        "",
        "sites",
        "sites:",
        ":update",
        "a:b:c",
        "sites:update:extra",
        "UPDATE_",
        "_SITES",
    ],
)
def test_malformed_names_raise(bad):
    with pytest.raises(ConfigurationError):
        parse_permission_name(bad)


def test_permission_key_str():
    assert str(PermissionKey.of("Site", "READ")) == "sites:read"
