"""
Tests for caller identity: header parsing and subject loading (ORM).

Uses db_session fixture: in-memory SQLite, rolled back after each test.
"""
from __future__ import annotations

import pytest
from fastapi import HTTPException, Request

from civic_authz.models.security import Role, Tenant, User
from civic_authz.security.auth import AuthenticatedSubject, load_subject, read_subject_id
from civic_authz.settings import Settings


def test_load_subject_returns_subject_with_tenant(db_session):
    # Arrange: create tenant, role, user (like init_db does)
    tenant = Tenant(name="City of Testing", code="TEST")
    db_session.add(tenant)
    db_session.flush()

    role = Role(name="Editor", description="Edits assets")
    db_session.add(role)
    db_session.flush()

    user = User(
        username="testuser",
        email="test@example.com",
        tenant_id=tenant.id,
        is_active=True,
    )
    user.roles.append(role)
    db_session.add(user)
    db_session.commit()

    # Act
    loaded = load_subject(db_session, user.id)

    # Assert
    assert loaded == AuthenticatedSubject(
        subject_id=user.id,
        username="testuser",
        tenant_id=tenant.id,
        tenant_code="TEST",
    )
    assert [r.name for r in user.roles] == ["Editor"]


def test_role_level_defaults_from_name(db_session):
    db_session.add_all([Role(name="Depot Admin"), Role(name="Clerk"), Role(name="Auditor", level=0)])
    db_session.flush()

    levels = {r.name: r.level for r in db_session.query(Role).all()}
    assert levels == {"Depot Admin": 2, "Clerk": 1, "Auditor": 0}


def test_load_subject_raises_when_not_found(db_session):
    with pytest.raises(HTTPException) as exc_info:
        load_subject(db_session, 99999)
    assert exc_info.value.status_code == 401


def test_load_subject_raises_when_inactive(db_session):
    user = User(
        username="inactive",
        email="inactive@example.com",
        is_active=False,
    )
    db_session.add(user)
    db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        load_subject(db_session, user.id)
    assert exc_info.value.status_code == 401


def test_load_subject_without_tenant(db_session):
    user = User(username="platform", email="platform@example.com", is_active=True)
    db_session.add(user)
    db_session.commit()

    loaded = load_subject(db_session, user.id)
    assert loaded.tenant_id is None
    assert loaded.tenant_code is None


def _request(authorization: str | None) -> Request:
    headers = [] if authorization is None else [(b"authorization", authorization.encode())]
    return Request({"type": "http", "method": "GET", "path": "/admin/tenants", "query_string": b"", "headers": headers})


@pytest.mark.parametrize(
    ("authorization", "expected"),
    [(None, None), ("Bearer 42", 42), ("Bearer  7 ", 7)],
)
def test_read_subject_id(authorization, expected):
    assert read_subject_id(_request(authorization), Settings()) == expected


@pytest.mark.parametrize("authorization", ["Token 1", "Bearer", "Bearer abc", "Bearer 0", "bearer 1"])
def test_read_subject_id_rejects_malformed_headers(authorization):
    with pytest.raises(HTTPException) as exc_info:
        read_subject_id(_request(authorization), Settings())
    assert exc_info.value.status_code == 400
