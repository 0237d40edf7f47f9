"""
Pytest fixtures for the test suite.

Data-layer tests use an in-memory SQLite engine. ``db_session`` rolls back
after each test; the seeded fixtures build a fresh database per test from the
bundled permission catalog, so tests do not affect each other.
"""
from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


TEST_DB_URL = "sqlite:///:memory:"
CATALOG_PATH = Path(__file__).resolve().parents[1] / "config" / "permission_catalog.yaml"


@pytest.fixture
def engine():
    """Create a fresh in-memory SQLite engine for each test (one shared connection)."""
    return create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )


@pytest.fixture
def tables(engine):
    """Create all ORM tables on the test engine."""
    from civic_authz.db.base import Base
    import civic_authz.models.security  # noqa: F401  (register tables)

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(tables):
    """
    Provide a Session bound to the test DB; roll back after each test.

    Use this in tests that only need plain ORM access.
    """
    connection = tables.connect()
    transaction = connection.begin()
    TestSession = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        class_=Session,
    )
    session = TestSession()
    yield session
    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def session_factory(tables):
    return sessionmaker(bind=tables, autoflush=False, class_=Session)


@pytest.fixture
def catalog():
    from civic_authz.rbac.catalog import load_permission_catalog

    return load_permission_catalog(CATALOG_PATH)


@pytest.fixture
def seeded(tables, session_factory, catalog):
    """
    Catalog + demo tenant. Returns ``{username: user_id}``; also adds a
    ``nobody`` user without roles and an inactive editor.
    """
    from civic_authz.db.init_db import init_db
    from civic_authz.models.security import Role, User

    init_db(tables, catalog, seed_demo_data=True)

    with session_factory() as db:
        db.add(User(username="nobody", email="nobody@example.com", is_active=True))
        editor = db.execute(select(Role).where(Role.name == "Editor")).scalar_one()
        ghost = User(username="ghost_editor", email="ghost@example.com", is_active=False)
        ghost.roles.append(editor)
        db.add(ghost)
        db.commit()
        return {u.username: u.id for u in db.scalars(select(User))}


@pytest.fixture
def role_ids(seeded, session_factory):
    from civic_authz.models.security import Role

    with session_factory() as db:
        return {r.name: r.id for r in db.scalars(select(Role))}


@pytest.fixture
def permission_ids(seeded, session_factory):
    from civic_authz.models.security import Permission

    with session_factory() as db:
        return {p.name: p.id for p in db.scalars(select(Permission))}


@pytest.fixture
def store(session_factory):
    from civic_authz.rbac.store import SqlPermissionStore

    return SqlPermissionStore(session_factory)


@pytest.fixture
def clock():
    """Manually advanced monotonic clock for TTL tests."""

    class FakeClock:
        def __init__(self) -> None:
            self.now = 1000.0

        def __call__(self) -> float:
            return self.now

        def advance(self, seconds: float) -> None:
            self.now += seconds

    return FakeClock()


@pytest.fixture
def authz(store, clock):
    from civic_authz.rbac.cache import InProcessCache
    from civic_authz.rbac.service import AuthorizationService

    return AuthorizationService(store, InProcessCache(ttl_seconds=300, clock=clock))


@pytest.fixture
def assignments(session_factory, authz):
    from civic_authz.rbac.hooks import InvalidationHooks
    from civic_authz.services.assignments import AssignmentService

    return AssignmentService(session_factory, authz, InvalidationHooks(authz))


@pytest.fixture
def client(seeded, session_factory, authz, assignments):
    """TestClient over the real app, wired to the seeded test database."""
    from fastapi.testclient import TestClient

    from civic_authz.db.session import get_db
    from civic_authz.main import create_app

    app = create_app()

    def _get_test_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_test_db
    app.state.authz = authz
    app.state.assignments = assignments

    # No context manager: the lifespan (real database + catalog seeding) is skipped.
    return TestClient(app)


@pytest.fixture
def bearer():
    def _headers(user_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}"}

    return _headers
