from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session, sessionmaker

from civic_authz.db.base import Base
from civic_authz.models.security import Permission, Role, Tenant, User
from civic_authz.rbac.catalog import PermissionCatalog

logger = logging.getLogger(__name__)


def init_db(engine: Engine, catalog: PermissionCatalog, *, seed_demo_data: bool = True) -> None:
    """
    Create tables, then seed the permission catalog (idempotent) and, if asked,
    a small demo tenant with one user per default role.
    """

    Base.metadata.create_all(bind=engine)

    session_factory = sessionmaker(bind=engine, autoflush=False, class_=Session)
    with session_factory() as db:
        seed_catalog(db, catalog)
        if seed_demo_data and not _has_demo_data(db):
            _seed_demo(db)
        db.commit()


def seed_catalog(db: Session, catalog: PermissionCatalog) -> dict[str, Role]:
    """
    Insert missing catalog permissions and roles, and add missing role grants.

    Existing rows are never removed or downgraded; levels of existing roles
    are left alone so operators can tune them.
    """

    permissions: dict[str, Permission] = {}
    for perm_def in catalog.permissions:
        perm = db.execute(
            select(Permission).where(Permission.resource == perm_def.resource, Permission.action == perm_def.action)
        ).scalar_one_or_none()
        if perm is None:
            perm = Permission(
                name=perm_def.name,
                resource=perm_def.resource,
                action=perm_def.action,
                description=perm_def.description,
                module=perm_def.module,
            )
            db.add(perm)
        permissions[perm_def.name] = perm
    db.flush()

    roles: dict[str, Role] = {}
    for role_def in catalog.roles:
        role = db.execute(select(Role).where(Role.name == role_def.name)).scalar_one_or_none()
        if role is None:
            role = Role(
                name=role_def.name,
                description=role_def.description,
                level=role_def.level,
                is_system=role_def.is_system,
            )
            db.add(role)
        granted = {p.id for p in role.permissions if p.id is not None}
        for name in role_def.permissions:
            perm = permissions[name]
            if perm.id not in granted:
                role.permissions.append(perm)
        roles[role_def.name] = role
    db.flush()

    logger.info("Permission catalog seeded permissions=%s roles=%s", len(permissions), len(roles))
    return roles


def _has_demo_data(db: Session) -> bool:
    return db.execute(select(Tenant.id).limit(1)).first() is not None


def _seed_demo(db: Session) -> None:
    tenant = Tenant(name="City of Example", code="CITY")
    db.add(tenant)
    db.flush()

    by_name = {r.name: r for r in db.scalars(select(Role))}
    demo = [
        ("alice_admin", "ADMIN"),
        ("tina_tenant_admin", "Tenant Admin"),
        ("ed_editor", "Editor"),
        ("vera_viewer", "Viewer"),
        ("uma_user", "USER"),
    ]
    for username, role_name in demo:
        user = User(username=username, email=f"{username}@example.com", tenant_id=tenant.id, is_active=True)
        role = by_name.get(role_name)
        if role is not None:
            user.roles.append(role)
        db.add(user)
    db.flush()
