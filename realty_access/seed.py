"""
Seed the default role and permission catalogue.

Idempotent: existing permissions and roles are left as they are and only
missing role -> permission links are added.

Usage:
    python -m realty_access.seed
    python -m realty_access.seed --dry-run
    python -m realty_access.seed --super-admin-email admin@agency.example
"""

import argparse
from typing import Dict, Iterable, List, Tuple

import structlog
from sqlalchemy.orm import Session

from realty_access.database.models import GlobalRole, Permission, Role, RoleScope, User

logger = structlog.get_logger()

PLATFORM_SUPER_ADMIN = "PLATFORM_SUPER_ADMIN"
TENANT_ADMIN = "TENANT_ADMIN"
TENANT_MANAGER = "TENANT_MANAGER"
TENANT_AGENT = "TENANT_AGENT"
TENANT_ACCOUNTANT = "TENANT_ACCOUNTANT"

PLATFORM_PERMISSIONS: List[Tuple[str, str]] = [
    ("PLATFORM_TENANTS_VIEW", "View all tenants"),
    ("PLATFORM_TENANTS_CREATE", "Create tenants"),
    ("PLATFORM_TENANTS_EDIT", "Edit tenants"),
    ("PLATFORM_ROLES_VIEW", "View roles and permissions"),
    ("PLATFORM_ROLES_EDIT", "Edit roles and permissions"),
    ("PLATFORM_MODULES_VIEW", "View tenant modules"),
    ("PLATFORM_MODULES_EDIT", "Edit tenant modules"),
    ("PLATFORM_SUBSCRIPTIONS_VIEW", "View subscriptions"),
    ("PLATFORM_SUBSCRIPTIONS_EDIT", "Edit subscriptions"),
]

TENANT_PERMISSIONS: List[Tuple[str, str]] = [
    ("TENANT_SETTINGS_VIEW", "View tenant settings"),
    ("TENANT_SETTINGS_EDIT", "Edit tenant settings"),
    ("USERS_VIEW", "View collaborators"),
    ("USERS_CREATE", "Invite collaborators"),
    ("USERS_EDIT", "Edit collaborators"),
    ("USERS_DISABLE", "Disable collaborators"),
    ("BILLING_VIEW", "View billing information"),
    ("CRM_CONTACTS_VIEW", "View contacts"),
    ("CRM_CONTACTS_CREATE", "Create contacts"),
    ("CRM_CONTACTS_EDIT", "Edit contacts"),
    ("CRM_DEALS_VIEW", "View deals"),
    ("CRM_DEALS_CREATE", "Create deals"),
    ("CRM_DEALS_EDIT", "Edit deals"),
    ("CRM_ACTIVITIES_VIEW", "View activities"),
    ("CRM_ACTIVITIES_CREATE", "Log activities"),
    ("CRM_APPOINTMENTS_VIEW", "View appointments"),
    ("CRM_APPOINTMENTS_CREATE", "Schedule appointments"),
    ("CRM_MATCHING_VIEW", "View property matches"),
    ("PROPERTIES_VIEW", "View properties"),
    ("PROPERTIES_CREATE", "Create properties"),
    ("PROPERTIES_EDIT", "Edit properties"),
    ("PROPERTIES_PUBLISH", "Publish properties"),
    ("PROPERTIES_VISITS_SCHEDULE", "Schedule property visits"),
]

_AGENT_KEYS = [
    "TENANT_SETTINGS_VIEW",
    "USERS_VIEW",
    "PROPERTIES_VIEW",
    "PROPERTIES_CREATE",
    "PROPERTIES_EDIT",
    "PROPERTIES_VISITS_SCHEDULE",
    "CRM_CONTACTS_VIEW",
    "CRM_CONTACTS_CREATE",
    "CRM_CONTACTS_EDIT",
    "CRM_DEALS_VIEW",
    "CRM_DEALS_CREATE",
    "CRM_DEALS_EDIT",
    "CRM_ACTIVITIES_VIEW",
    "CRM_ACTIVITIES_CREATE",
    "CRM_APPOINTMENTS_VIEW",
    "CRM_APPOINTMENTS_CREATE",
    "CRM_MATCHING_VIEW",
]


def _prefixed(*prefixes: str) -> List[str]:
    return [key for key, _ in TENANT_PERMISSIONS if key.startswith(prefixes)]


# key -> (name, scope, description, permission keys)
ROLES: Dict[str, Tuple[str, str, str, List[str]]] = {
    PLATFORM_SUPER_ADMIN: (
        "Super Admin",
        RoleScope.PLATFORM.value,
        "Platform operator with every platform permission",
        [key for key, _ in PLATFORM_PERMISSIONS],
    ),
    TENANT_ADMIN: (
        "Administrator",
        RoleScope.TENANT.value,
        "Agency administrator",
        _prefixed("TENANT_", "USERS_", "BILLING_", "CRM_", "PROPERTIES_"),
    ),
    TENANT_MANAGER: (
        "Manager",
        RoleScope.TENANT.value,
        "Team manager",
        ["TENANT_SETTINGS_VIEW", "USERS_VIEW", "USERS_EDIT", "BILLING_VIEW",
         "PROPERTIES_VIEW", "PROPERTIES_CREATE", "PROPERTIES_EDIT", "PROPERTIES_VISITS_SCHEDULE"]
        + _prefixed("CRM_"),
    ),
    TENANT_AGENT: (
        "Agent",
        RoleScope.TENANT.value,
        "Real-estate agent",
        _AGENT_KEYS,
    ),
    TENANT_ACCOUNTANT: (
        "Accountant",
        RoleScope.TENANT.value,
        "Billing and accounting",
        _prefixed("BILLING_"),
    ),
}


def _ensure_permissions(db: Session, definitions: Iterable[Tuple[str, str]], dry_run: bool) -> int:
    existing = {key for (key,) in db.query(Permission.key).all()}
    created = 0
    for key, description in definitions:
        if key in existing:
            continue
        created += 1
        if not dry_run:
            db.add(Permission(key=key, description=description))
    if not dry_run:
        db.flush()
    return created


def seed_rbac(db: Session, dry_run: bool = False) -> Dict[str, int]:
    """
    Create the default permissions and roles.

    Returns:
        Counts of created permissions, roles and role -> permission links
    """
    permissions_created = _ensure_permissions(db, PLATFORM_PERMISSIONS + TENANT_PERMISSIONS, dry_run)

    roles_created = 0
    links_created = 0
    permissions = {p.key: p for p in db.query(Permission).all()}
    for key, (name, scope, description, permission_keys) in ROLES.items():
        role = db.query(Role).filter(Role.key == key).first()
        if not role:
            roles_created += 1
            if dry_run:
                continue
            role = Role(key=key, name=name, scope=scope, description=description)
            db.add(role)
            db.flush()

        held = {p.key for p in role.permissions}
        for permission_key in permission_keys:
            if permission_key in held or permission_key not in permissions:
                continue
            links_created += 1
            if not dry_run:
                role.permissions.append(permissions[permission_key])

    if not dry_run:
        db.commit()

    counts = {
        "permissions": permissions_created,
        "roles": roles_created,
        "role_permissions": links_created,
    }
    logger.info("RBAC seed complete", dry_run=dry_run, **counts)
    return counts


def promote_super_admin(db: Session, email: str) -> bool:
    """Give an existing user the SUPER_ADMIN global role"""
    user = db.query(User).filter(User.email == email.lower().strip()).first()
    if not user:
        return False
    user.global_role = GlobalRole.SUPER_ADMIN.value
    db.commit()
    return True


def main():
    parser = argparse.ArgumentParser(description="Seed default roles and permissions")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be created")
    parser.add_argument("--super-admin-email", help="Promote this existing user to super-admin")
    args = parser.parse_args()

    from realty_access.database.database import Base, SessionLocal, engine

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        counts = seed_rbac(db, dry_run=args.dry_run)
        print(
            f"Permissions: {counts['permissions']}, roles: {counts['roles']}, "
            f"links: {counts['role_permissions']}{' (dry run)' if args.dry_run else ''}"
        )
        if args.super_admin_email and not args.dry_run:
            if promote_super_admin(db, args.super_admin_email):
                print(f"Promoted {args.super_admin_email} to super-admin")
            else:
                print(f"User not found: {args.super_admin_email}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
