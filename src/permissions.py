"""
Role-based permission checks.

Role hierarchy, highest first:
  superadmin       platform-wide access
  org_admin        manages an organization
  project_manager  creates and manages projects
  owner            owns a project
  editor           edits FMEA data
  viewer           read-only
  guest            temporary project access

All checks are plain predicates over an already-loaded snapshot.
"""

from __future__ import annotations

from typing import Optional

from datastore import Snapshot
from fmea_schema import Organization, User

ROLE_LEVELS: dict[str, int] = {
    "superadmin": 100,
    "org_admin": 80,
    "project_manager": 60,
    "owner": 60,
    "editor": 40,
    "viewer": 20,
    "guest": 10,
}


def _project(snapshot: Snapshot, project_id: str) -> Optional[dict]:
    return next((p for p in snapshot["projects"] if p["id"] == project_id), None)


def _organization(snapshot: Snapshot, organization_id: str) -> Optional[dict]:
    return next((o for o in snapshot["organizations"] if o["id"] == organization_id), None)


def is_superadmin(user: Optional[User]) -> bool:
    return bool(user and user.is_superadmin)


# ── Organization level ────────────────────────────────────────────────────────

def get_user_role_in_organization(snapshot: Snapshot, user_id: str, organization_id: str) -> Optional[str]:
    membership = next(
        (m for m in snapshot["organization_members"]
         if m["user_id"] == user_id and m["organization_id"] == organization_id),
        None,
    )
    return membership["role"] if membership else None


def is_organization_member(snapshot: Snapshot, user_id: str, organization_id: str) -> bool:
    return get_user_role_in_organization(snapshot, user_id, organization_id) is not None


def can_manage_organization(snapshot: Snapshot, user: User, organization_id: str) -> bool:
    if is_superadmin(user):
        return True
    return get_user_role_in_organization(snapshot, user.id, organization_id) == "org_admin"


def can_invite_to_organization(snapshot: Snapshot, user: User, organization_id: str) -> bool:
    return can_manage_organization(snapshot, user, organization_id)


def can_create_projects(snapshot: Snapshot, user: User, organization_id: str) -> bool:
    if is_superadmin(user):
        return True
    role = get_user_role_in_organization(snapshot, user.id, organization_id)
    return role in ("org_admin", "project_manager")


def can_remove_organization_member(
    snapshot: Snapshot, user: User, organization_id: str, target_member_id: str,
) -> bool:
    """Org admins may remove members, but never themselves (prevents lockout)."""
    if is_superadmin(user):
        return True
    if get_user_role_in_organization(snapshot, user.id, organization_id) != "org_admin":
        return False
    target = next((m for m in snapshot["organization_members"] if m["id"] == target_member_id), None)
    return target is not None and target["user_id"] != user.id


def can_add_more_users(snapshot: Snapshot, organization_id: str) -> bool:
    org = _organization(snapshot, organization_id)
    if org is None:
        return False
    count = sum(1 for m in snapshot["organization_members"] if m["organization_id"] == organization_id)
    return count < org["max_users"]


def can_create_more_projects(snapshot: Snapshot, organization_id: str) -> bool:
    org = _organization(snapshot, organization_id)
    if org is None:
        return False
    count = sum(1 for p in snapshot["projects"] if p.get("organization_id") == organization_id)
    return count < org["max_projects"]


def get_user_organizations(snapshot: Snapshot, user: User) -> list[Organization]:
    """Every organization for a superadmin, otherwise the ones the user belongs to."""
    if is_superadmin(user):
        rows = snapshot["organizations"]
    else:
        org_ids = {m["organization_id"] for m in snapshot["organization_members"] if m["user_id"] == user.id}
        rows = [o for o in snapshot["organizations"] if o["id"] in org_ids]
    return [Organization.model_validate(o) for o in rows]


# ── Project level ─────────────────────────────────────────────────────────────

def get_user_role_in_project(snapshot: Snapshot, user_id: str, project_id: str) -> Optional[str]:
    membership = next(
        (m for m in snapshot["project_members"] if m["user_id"] == user_id and m["project_id"] == project_id),
        None,
    )
    if membership:
        return membership["role"]
    project = _project(snapshot, project_id)
    if project and project.get("created_by") == user_id:
        return "owner"
    return None


def can_view_project(snapshot: Snapshot, user: User, project_id: str) -> bool:
    if is_superadmin(user):
        return True
    project = _project(snapshot, project_id)
    if project is None:
        return False
    org_id = project.get("organization_id")
    if org_id and is_organization_member(snapshot, user.id, org_id):
        return True
    return get_user_role_in_project(snapshot, user.id, project_id) is not None


def can_edit_project(snapshot: Snapshot, user: User, project_id: str) -> bool:
    if is_superadmin(user):
        return True
    return get_user_role_in_project(snapshot, user.id, project_id) in ("owner", "editor")


def can_delete_project(snapshot: Snapshot, user: User, project_id: str) -> bool:
    if is_superadmin(user):
        return True
    project = _project(snapshot, project_id)
    if project is None:
        return False
    org_id = project.get("organization_id")
    if org_id and get_user_role_in_organization(snapshot, user.id, org_id) == "org_admin":
        return True
    return get_user_role_in_project(snapshot, user.id, project_id) == "owner"


def can_share_project(snapshot: Snapshot, user: User, project_id: str) -> bool:
    if is_superadmin(user):
        return True
    project = _project(snapshot, project_id)
    if project is None:
        return False
    org_id = project.get("organization_id")
    if org_id and get_user_role_in_organization(snapshot, user.id, org_id) in ("org_admin", "project_manager"):
        return True
    return get_user_role_in_project(snapshot, user.id, project_id) == "owner"


def get_effective_project_role(snapshot: Snapshot, user: User, project_id: str) -> Optional[str]:
    """Highest role the user holds for a project, across platform, organization and project."""
    if is_superadmin(user):
        return "superadmin"
    project = _project(snapshot, project_id)
    if project is None:
        return None
    org_id = project.get("organization_id")
    if org_id and get_user_role_in_organization(snapshot, user.id, org_id) == "org_admin":
        return "org_admin"
    return get_user_role_in_project(snapshot, user.id, project_id)


def has_minimum_role(user_role: Optional[str], required_role: str) -> bool:
    return ROLE_LEVELS.get(user_role or "", 0) >= ROLE_LEVELS.get(required_role, 0)
