"""
Organization invitations.

Invitations are never deleted when cancelled or accepted: their status
changes instead, which keeps an audit trail of who was invited and when.
They are only removed together with their organization.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel

from datastore import DuplicateError, PlanLimitError, Snapshot, generate_id, require
from fmea_schema import OrganizationInvitation, OrganizationMember, utcnow
from permissions import can_add_more_users

INVITATION_TTL = timedelta(days=7)


class InvitationCheck(BaseModel):
    valid: bool
    invitation: Optional[OrganizationInvitation] = None
    reason: Optional[str] = None


def _by_token(snapshot: Snapshot, token: str) -> Optional[dict]:
    return next((i for i in snapshot["organization_invitations"] if i["invitation_token"] == token), None)


def create_invitation(
    snapshot: Snapshot,
    organization_id: str,
    email: str,
    role: str,
    invited_by: str,
    now: Optional[datetime] = None,
) -> OrganizationInvitation:
    """
    Add a pending invitation to the snapshot.

    Raises:
        EntityNotFoundError: if the organization does not exist.
        DuplicateError: if the email already has a pending invitation or
            belongs to a current member.
    """
    now = now or utcnow()
    require(snapshot, "organizations", organization_id, "Organization")
    email = email.strip().lower()

    user = next((u for u in snapshot["users"] if u["email"].lower() == email), None)
    if user and any(
        m["user_id"] == user["id"] and m["organization_id"] == organization_id
        for m in snapshot["organization_members"]
    ):
        raise DuplicateError(f"{email} is already a member of this organization")

    if any(
        i["organization_id"] == organization_id and i["email"] == email and i["status"] == "pending"
        for i in snapshot["organization_invitations"]
    ):
        raise DuplicateError(f"An invitation for {email} is already pending")

    invitation = OrganizationInvitation(
        id=generate_id(),
        organization_id=organization_id,
        email=email,
        role=role,
        invited_by=invited_by,
        invitation_token=secrets.token_hex(32),
        expires_at=now + INVITATION_TTL,
        created_at=now,
        updated_at=now,
    )
    snapshot["organization_invitations"].append(invitation.to_record())
    return invitation


def validate_invitation_token(snapshot: Snapshot, token: str, now: Optional[datetime] = None) -> InvitationCheck:
    now = now or utcnow()
    raw = _by_token(snapshot, token)
    if raw is None:
        return InvitationCheck(valid=False, reason="Invitation not found")

    invitation = OrganizationInvitation.model_validate(raw)
    if invitation.status != "pending":
        return InvitationCheck(valid=False, invitation=invitation, reason=f"Invitation is {invitation.status}")
    if invitation.expires_at < now:
        return InvitationCheck(valid=False, invitation=invitation, reason="Invitation has expired")
    return InvitationCheck(valid=True, invitation=invitation)


def cancel_invitation(snapshot: Snapshot, invitation_id: str) -> OrganizationInvitation:
    """Mark an invitation cancelled; the record stays in place."""
    raw = require(snapshot, "organization_invitations", invitation_id, "Invitation")
    raw["status"] = "cancelled"
    raw["updated_at"] = utcnow().isoformat()
    return OrganizationInvitation.model_validate(raw)


def accept_invitation(
    snapshot: Snapshot, token: str, user_id: str, now: Optional[datetime] = None,
) -> OrganizationMember:
    """
    Join the invited user to the organization and mark the invitation accepted.

    Raises:
        ValueError: if the token is not valid (unknown, used, cancelled or expired).
        EntityNotFoundError: if the user does not exist.
        DuplicateError: if the user is already a member.
        PlanLimitError: if the organization has no seats left.
    """
    now = now or utcnow()
    check = validate_invitation_token(snapshot, token, now)
    if not check.valid:
        raise ValueError(check.reason)
    invitation = check.invitation

    require(snapshot, "users", user_id, "User")
    if any(
        m["user_id"] == user_id and m["organization_id"] == invitation.organization_id
        for m in snapshot["organization_members"]
    ):
        raise DuplicateError("You are already a member of this organization")
    if not can_add_more_users(snapshot, invitation.organization_id):
        raise PlanLimitError(f"Organization {invitation.organization_id} has reached its user limit")

    member = OrganizationMember(
        id=generate_id(),
        organization_id=invitation.organization_id,
        user_id=user_id,
        role=invitation.role,
        invited_by=invitation.invited_by,
        joined_at=now,
    )
    snapshot["organization_members"].append(member.to_record())

    raw = _by_token(snapshot, token)
    raw["status"] = "accepted"
    raw["accepted_at"] = now.isoformat()
    raw["updated_at"] = now.isoformat()
    return member
