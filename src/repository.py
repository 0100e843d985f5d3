"""
Typed CRUD over the JSON datastore.

Every record is validated through its pydantic model before it is written, so
the datastore only ever holds well-formed records. Deletes go through the
referential integrity engine.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from datastore import (
    DuplicateError,
    EntityNotFoundError,
    JSONDatastore,
    PlanLimitError,
    Snapshot,
    generate_id,
    require,
)
from fmea_schema import (
    PLAN_LIMITS,
    Action,
    Asset,
    Cause,
    Component,
    Control,
    Effect,
    FailureMode,
    FailureModeDetail,
    Organization,
    OrganizationInvitation,
    OrganizationMember,
    Project,
    ProjectGuestLink,
    ProjectMember,
    User,
    utcnow,
)
from integrity import DeleteResult, EntityType, delete_entity
from invitations import accept_invitation, cancel_invitation, create_invitation
from permissions import can_add_more_users, can_create_more_projects
from project_settings import ProjectSettings, load_settings, merge_settings, score_bounds
from risk_engine import band_for_rpn, calculate_failure_mode_risk

logger = logging.getLogger(__name__)


def children(snapshot: Snapshot, collection: str, field: str, parent_id: str) -> list[dict[str, Any]]:
    return [r for r in snapshot[collection] if r.get(field) == parent_id]


def project_settings_for(snapshot: Snapshot, project_id: str) -> ProjectSettings:
    project = require(snapshot, "projects", project_id, "Project")
    return load_settings(project.get("settings"))


def failure_mode_detail(
    snapshot: Snapshot,
    fm: dict[str, Any],
    settings: ProjectSettings,
) -> FailureModeDetail:
    """Assemble a failure mode with its children, worst-case risk and band under the project's settings."""
    causes = [Cause.model_validate(r) for r in children(snapshot, "causes", "failure_mode_id", fm["id"])]
    effects = [Effect.model_validate(r) for r in children(snapshot, "effects", "failure_mode_id", fm["id"])]
    controls = [Control.model_validate(r) for r in children(snapshot, "controls", "failure_mode_id", fm["id"])]
    actions = [Action.model_validate(r) for r in children(snapshot, "actions", "failure_mode_id", fm["id"])]
    _, top = score_bounds(settings.scale_type)
    risk = calculate_failure_mode_risk(causes, effects, controls, undetectable=top)
    return FailureModeDetail(
        failure_mode=FailureMode.model_validate(fm),
        causes=causes,
        effects=effects,
        controls=controls,
        actions=actions,
        risk=risk,
        band=band_for_rpn(risk.max_rpn, settings.thresholds),
    )


def _touch(record: dict[str, Any]) -> None:
    record["updated_at"] = utcnow().isoformat()


# Rating fields stored on each child of a failure mode.
_RATING_FIELDS: dict[str, tuple[str, ...]] = {
    "causes": ("occurrence",),
    "effects": ("severity", "severity_post", "occurrence_post", "detection_post"),
    "controls": ("detection",),
    "actions": ("post_action_severity", "post_action_occurrence", "post_action_detection"),
}


def highest_rating(snapshot: Snapshot, project_id: str) -> int:
    """Largest rating stored anywhere in the project, 0 when there is none."""
    fm_ids = {fm["id"] for fm in children(snapshot, "failure_modes", "project_id", project_id)}
    return max(
        (
            record[field]
            for collection, fields in _RATING_FIELDS.items()
            for record in snapshot[collection]
            if record.get("failure_mode_id") in fm_ids
            for field in fields
            if record.get(field) is not None
        ),
        default=0,
    )


class FMEARepository:
    """Entry point for every read and write of FMEA data."""

    def __init__(self, store: JSONDatastore):
        self.store = store

    # ── Organizations ─────────────────────────────────────────────────────────

    def create_user(self, email: str, name: str = "", is_superadmin: bool = False) -> User:
        with self.store.transaction() as db:
            if any(u.get("email") == email for u in db["users"]):
                raise DuplicateError(f"User with email {email} already exists")
            user = User(id=generate_id(), email=email, name=name, is_superadmin=is_superadmin)
            db["users"].append(user.to_record())
        return user

    def get_user(self, user_id: str) -> User:
        db = self.store.load()
        return User.model_validate(require(db, "users", user_id, "User"))

    def create_organization(self, name: str, slug: str, created_by: str, plan: str = "free") -> Organization:
        """Create an organization with its plan limits; the creator becomes org_admin."""
        if plan not in PLAN_LIMITS:
            raise ValueError(f"Unknown plan '{plan}'")
        with self.store.transaction() as db:
            if any(o.get("slug") == slug for o in db["organizations"]):
                raise DuplicateError(f"Organization slug already exists: {slug}")
            org = Organization(id=generate_id(), name=name, slug=slug, plan=plan, **PLAN_LIMITS[plan])
            db["organizations"].append(org.to_record())
            member = OrganizationMember(
                id=generate_id(), organization_id=org.id, user_id=created_by, role="org_admin",
            )
            db["organization_members"].append(member.to_record())
        logger.info("Created organization %s (%s plan)", org.id, plan)
        return org

    def add_organization_member(
        self, organization_id: str, user_id: str, role: str, invited_by: Optional[str] = None,
    ) -> OrganizationMember:
        with self.store.transaction() as db:
            require(db, "organizations", organization_id, "Organization")
            if any(
                m["organization_id"] == organization_id and m["user_id"] == user_id
                for m in db["organization_members"]
            ):
                raise DuplicateError(f"User {user_id} is already a member of {organization_id}")
            if not can_add_more_users(db, organization_id):
                raise PlanLimitError(f"Organization {organization_id} has reached its user limit")
            member = OrganizationMember(
                id=generate_id(), organization_id=organization_id, user_id=user_id,
                role=role, invited_by=invited_by,
            )
            db["organization_members"].append(member.to_record())
        return member

    def create_invitation(
        self, organization_id: str, email: str, role: str, invited_by: str, now: Optional[datetime] = None,
    ) -> OrganizationInvitation:
        with self.store.transaction() as db:
            invitation = create_invitation(db, organization_id, email, role, invited_by, now)
        logger.info("Invited %s to organization %s", invitation.email, organization_id)
        return invitation

    def cancel_invitation(self, invitation_id: str) -> OrganizationInvitation:
        with self.store.transaction() as db:
            return cancel_invitation(db, invitation_id)

    def accept_invitation(self, token: str, user_id: str, now: Optional[datetime] = None) -> OrganizationMember:
        """
        Join a user to the organization named by an invitation token.

        Raises:
            ValueError: if the token is unknown, used, cancelled or expired.
            DuplicateError: if the user is already a member.
            PlanLimitError: if the organization has no seats left.
        """
        with self.store.transaction() as db:
            return accept_invitation(db, token, user_id, now)

    # ── Projects ──────────────────────────────────────────────────────────────

    def create_project(
        self,
        organization_id: str,
        name: str,
        created_by: str,
        asset_name: str,
        asset_type: str = "",
        context: str = "",
        criticality: str = "medium",
        standards: Optional[list[str]] = None,
        description: Optional[str] = None,
    ) -> Project:
        """Create a project together with the asset it analyses; the creator becomes owner."""
        with self.store.transaction() as db:
            require(db, "organizations", organization_id, "Organization")
            if not can_create_more_projects(db, organization_id):
                raise PlanLimitError(f"Organization {organization_id} has reached its project limit")
            asset = Asset(
                id=generate_id(), name=asset_name, type=asset_type, context=context,
                criticality=criticality, standards=standards or [],
            )
            project = Project(
                id=generate_id(), organization_id=organization_id, asset_id=asset.id,
                name=name, description=description, created_by=created_by,
            )
            owner = ProjectMember(
                id=generate_id(), project_id=project.id, user_id=created_by,
                role="owner", added_by=created_by,
            )
            db["assets"].append(asset.to_record())
            db["projects"].append(project.to_record())
            db["project_members"].append(owner.to_record())
        logger.info("Created project %s in organization %s", project.id, organization_id)
        return project

    def get_project(self, project_id: str) -> Project:
        db = self.store.load()
        return Project.model_validate(require(db, "projects", project_id, "Project"))

    def get_asset(self, asset_id: str) -> Asset:
        db = self.store.load()
        return Asset.model_validate(require(db, "assets", asset_id, "Asset"))

    def create_guest_link(self, project_id: str, created_by: str, days: int = 7,
                          max_uses: Optional[int] = None) -> ProjectGuestLink:
        with self.store.transaction() as db:
            require(db, "projects", project_id, "Project")
            link = ProjectGuestLink(
                id=generate_id(), project_id=project_id, token=generate_id() + generate_id(),
                created_by=created_by, max_uses=max_uses,
                expires_at=datetime.now(timezone.utc) + timedelta(days=days),
            )
            db["project_guest_links"].append(link.to_record())
        return link

    def get_project_settings(self, project_id: str) -> ProjectSettings:
        return project_settings_for(self.store.load(), project_id)

    def update_project_settings(self, project_id: str, patch: dict[str, Any]) -> ProjectSettings:
        """
        Merge a partial settings update into the project.

        Raises:
            EntityNotFoundError: if the project does not exist.
            pydantic.ValidationError: if the merged settings are invalid.
            ValueError: if the new rating scale is smaller than ratings the
                project already holds.
        """
        with self.store.transaction() as db:
            project = require(db, "projects", project_id, "Project")
            updated = merge_settings(load_settings(project.get("settings")), patch)
            _, top = score_bounds(updated.scale_type)
            highest = highest_rating(db, project_id)
            if highest > top:
                raise ValueError(
                    f"Cannot switch to the {updated.scale_type} scale: the project holds ratings up to {highest}"
                )
            project["settings"] = updated.to_record()
            _touch(project)
        return updated

    # ── Components ────────────────────────────────────────────────────────────

    def create_component(self, project_id: str, name: str, description: Optional[str] = None,
                         function: Optional[str] = None) -> Component:
        with self.store.transaction() as db:
            require(db, "projects", project_id, "Project")
            siblings = children(db, "components", "project_id", project_id)
            order = max((c.get("order", 0) for c in siblings), default=-1) + 1
            component = Component(
                id=generate_id(), project_id=project_id, name=name,
                description=description, function=function, order=order,
            )
            db["components"].append(component.to_record())
        return component

    def update_component(self, component_id: str, name: Optional[str] = None,
                         description: Optional[str] = None, function: Optional[str] = None) -> Component:
        with self.store.transaction() as db:
            record = require(db, "components", component_id, "Component")
            if name is not None:
                record["name"] = name
            if description is not None:
                record["description"] = description
            if function is not None:
                record["function"] = function
            _touch(record)
            component = Component.model_validate(record)
        return component

    def list_components(self, project_id: str) -> list[Component]:
        db = self.store.load()
        rows = sorted(children(db, "components", "project_id", project_id), key=lambda c: c.get("order", 0))
        return [Component.model_validate(r) for r in rows]

    # ── Failure modes ─────────────────────────────────────────────────────────

    def create_failure_mode(self, component_id: str, failure_mode: str, process_step: str = "") -> FailureMode:
        """Create a failure mode under a component; the project comes from the component."""
        with self.store.transaction() as db:
            component = require(db, "components", component_id, "Component")
            fm = FailureMode(
                id=generate_id(), project_id=component["project_id"], component_id=component_id,
                failure_mode=failure_mode.strip(), process_step=process_step.strip(),
            )
            db["failure_modes"].append(fm.to_record())
        return fm

    def update_failure_mode_status(self, failure_mode_id: str, status: str) -> FailureMode:
        with self.store.transaction() as db:
            record = require(db, "failure_modes", failure_mode_id, "Failure mode")
            record["status"] = status
            fm = FailureMode.model_validate(record)
            _touch(record)
        return fm

    def _check_scores(self, db: Snapshot, failure_mode_id: str, **scores: Optional[int]) -> None:
        fm = require(db, "failure_modes", failure_mode_id, "Failure mode")
        settings = project_settings_for(db, fm["project_id"])
        lo, hi = score_bounds(settings.scale_type)
        for name, value in scores.items():
            if value is not None and not lo <= value <= hi:
                raise ValueError(f"{name} must be between {lo} and {hi} on the {settings.scale_type} scale, got {value}")

    def add_cause(self, failure_mode_id: str, description: str, occurrence: int) -> Cause:
        with self.store.transaction() as db:
            self._check_scores(db, failure_mode_id, occurrence=occurrence)
            cause = Cause(id=generate_id(), failure_mode_id=failure_mode_id,
                          description=description, occurrence=occurrence)
            db["causes"].append(cause.to_record())
        return cause

    def add_effect(
        self,
        failure_mode_id: str,
        description: str,
        severity: int,
        severity_post: Optional[int] = None,
        occurrence_post: Optional[int] = None,
        detection_post: Optional[int] = None,
    ) -> Effect:
        with self.store.transaction() as db:
            self._check_scores(
                db, failure_mode_id, severity=severity, severity_post=severity_post,
                occurrence_post=occurrence_post, detection_post=detection_post,
            )
            effect = Effect(
                id=generate_id(), failure_mode_id=failure_mode_id, description=description,
                severity=severity, severity_post=severity_post,
                occurrence_post=occurrence_post, detection_post=detection_post,
            )
            db["effects"].append(effect.to_record())
        return effect

    def add_control(self, failure_mode_id: str, description: str, detection: int,
                    type: str = "detection", effectiveness: int = 5) -> Control:
        with self.store.transaction() as db:
            self._check_scores(db, failure_mode_id, detection=detection)
            control = Control(
                id=generate_id(), failure_mode_id=failure_mode_id, type=type,
                description=description, detection=detection, effectiveness=effectiveness,
            )
            db["controls"].append(control.to_record())
        return control

    def add_action(self, failure_mode_id: str, description: str, owner: str,
                   due_date: Optional[str] = None) -> Action:
        with self.store.transaction() as db:
            require(db, "failure_modes", failure_mode_id, "Failure mode")
            action = Action(id=generate_id(), failure_mode_id=failure_mode_id,
                            description=description, owner=owner, due_date=due_date)
            db["actions"].append(action.to_record())
        return action

    def update_action_status(
        self,
        action_id: str,
        status: str,
        action_taken: Optional[str] = None,
        post_action_severity: Optional[int] = None,
        post_action_occurrence: Optional[int] = None,
        post_action_detection: Optional[int] = None,
    ) -> Action:
        with self.store.transaction() as db:
            record = require(db, "actions", action_id, "Action")
            self._check_scores(
                db, record["failure_mode_id"], post_action_severity=post_action_severity,
                post_action_occurrence=post_action_occurrence, post_action_detection=post_action_detection,
            )
            record.update(
                status=status,
                action_taken=action_taken,
                post_action_severity=post_action_severity,
                post_action_occurrence=post_action_occurrence,
                post_action_detection=post_action_detection,
            )
            action = Action.model_validate(record)
            _touch(record)
        return action

    # ── Reads with risk ───────────────────────────────────────────────────────

    def get_failure_mode_detail(self, failure_mode_id: str) -> FailureModeDetail:
        db = self.store.load()
        fm = require(db, "failure_modes", failure_mode_id, "Failure mode")
        settings = project_settings_for(db, fm["project_id"])
        return failure_mode_detail(db, fm, settings)

    def list_project_failure_modes(self, project_id: str) -> list[FailureModeDetail]:
        db = self.store.load()
        settings = project_settings_for(db, project_id)
        return [
            failure_mode_detail(db, fm, settings)
            for fm in children(db, "failure_modes", "project_id", project_id)
        ]

    # ── Deletes ───────────────────────────────────────────────────────────────

    def delete(self, entity_type: EntityType, entity_id: str) -> DeleteResult:
        return delete_entity(self.store, entity_type, entity_id)
