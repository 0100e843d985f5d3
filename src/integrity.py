"""
Referential integrity for the FMEA hierarchy.

The datastore has no foreign keys, so deleting a record must also delete
everything it owns:

  organization → projects, organization_members, organization_invitations
  project      → components, failure_modes, project_members,
                 project_guest_links, its asset
  component    → failure_modes
  failure_mode → causes, effects, controls, actions

A deletion is planned entirely from the pre-deletion snapshot, applied to a
copy, and persisted with a single write.
"""

from __future__ import annotations

import logging
from typing import Iterable, Literal, Optional, get_args

from pydantic import BaseModel, Field

from datastore import JSONDatastore, Snapshot

logger = logging.getLogger(__name__)

EntityType = Literal[
    "organization",
    "project",
    "component",
    "failure_mode",
    "cause",
    "effect",
    "control",
    "action",
]
ENTITY_TYPES: tuple[str, ...] = get_args(EntityType)

COLLECTION_FOR: dict[str, str] = {
    "organization": "organizations",
    "project": "projects",
    "component": "components",
    "failure_mode": "failure_modes",
    "cause": "causes",
    "effect": "effects",
    "control": "controls",
    "action": "actions",
}

# Leaves first: dependents are removed before the records that own them.
REMOVAL_ORDER: tuple[str, ...] = (
    "causes",
    "effects",
    "controls",
    "actions",
    "failure_modes",
    "components",
    "project_members",
    "project_guest_links",
    "projects",
    "assets",
    "organization_members",
    "organization_invitations",
    "organizations",
)

FAILURE_MODE_CHILDREN: tuple[str, ...] = ("causes", "effects", "controls", "actions")


class CascadePlan(BaseModel):
    """Record ids to remove, per collection, for one deletion."""
    entity_type: str
    entity_id: str
    removals: dict[str, set[str]] = Field(default_factory=dict)

    def add(self, collection: str, ids: Iterable[str]) -> None:
        self.removals.setdefault(collection, set()).update(ids)

    def counts(self) -> dict[str, int]:
        return {name: len(self.removals[name]) for name in REMOVAL_ORDER if self.removals.get(name)}


class DeleteResult(BaseModel):
    found: bool
    entity_type: str
    entity_id: str
    removed: dict[str, int] = Field(default_factory=dict)


def _ids_where(snapshot: Snapshot, collection: str, field: str, values: set[str]) -> set[str]:
    return {r["id"] for r in snapshot.get(collection, []) if r.get(field) in values}


def _find(snapshot: Snapshot, collection: str, record_id: str) -> Optional[dict]:
    return next((r for r in snapshot.get(collection, []) if r.get("id") == record_id), None)


def _plan_failure_modes(plan: CascadePlan, snapshot: Snapshot, fm_ids: set[str]) -> None:
    plan.add("failure_modes", fm_ids)
    for collection in FAILURE_MODE_CHILDREN:
        plan.add(collection, _ids_where(snapshot, collection, "failure_mode_id", fm_ids))


def _plan_projects(plan: CascadePlan, snapshot: Snapshot, project_ids: set[str]) -> None:
    plan.add("projects", project_ids)
    component_ids = _ids_where(snapshot, "components", "project_id", project_ids)
    plan.add("components", component_ids)

    fm_ids = _ids_where(snapshot, "failure_modes", "project_id", project_ids)
    fm_ids |= _ids_where(snapshot, "failure_modes", "component_id", component_ids)
    _plan_failure_modes(plan, snapshot, fm_ids)

    plan.add("project_members", _ids_where(snapshot, "project_members", "project_id", project_ids))
    plan.add("project_guest_links", _ids_where(snapshot, "project_guest_links", "project_id", project_ids))

    # An asset goes with its project unless a surviving project still uses it.
    doomed_assets = {
        p.get("asset_id") for p in snapshot.get("projects", []) if p["id"] in project_ids
    }
    kept_assets = {
        p.get("asset_id") for p in snapshot.get("projects", []) if p["id"] not in project_ids
    }
    plan.add("assets", {
        a["id"] for a in snapshot.get("assets", [])
        if a["id"] in doomed_assets and a["id"] not in kept_assets
    })


def plan_cascade(snapshot: Snapshot, entity_type: EntityType, entity_id: str) -> Optional[CascadePlan]:
    """
    Compute every record a deletion removes, reading only the given snapshot.

    Returns:
        The plan, or None when the entity does not exist.

    Raises:
        ValueError: for an unknown entity type.
    """
    if entity_type not in COLLECTION_FOR:
        raise ValueError(f"Unknown entity type '{entity_type}'. Expected one of {', '.join(ENTITY_TYPES)}")

    collection = COLLECTION_FOR[entity_type]
    if _find(snapshot, collection, entity_id) is None:
        return None

    plan = CascadePlan(entity_type=entity_type, entity_id=entity_id)
    target = {entity_id}

    if entity_type == "organization":
        plan.add("organizations", target)
        plan.add("organization_members", _ids_where(snapshot, "organization_members", "organization_id", target))
        plan.add("organization_invitations", _ids_where(snapshot, "organization_invitations", "organization_id", target))
        _plan_projects(plan, snapshot, _ids_where(snapshot, "projects", "organization_id", target))
    elif entity_type == "project":
        _plan_projects(plan, snapshot, target)
    elif entity_type == "component":
        plan.add("components", target)
        _plan_failure_modes(plan, snapshot, _ids_where(snapshot, "failure_modes", "component_id", target))
    elif entity_type == "failure_mode":
        _plan_failure_modes(plan, snapshot, target)
    else:
        plan.add(collection, target)

    return plan


def apply_cascade(snapshot: Snapshot, plan: CascadePlan) -> Snapshot:
    """Return a new snapshot without the planned records; the input is left untouched."""
    result: Snapshot = dict(snapshot)
    for collection in REMOVAL_ORDER:
        doomed = plan.removals.get(collection)
        if not doomed:
            continue
        before = snapshot.get(collection, [])
        result[collection] = [r for r in before if r.get("id") not in doomed]
        logger.info(
            "Cascade %s %s: removed %d from %s",
            plan.entity_type, plan.entity_id, len(before) - len(result[collection]), collection,
        )
    return result


def delete_entity(store: JSONDatastore, entity_type: EntityType, entity_id: str) -> DeleteResult:
    """
    Delete an entity and everything it owns.

    Deleting something that does not exist is a no-op reported with
    found=False; nothing is written in that case.

    Raises:
        ValueError: for an unknown entity type.
        DatastoreError: if the snapshot cannot be read or written. The
            previous file is left as it was.
    """
    snapshot = store.load()
    plan = plan_cascade(snapshot, entity_type, entity_id)
    if plan is None:
        logger.info("Delete %s %s: not found", entity_type, entity_id)
        return DeleteResult(found=False, entity_type=entity_type, entity_id=entity_id)

    store.save(apply_cascade(snapshot, plan))
    return DeleteResult(found=True, entity_type=entity_type, entity_id=entity_id, removed=plan.counts())
