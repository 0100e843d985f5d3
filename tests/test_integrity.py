"""
Tests for the referential integrity engine (cascading delete).
"""

from __future__ import annotations

import copy
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Ensure src/ is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from datastore import DatastoreError
from integrity import apply_cascade, delete_entity, plan_cascade
from invitations import create_invitation


def ids(snapshot, collection):
    return {r["id"] for r in snapshot[collection]}


def assert_no_dangling_references(snapshot):
    org_ids = ids(snapshot, "organizations")
    project_ids = ids(snapshot, "projects")
    component_ids = ids(snapshot, "components")
    fm_ids = ids(snapshot, "failure_modes")
    asset_ids = ids(snapshot, "assets")

    for p in snapshot["projects"]:
        assert p["organization_id"] in org_ids
        assert p["asset_id"] in asset_ids
    for collection in ("organization_members", "organization_invitations"):
        for r in snapshot[collection]:
            assert r["organization_id"] in org_ids
    for collection in ("components", "project_members", "project_guest_links"):
        for r in snapshot[collection]:
            assert r["project_id"] in project_ids
    for fm in snapshot["failure_modes"]:
        assert fm["component_id"] in component_ids
        assert fm["project_id"] in project_ids
    for collection in ("causes", "effects", "controls", "actions"):
        for r in snapshot[collection]:
            assert r["failure_mode_id"] in fm_ids


# ── Organization cascade ──────────────────────────────────────────────────────

class TestDeleteOrganization:
    def test_full_hierarchy_is_removed(self, store, seeded):
        result = delete_entity(store, "organization", seeded.org.id)

        assert result.found is True
        db = store.load()
        assert seeded.org.id not in ids(db, "organizations")
        assert seeded.project.id not in ids(db, "projects")
        assert seeded.component.id not in ids(db, "components")
        assert seeded.fm.id not in ids(db, "failure_modes")
        for collection in ("causes", "effects", "controls", "actions"):
            assert db[collection] == []
        assert db["organization_members"] == []
        assert db["project_members"] == []
        assert db["assets"] == []

    def test_reports_removed_counts(self, store, seeded):
        result = delete_entity(store, "organization", seeded.org.id)
        assert result.removed["causes"] == 2
        assert result.removed["effects"] == 2
        assert result.removed["controls"] == 2
        assert result.removed["actions"] == 1
        assert result.removed["organizations"] == 1

    def test_pending_invitations_are_removed(self, store, repo, seeded):
        with store.transaction() as db:
            create_invitation(db, seeded.org.id, "new@example.com", "editor", seeded.user.id)
        delete_entity(store, "organization", seeded.org.id)
        assert store.load()["organization_invitations"] == []

    def test_other_organizations_survive(self, store, repo, seeded):
        other_org = repo.create_organization("Other", "other", created_by=seeded.user.id)
        other_project = repo.create_project(other_org.id, "Pump", seeded.user.id, asset_name="Pump")
        delete_entity(store, "organization", seeded.org.id)

        db = store.load()
        assert ids(db, "organizations") == {other_org.id}
        assert ids(db, "projects") == {other_project.id}
        assert_no_dangling_references(db)


# ── Project / component / failure mode cascade ────────────────────────────────

class TestDeleteProject:
    def test_removes_asset_members_and_guest_links(self, store, repo, seeded):
        repo.create_guest_link(seeded.project.id, seeded.user.id)
        delete_entity(store, "project", seeded.project.id)

        db = store.load()
        assert db["projects"] == []
        assert db["assets"] == []
        assert db["project_members"] == []
        assert db["project_guest_links"] == []
        assert db["components"] == []
        assert db["failure_modes"] == []
        assert ids(db, "organizations") == {seeded.org.id}

    def test_shared_asset_is_kept(self, store, repo, seeded):
        other = repo.create_project(seeded.org.id, "Second", seeded.user.id, asset_name="tmp")
        with store.transaction() as db:
            for p in db["projects"]:
                if p["id"] == other.id:
                    p["asset_id"] = seeded.project.asset_id

        delete_entity(store, "project", seeded.project.id)
        assert seeded.project.asset_id in ids(store.load(), "assets")

    def test_failure_mode_reached_through_component_is_removed(self, store, seeded):
        # A failure mode whose project_id is stale still goes with its component.
        with store.transaction() as db:
            db["failure_modes"][0]["project_id"] = "stale"
        delete_entity(store, "project", seeded.project.id)
        assert store.load()["failure_modes"] == []


class TestDeleteComponent:
    def test_sibling_component_is_untouched(self, store, repo, seeded):
        sibling = repo.create_component(seeded.project.id, "Brake Disc")
        sibling_fm = repo.create_failure_mode(sibling.id, "Disc cracking")
        repo.add_cause(sibling_fm.id, "Thermal shock", 4)

        delete_entity(store, "component", seeded.component.id)

        db = store.load()
        assert ids(db, "components") == {sibling.id}
        assert ids(db, "failure_modes") == {sibling_fm.id}
        assert len(db["causes"]) == 1
        assert db["effects"] == []
        assert ids(db, "projects") == {seeded.project.id}
        assert_no_dangling_references(db)


class TestDeleteLeaves:
    def test_failure_mode_takes_its_children(self, store, seeded):
        result = delete_entity(store, "failure_mode", seeded.fm.id)
        assert result.removed == {"causes": 2, "effects": 2, "controls": 2, "actions": 1, "failure_modes": 1}
        assert ids(store.load(), "components") == {seeded.component.id}

    def test_single_cause(self, store, seeded):
        result = delete_entity(store, "cause", seeded.causes[0].id)
        assert result.removed == {"causes": 1}
        assert ids(store.load(), "causes") == {seeded.causes[1].id}


# ── Contract ──────────────────────────────────────────────────────────────────

class TestDeleteContract:
    def test_missing_entity_is_not_found_and_writes_nothing(self, store, seeded):
        before = store.path.read_bytes()
        result = delete_entity(store, "component", "does-not-exist")
        assert result.found is False
        assert result.removed == {}
        assert store.path.read_bytes() == before

    def test_second_delete_is_idempotent(self, store, seeded):
        assert delete_entity(store, "project", seeded.project.id).found is True
        after_first = store.path.read_bytes()
        assert delete_entity(store, "project", seeded.project.id).found is False
        assert store.path.read_bytes() == after_first

    def test_unknown_entity_type_raises(self, store, seeded):
        with pytest.raises(ValueError, match="Unknown entity type"):
            delete_entity(store, "widget", "x")

    def test_failed_write_leaves_file_byte_identical(self, store, seeded):
        before = store.path.read_bytes()
        with patch("datastore.os.replace", side_effect=OSError("read-only filesystem")):
            with pytest.raises(DatastoreError):
                delete_entity(store, "organization", seeded.org.id)
        assert store.path.read_bytes() == before


class TestPlanAndApply:
    def test_plan_reads_only(self, store, seeded):
        snapshot = store.load()
        original = copy.deepcopy(snapshot)
        plan_cascade(snapshot, "organization", seeded.org.id)
        assert snapshot == original

    def test_apply_does_not_mutate_input(self, store, seeded):
        snapshot = store.load()
        original = copy.deepcopy(snapshot)
        plan = plan_cascade(snapshot, "project", seeded.project.id)
        result = apply_cascade(snapshot, plan)
        assert snapshot == original
        assert result["projects"] == []

    def test_plan_for_missing_entity_is_none(self, store, seeded):
        assert plan_cascade(store.load(), "project", "nope") is None

    def test_result_has_no_dangling_references(self, store, seeded):
        snapshot = store.load()
        for entity_type, entity_id in (
            ("component", seeded.component.id),
            ("failure_mode", seeded.fm.id),
            ("project", seeded.project.id),
        ):
            plan = plan_cascade(snapshot, entity_type, entity_id)
            assert_no_dangling_references(apply_cascade(snapshot, plan))
