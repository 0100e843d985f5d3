"""Shared fixtures: a datastore on tmp_path and a small seeded FMEA project."""

from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure src/ is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from datastore import JSONDatastore
from repository import FMEARepository


@pytest.fixture
def store(tmp_path):
    return JSONDatastore(tmp_path / "fmea-data.json")


@pytest.fixture
def repo(store):
    return FMEARepository(store)


@pytest.fixture
def seeded(repo):
    """
    One organization with one project, one component and one failure mode
    carrying the 224-RPN scenario: causes O=5/8, effects S=7/3, controls D=4/9.
    """
    user = repo.create_user("owner@example.com", "Olivia Owner")
    org = repo.create_organization("Acme Brakes", "acme", created_by=user.id)
    project = repo.create_project(
        org.id, "Disc brake DFMEA", created_by=user.id,
        asset_name="Disc Brake", asset_type="Hydraulic brake",
        context="Passenger vehicle front axle", criticality="high",
        standards=["ISO 26262"],
    )
    component = repo.create_component(project.id, "Brake Caliper", function="Clamp the disc")
    fm = repo.create_failure_mode(component.id, "Piston seizure", "Assembly")
    causes = [
        repo.add_cause(fm.id, "Corrosion of piston bore", 5),
        repo.add_cause(fm.id, "Seal swelling from wrong fluid", 8),
    ]
    effects = [
        repo.add_effect(fm.id, "Loss of braking on one wheel", 7),
        repo.add_effect(fm.id, "Uneven pad wear", 3),
    ]
    controls = [
        repo.add_control(fm.id, "End-of-line brake force test", 4),
        repo.add_control(fm.id, "Visual inspection", 9, type="prevention"),
    ]
    action = repo.add_action(fm.id, "Specify stainless piston", owner="Design team")
    return SimpleNamespace(
        user=user, org=org, project=project, component=component, fm=fm,
        causes=causes, effects=effects, controls=controls, action=action,
    )
