"""
Whole-file JSON datastore.

Every operation reads the entire document, works on an in-memory copy and
writes the entire document back in a single atomic replace. There is no
locking: concurrent writers race and the last write wins.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Union

logger = logging.getLogger(__name__)

Snapshot = dict[str, list[dict[str, Any]]]

COLLECTIONS: tuple[str, ...] = (
    "users",
    "sessions",
    "organizations",
    "organization_members",
    "organization_invitations",
    "projects",
    "project_members",
    "project_guest_links",
    "tools",
    "assets",
    "components",
    "failure_modes",
    "causes",
    "effects",
    "controls",
    "actions",
)

# Older data files used camelCase for this one collection.
_LEGACY_KEYS = {"failureModes": "failure_modes"}


class DatastoreError(RuntimeError):
    """The backing file could not be read or written."""


class EntityNotFoundError(LookupError):
    """A referenced record does not exist."""


class DuplicateError(ValueError):
    """A record with the same unique key already exists."""


class PlanLimitError(ValueError):
    """The organization's plan does not allow another user or project."""


def generate_id() -> str:
    return uuid.uuid4().hex


def empty_snapshot() -> Snapshot:
    return {name: [] for name in COLLECTIONS}


def find(snapshot: Snapshot, collection: str, record_id: str) -> Optional[dict[str, Any]]:
    return next((r for r in snapshot[collection] if r.get("id") == record_id), None)


def require(snapshot: Snapshot, collection: str, record_id: str, label: str) -> dict[str, Any]:
    record = find(snapshot, collection, record_id)
    if record is None:
        raise EntityNotFoundError(f"{label} not found: {record_id}")
    return record


def normalize_snapshot(data: dict[str, Any]) -> Snapshot:
    """Rename legacy keys and add any collection an older file is missing."""
    for old, new in _LEGACY_KEYS.items():
        if old in data and new not in data:
            data[new] = data.pop(old)
    for name in COLLECTIONS:
        data.setdefault(name, [])
    return data


class JSONDatastore:
    """A single JSON document holding every collection."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def initialize(self) -> None:
        """Create the data file with empty collections if it does not exist."""
        if not self.path.exists():
            self.save(empty_snapshot())
            logger.info("Initialized empty datastore at %s", self.path)

    def load(self) -> Snapshot:
        self.initialize()
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DatastoreError(f"Failed to read datastore {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise DatastoreError(
                f"Datastore {self.path} must hold a JSON object, got {type(data).__name__}"
            )
        return normalize_snapshot(data)

    def save(self, snapshot: Snapshot) -> None:
        """
        Write the whole snapshot in one step.

        The document goes to a temporary file beside the target, which then
        replaces it; a failure at any point leaves the previous file intact.

        Raises:
            DatastoreError: on any filesystem or serialization failure.
        """
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(snapshot, indent=2)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            raise DatastoreError(f"Failed to write datastore {self.path}: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    @contextmanager
    def transaction(self) -> Iterator[Snapshot]:
        """
        Read-modify-write scope.

        Yields the loaded snapshot for mutation and saves it once when the
        block completes. Nothing is written if the block raises.
        """
        snapshot = self.load()
        yield snapshot
        self.save(snapshot)
