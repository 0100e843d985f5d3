"""
FMEA Data Models: Pydantic schemas for every stored record and value type.

Hierarchy (each record owned by its parent):

  Organization → Project (+ Asset) → Component → FailureMode
                                                  → Cause / Effect / Control / Action

RPN (Risk Priority Number) = Severity × Occurrence × Detection
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


Score = Annotated[int, Field(ge=1, le=10)]

Plan = Literal["free", "starter", "professional", "enterprise"]
OrgRole = Literal["org_admin", "project_manager", "editor", "viewer"]
ProjectRole = Literal["owner", "editor", "viewer"]
InvitationStatus = Literal["pending", "accepted", "expired", "cancelled"]
FailureModeStatus = Literal["active", "closed", "on-hold"]
ActionStatus = Literal["open", "in-progress", "completed", "cancelled"]
ControlType = Literal["prevention", "detection"]
Criticality = Literal["low", "medium", "high", "critical"]

# Seat and project limits applied when an organization is created.
PLAN_LIMITS: dict[str, dict[str, int]] = {
    "free": {"max_users": 3, "max_projects": 5},
    "starter": {"max_users": 10, "max_projects": 25},
    "professional": {"max_users": 50, "max_projects": 100},
    "enterprise": {"max_users": 999, "max_projects": 999},
}


class Record(BaseModel):
    """Base for every persisted record: string id plus audit timestamps."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, description="Unique record ID")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_record(self) -> dict[str, Any]:
        """JSON-safe dict as written to the datastore."""
        return self.model_dump(mode="json")


# ── Tenancy ───────────────────────────────────────────────────────────────────

class User(Record):
    email: str = Field(..., min_length=3)
    name: str = ""
    is_superadmin: bool = False


class Organization(Record):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, description="URL-friendly identifier")
    plan: Plan = "free"
    max_users: int = Field(default=3, ge=0)
    max_projects: int = Field(default=5, ge=0)
    settings: dict[str, Any] = Field(default_factory=dict)


class OrganizationMember(Record):
    organization_id: str
    user_id: str
    role: OrgRole
    invited_by: Optional[str] = None
    joined_at: datetime = Field(default_factory=utcnow)


class OrganizationInvitation(Record):
    organization_id: str
    email: str
    role: OrgRole
    invited_by: str
    invitation_token: str
    status: InvitationStatus = "pending"
    expires_at: datetime
    accepted_at: Optional[datetime] = None


# ── Projects ──────────────────────────────────────────────────────────────────

class Asset(Record):
    name: str = Field(..., min_length=1)
    asset_id: str = ""
    type: str = ""
    context: str = ""
    criticality: Criticality = "medium"
    standards: list[str] = Field(default_factory=list)
    history: Optional[str] = None
    configuration: Optional[str] = None


class Project(Record):
    organization_id: str
    asset_id: str
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    created_by: str
    status: Literal["in-progress", "completed", "approved", "active"] = "active"
    settings: Optional[dict[str, Any]] = None


class ProjectMember(Record):
    project_id: str
    user_id: str
    role: ProjectRole
    added_by: Optional[str] = None


class ProjectGuestLink(Record):
    project_id: str
    token: str
    created_by: str
    expires_at: datetime
    max_uses: Optional[int] = None
    current_uses: int = 0


# ── FMEA hierarchy ────────────────────────────────────────────────────────────

class Component(Record):
    project_id: str
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    function: Optional[str] = None
    order: int = 0


class FailureMode(Record):
    project_id: str
    component_id: str
    failure_mode: str = Field(..., min_length=1)
    process_step: str = ""
    status: FailureModeStatus = "active"


class Cause(Record):
    failure_mode_id: str
    description: str = ""
    occurrence: Score


class Effect(Record):
    failure_mode_id: str
    description: str = ""
    severity: Score
    severity_post: Optional[int] = Field(default=None, ge=1, le=10)
    occurrence_post: Optional[int] = Field(default=None, ge=1, le=10)
    detection_post: Optional[int] = Field(default=None, ge=1, le=10)
    potential_cause: Optional[str] = None
    current_design: Optional[str] = None
    responsible: Optional[str] = None


class Control(Record):
    failure_mode_id: str
    type: ControlType = "detection"
    description: str = ""
    detection: Score
    effectiveness: int = Field(default=5, ge=1, le=10)


class Action(Record):
    failure_mode_id: str
    description: str = ""
    owner: str = ""
    due_date: Optional[str] = None
    status: ActionStatus = "open"
    action_taken: Optional[str] = None
    post_action_severity: Optional[int] = Field(default=None, ge=1, le=10)
    post_action_occurrence: Optional[int] = Field(default=None, ge=1, le=10)
    post_action_detection: Optional[int] = Field(default=None, ge=1, le=10)


# ── Risk value types ──────────────────────────────────────────────────────────

class RiskSummary(BaseModel):
    """Worst-case risk of one failure mode, as produced by the RPN calculator."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    max_rpn: int = Field(0, ge=0, alias="maxRPN")
    max_severity: int = Field(0, ge=0, alias="maxSeverity")
    max_occurrence: int = Field(0, ge=0, alias="maxOccurrence")
    max_detection: int = Field(10, ge=0, alias="maxDetection")

    @model_validator(mode="after")
    def validate_rpn_consistency(self) -> "RiskSummary":
        expected = self.max_severity * self.max_occurrence * self.max_detection
        if self.max_rpn != expected:
            raise ValueError(
                f"maxRPN {self.max_rpn} does not match S×O×D = "
                f"{self.max_severity}×{self.max_occurrence}×{self.max_detection} = {expected}"
            )
        return self


class RiskBand(BaseModel):
    """One criticality band: an inclusive RPN range with a label and colour."""
    id: Optional[int] = None
    label: str = Field(..., min_length=1)
    min: int
    max: int
    color: str = "gray"


class BandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    color: str = Field(..., description="Resolved hex colour")


class FailureModeDetail(BaseModel):
    """A failure mode together with its children and computed risk."""
    failure_mode: FailureMode
    causes: list[Cause] = Field(default_factory=list)
    effects: list[Effect] = Field(default_factory=list)
    controls: list[Control] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    risk: RiskSummary = Field(default_factory=RiskSummary)
    band: Optional[BandResult] = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
