"""
Project dashboard metrics and chart data.

Every failure mode is scored with the risk engine, then summarized into
headline counters and the series the dashboard charts plot.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from datastore import Snapshot
from fmea_schema import FailureModeDetail
from repository import children, failure_mode_detail, project_settings_for, require
from risk_engine import resolve_color

HIGH_RISK_RPN = 200
CRITICAL_RPN = 300
TOP_RISKS = 10
_NAME_LIMIT = 30

_ACTION_STATUSES = (
    ("open", "Open"),
    ("in-progress", "In Progress"),
    ("completed", "Completed"),
    ("cancelled", "Cancelled"),
)


class DashboardMetrics(BaseModel):
    total_failure_modes: int
    high_risk_modes: int
    critical_modes: int
    open_actions: int
    completed_actions: int
    average_rpn: int


class HeatmapPoint(BaseModel):
    severity: int
    occurrence: int
    detection: int
    count: int = 1
    rpn: int


class TopRisk(BaseModel):
    failure_mode: str
    rpn: int
    severity: int
    occurrence: int
    detection: int
    band: str


class Bucket(BaseModel):
    label: str
    count: int
    percentage: int
    color: str = ""


class ChartData(BaseModel):
    rpn_heatmap: list[HeatmapPoint] = Field(default_factory=list)
    top_risks: list[TopRisk] = Field(default_factory=list)
    risk_distribution: list[Bucket] = Field(default_factory=list)
    action_status: list[Bucket] = Field(default_factory=list)


class ProjectMetrics(BaseModel):
    project_id: str
    metrics: DashboardMetrics
    chart_data: ChartData


def _percent(count: int, total: int) -> int:
    return round(count / total * 100) if total else 0


def _short(name: str) -> str:
    return name[:_NAME_LIMIT] + "..." if len(name) > _NAME_LIMIT else name


def project_metrics(snapshot: Snapshot, project_id: str) -> ProjectMetrics:
    """
    Dashboard metrics for one project.

    Raises:
        EntityNotFoundError: if the project does not exist.
    """
    require(snapshot, "projects", project_id, "Project")
    settings = project_settings_for(snapshot, project_id)

    details: list[FailureModeDetail] = [
        failure_mode_detail(snapshot, fm, settings)
        for fm in children(snapshot, "failure_modes", "project_id", project_id)
    ]
    actions = [a for d in details for a in d.actions]
    rpns = [d.risk.max_rpn for d in details]

    metrics = DashboardMetrics(
        total_failure_modes=len(details),
        high_risk_modes=sum(1 for r in rpns if r >= HIGH_RISK_RPN),
        critical_modes=sum(1 for r in rpns if r >= CRITICAL_RPN),
        open_actions=sum(1 for a in actions if a.status == "open"),
        completed_actions=sum(1 for a in actions if a.status == "completed"),
        average_rpn=round(sum(rpns) / len(rpns)) if rpns else 0,
    )

    ranked = sorted(details, key=lambda d: d.risk.max_rpn, reverse=True)[:TOP_RISKS]
    distribution = []
    for band in settings.thresholds:
        count = sum(1 for r in rpns if band.min <= r <= band.max)
        distribution.append(Bucket(
            label=f"{band.label} ({band.min}-{band.max})",
            count=count,
            percentage=_percent(count, len(rpns)),
            color=resolve_color(band.color),
        ))

    action_status = []
    for status, label in _ACTION_STATUSES:
        count = sum(1 for a in actions if a.status == status)
        action_status.append(Bucket(label=label, count=count, percentage=_percent(count, len(actions))))

    chart_data = ChartData(
        rpn_heatmap=[
            HeatmapPoint(
                severity=d.risk.max_severity,
                occurrence=d.risk.max_occurrence,
                detection=d.risk.max_detection,
                rpn=d.risk.max_rpn,
            )
            for d in details
        ],
        top_risks=[
            TopRisk(
                failure_mode=_short(d.failure_mode.failure_mode),
                rpn=d.risk.max_rpn,
                severity=d.risk.max_severity,
                occurrence=d.risk.max_occurrence,
                detection=d.risk.max_detection,
                band=d.band.label if d.band else "",
            )
            for d in ranked
        ],
        risk_distribution=distribution,
        action_status=action_status,
    )
    return ProjectMetrics(project_id=project_id, metrics=metrics, chart_data=chart_data)
