"""
HTML Report Renderer: turns one project's FMEA into a self-contained HTML file.

Uses Jinja2 templating with the fmea_report.html template. Every RPN cell is
coloured with the project's own criticality bands, so the report matches what
the risk engine reports for the same data.
"""

from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from datastore import Snapshot
from fmea_schema import Asset, Component, Project, utcnow
from metrics import project_metrics
from repository import children, failure_mode_detail, project_settings_for, require

_TEMPLATE_DIR = Path(__file__).parent
_TEMPLATE_NAME = "fmea_report.html"


def render_project_report(snapshot: Snapshot, project_id: str) -> str:
    """
    Render a self-contained HTML FMEA report for a project.

    Args:
        snapshot: Datastore snapshot to read from.
        project_id: Project to report on.

    Returns:
        Complete HTML string suitable for writing to a .html file.

    Raises:
        EntityNotFoundError: if the project or its asset does not exist.
    """
    project = Project.model_validate(require(snapshot, "projects", project_id, "Project"))
    asset = Asset.model_validate(require(snapshot, "assets", project.asset_id, "Asset"))
    settings = project_settings_for(snapshot, project_id)

    components = sorted(
        (Component.model_validate(c) for c in children(snapshot, "components", "project_id", project_id)),
        key=lambda c: c.order,
    )
    sections = [
        {
            "component": component,
            "failure_modes": [
                failure_mode_detail(snapshot, fm, settings)
                for fm in children(snapshot, "failure_modes", "component_id", component.id)
            ],
        }
        for component in components
    ]

    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=True,
    )
    template = env.get_template(_TEMPLATE_NAME)

    return template.render(
        project=project,
        asset=asset,
        sections=sections,
        scale_type=settings.scale_type,
        summary=project_metrics(snapshot, project_id),
        generated_at=utcnow().strftime("%Y-%m-%d %H:%M UTC"),
    )
