"""
Project risk settings: rating scale, criticality bands and scale descriptions.

Defaults follow SAE J1739. Bands are checked here, at configuration time, so
that the risk engine's band lookup can stay a plain first-match scan.
"""

from __future__ import annotations

import copy
from typing import Any, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator

from fmea_schema import RiskBand

ScaleType = Literal["1-10", "1-5"]

_SCALE_MAX: dict[str, int] = {"1-10": 10, "1-5": 5}


def score_bounds(scale_type: ScaleType) -> tuple[int, int]:
    """Inclusive (min, max) for severity, occurrence and detection ratings."""
    return 1, _SCALE_MAX[scale_type]


def max_rpn_for_scale(scale_type: ScaleType) -> int:
    top = _SCALE_MAX[scale_type]
    return top * top * top


def default_thresholds(scale_type: ScaleType = "1-10") -> list[RiskBand]:
    if scale_type == "1-5":
        ranges = [(1, 29), (30, 59), (60, 89), (90, 125)]
    else:
        ranges = [(1, 69), (70, 99), (100, 150), (151, 1000)]
    labels = [("Low", "green"), ("Medium", "yellow"), ("High", "orange"), ("Critical", "red")]
    return [
        RiskBand(id=i + 1, label=label, min=lo, max=hi, color=color)
        for i, ((lo, hi), (label, color)) in enumerate(zip(ranges, labels))
    ]


DEFAULT_DESCRIPTIONS: dict[str, dict[int, str]] = {
    "severity": {
        1: "No effect", 2: "Very minor", 3: "Minor", 4: "Very low", 5: "Low",
        6: "Moderate", 7: "High", 8: "Very high", 9: "Hazardous", 10: "Catastrophic",
    },
    "occurrence": {
        1: "Very rare", 2: "Rare", 3: "Unlikely", 4: "Low", 5: "Moderate",
        6: "Moderately high", 7: "High", 8: "Very high", 9: "Extremely high", 10: "Certain",
    },
    "detection": {
        1: "Certain detection", 2: "Very high", 3: "High", 4: "Moderately high", 5: "Moderate",
        6: "Low", 7: "Very low", 8: "Remote", 9: "Very remote", 10: "Cannot detect",
    },
}


def validate_thresholds(bands: Sequence[RiskBand], scale_type: ScaleType = "1-10") -> None:
    """
    Check that the bands tile the whole RPN range of the scale.

    Raises:
        ValueError: naming the first gap, overlap or out-of-range bound found.
    """
    if not bands:
        raise ValueError("At least one criticality threshold is required")

    top = max_rpn_for_scale(scale_type)
    expected_min = 1
    for band in bands:
        if band.min > band.max:
            raise ValueError(f"Threshold '{band.label}' has min {band.min} greater than max {band.max}")
        if band.min != expected_min:
            kind = "overlaps" if band.min < expected_min else "leaves a gap before"
            raise ValueError(
                f"Threshold '{band.label}' starts at {band.min}; it {kind} RPN {expected_min}"
            )
        expected_min = band.max + 1

    if bands[-1].max != top:
        raise ValueError(
            f"Thresholds end at {bands[-1].max} but the {scale_type} scale reaches RPN {top}"
        )


class RiskMatrix(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    matrix_size: int = Field(12, ge=1, alias="matrixSize")
    scale_type: ScaleType = Field("1-10", alias="scaleType")
    det_baseline: int = Field(5, ge=1, le=10, alias="detBaseline")
    preset: str = "SAE J1739"


class ProjectSettings(BaseModel):
    """Per-project FMEA configuration, stored on the project record."""
    model_config = ConfigDict(populate_by_name=True)

    risk_matrix: RiskMatrix = Field(default_factory=RiskMatrix, alias="riskMatrix")
    thresholds: list[RiskBand] = Field(default_factory=default_thresholds)
    standards: list[str] = Field(default_factory=lambda: ["SAE J1739"])
    descriptions: dict[str, dict[int, str]] = Field(
        default_factory=lambda: copy.deepcopy(DEFAULT_DESCRIPTIONS)
    )

    @model_validator(mode="after")
    def validate_bands(self) -> "ProjectSettings":
        validate_thresholds(self.thresholds, self.risk_matrix.scale_type)
        return self

    @property
    def scale_type(self) -> ScaleType:
        return self.risk_matrix.scale_type

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def load_settings(raw: Optional[dict[str, Any]]) -> ProjectSettings:
    """Settings stored on a project, or the defaults when none were saved."""
    if not raw:
        return ProjectSettings()
    return ProjectSettings.model_validate(raw)


def _deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_settings(current: ProjectSettings, patch: dict[str, Any]) -> ProjectSettings:
    """
    Apply a partial settings update.

    Nested objects merge key by key; lists (thresholds, standards) replace
    wholesale. Switching scale type without sending thresholds swaps in that
    scale's default bands.

    Raises:
        pydantic.ValidationError: if the merged settings are invalid.
    """
    patch = _normalize_keys(patch)
    new_scale = (patch.get("riskMatrix") or {}).get("scaleType")
    if new_scale and new_scale != current.scale_type and "thresholds" not in patch:
        patch["thresholds"] = [b.model_dump() for b in default_thresholds(new_scale)]
    return ProjectSettings.model_validate(_deep_merge(current.to_record(), patch))


def _normalize_keys(patch: dict[str, Any]) -> dict[str, Any]:
    """Accept snake_case keys in a patch by mapping them to the stored aliases."""
    aliases = {
        "risk_matrix": "riskMatrix",
        "matrix_size": "matrixSize",
        "scale_type": "scaleType",
        "det_baseline": "detBaseline",
    }
    out: dict[str, Any] = {}
    for key, value in patch.items():
        if isinstance(value, dict):
            value = _normalize_keys(value)
        out[aliases.get(key, key)] = copy.deepcopy(value)
    return out
