"""
Risk engine: worst-case RPN per failure mode and RPN → band classification.

RPN (Risk Priority Number) = Severity × Occurrence × Detection

A failure mode carries several causes (occurrence), effects (severity) and
controls (detection). Its risk is the highest RPN over every cause × effect
pairing, scored against the best (lowest) detection among its controls. With
no controls the failure is assumed undetectable and detection takes the top
rating of the project's scale.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from fmea_schema import BandResult, Cause, Control, Effect, RiskBand, RiskSummary

# Detection rating used when a failure mode has no controls, on the 1-10 scale.
UNDETECTABLE = 10

NAMED_COLORS: dict[str, str] = {
    "green": "#22c55e",
    "yellow": "#eab308",
    "orange": "#f97316",
    "red": "#ef4444",
    "blue": "#3b82f6",
    "purple": "#a855f7",
    "pink": "#ec4899",
    "teal": "#14b8a6",
    "indigo": "#6366f1",
    "gray": "#9ca3af",
}
FALLBACK_COLOR = NAMED_COLORS["gray"]
FALLBACK_LABEL = "Unknown"


def compute_rpn(severity: int, occurrence: int, detection: int) -> int:
    """RPN = S × O × D."""
    return severity * occurrence * detection


def detection_score(controls: Iterable[Control], undetectable: int = UNDETECTABLE) -> int:
    """Best (lowest) detection rating among the controls, or ``undetectable`` without any."""
    ratings = [c.detection for c in controls]
    return min(ratings) if ratings else undetectable


def calculate_failure_mode_risk(
    causes: Sequence[Cause],
    effects: Sequence[Effect],
    controls: Sequence[Control],
    undetectable: int = UNDETECTABLE,
) -> RiskSummary:
    """
    Worst-case risk of a single failure mode.

    Every (cause, effect) pair is scored; the first pair reaching the maximum
    RPN wins ties, iterating causes in the outer loop and effects in the inner
    loop, both in the order given.

    ``undetectable`` is the "cannot detect" rating used when there are no
    controls: the top of the project's rating scale (10, or 5 on a 1-5 scale).

    Returns:
        RiskSummary. Without at least one cause and one effect the summary is
        the zero value (maxRPN 0, detection ``undetectable``).
    """
    zero = RiskSummary(max_detection=undetectable)
    if not causes or not effects:
        return zero

    detection = detection_score(controls, undetectable)
    best = zero
    for cause in causes:
        for effect in effects:
            rpn = compute_rpn(effect.severity, cause.occurrence, detection)
            if rpn > best.max_rpn:
                best = RiskSummary(
                    max_rpn=rpn,
                    max_severity=effect.severity,
                    max_occurrence=cause.occurrence,
                    max_detection=detection,
                )
    return best


def calculate_post_mitigation_rpn(
    effect: Effect,
    occurrence: int,
    detection: int,
) -> Optional[int]:
    """
    RPN after mitigation for one effect.

    Each of the effect's ``*_post`` ratings replaces the matching
    pre-mitigation value; a missing one keeps the original. None when the
    effect has no post-mitigation rating at all.
    """
    if effect.severity_post is None and effect.occurrence_post is None and effect.detection_post is None:
        return None
    return compute_rpn(
        effect.severity_post if effect.severity_post is not None else effect.severity,
        effect.occurrence_post if effect.occurrence_post is not None else occurrence,
        effect.detection_post if effect.detection_post is not None else detection,
    )


def resolve_color(color: str) -> str:
    """Hex colours pass through; named colours map to hex, unknown names to gray."""
    if color.startswith("#"):
        return color
    return NAMED_COLORS.get(color.lower(), FALLBACK_COLOR)


def band_for_rpn(rpn: int, bands: Sequence[RiskBand]) -> BandResult:
    """
    Classify an RPN into the first band whose inclusive [min, max] contains it.

    The band list is not validated here: see project_settings.validate_thresholds.
    Never raises; an RPN outside every band yields the "Unknown"/gray result.
    """
    for band in bands:
        if band.min <= rpn <= band.max:
            return BandResult(label=band.label, color=resolve_color(band.color))
    return BandResult(label=FALLBACK_LABEL, color=FALLBACK_COLOR)
