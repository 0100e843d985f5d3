"""
FMEA Assistant: AI-assisted suggestions through the Anthropic Python SDK.

Given a project's asset and (optionally) one failure mode with its current
causes, effects and controls, Claude proposes new failure modes, causes,
effects, controls or actions, suggests a rating, or explains the risk.
Responses are JSON objects validated against the Pydantic models below.
"""

from __future__ import annotations

import json
import logging
import random
import re
import time
from typing import Any, Callable, Literal, Optional

import anthropic
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config import AppConfig
from datastore import Snapshot
from fmea_schema import Asset, FailureModeDetail
from prompts import EXPLAIN_RISK_PROMPT, PROMPTS, RISK_SCORE_PROMPT, SCALE_HINTS, SYSTEM_PROMPT
from repository import children, failure_mode_detail, project_settings_for, require

logger = logging.getLogger(__name__)

SuggestionKind = Literal["failure-mode", "cause", "effect", "control", "action"]
ScoreType = Literal["severity", "occurrence", "detection"]

# Anthropic status codes worth retrying: rate limited and overloaded.
RETRYABLE_STATUS = (429, 529)


class AIServiceError(RuntimeError):
    """The AI service is not configured or did not produce an answer."""


class SuggestionItem(BaseModel):
    """One suggested text plus any ratings the model attached (occurrence, severity, ...)."""
    model_config = ConfigDict(extra="allow")

    text: str = Field(..., min_length=1)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = ""


class AISuggestion(BaseModel):
    type: SuggestionKind
    suggestions: list[SuggestionItem] = Field(default_factory=list)
    context: str


class RiskScoreSuggestion(BaseModel):
    score: int = Field(..., ge=1, le=10)
    reasoning: str


class SuggestionContext(BaseModel):
    """What the model is told about the asset and the failure mode under analysis."""
    asset: Asset
    detail: Optional[FailureModeDetail] = None
    existing: list[str] = Field(default_factory=list)

    def prompt_fields(self) -> dict[str, Any]:
        fm = self.detail.failure_mode if self.detail else None
        risk = self.detail.risk if self.detail else None
        return {
            "asset_name": self.asset.name,
            "asset_type": self.asset.type or "Not specified",
            "asset_context": self.asset.context or "Not specified",
            "asset_criticality": self.asset.criticality,
            "standards": ", ".join(self.asset.standards) or "None specified",
            "failure_mode": fm.failure_mode if fm else "General component failure",
            "process_step": (fm.process_step if fm else "") or "Not specified",
            "existing": "; ".join(self.existing) or "None",
            "rpn": risk.max_rpn if risk else 0,
            "severity": risk.max_severity if risk else 0,
            "occurrence": risk.max_occurrence if risk else 0,
            "detection": risk.max_detection if risk else 0,
        }


def build_context(
    snapshot: Snapshot,
    project_id: str,
    kind: SuggestionKind,
    failure_mode_id: Optional[str] = None,
) -> SuggestionContext:
    """
    Collect the prompt context for a suggestion from the datastore snapshot.

    "Existing" lists what the model should not repeat: the project's failure
    modes, or the failure mode's current causes / effects / controls / actions.

    Raises:
        EntityNotFoundError: if the project, its asset or the failure mode is missing.
    """
    project = require(snapshot, "projects", project_id, "Project")
    asset = Asset.model_validate(require(snapshot, "assets", project["asset_id"], "Asset"))
    if failure_mode_id is None:
        existing = [fm["failure_mode"] for fm in children(snapshot, "failure_modes", "project_id", project_id)]
        return SuggestionContext(asset=asset, existing=existing)

    fm = require(snapshot, "failure_modes", failure_mode_id, "Failure mode")
    detail = failure_mode_detail(snapshot, fm, project_settings_for(snapshot, project_id))
    existing_by_kind = {
        "failure-mode": [fm["failure_mode"]],
        "cause": [c.description for c in detail.causes],
        "effect": [e.description for e in detail.effects],
        "control": [c.description for c in detail.controls],
        "action": [a.description for a in detail.actions],
    }
    return SuggestionContext(asset=asset, detail=detail, existing=existing_by_kind[kind])


def parse_json_object(raw: str) -> dict[str, Any]:
    """
    Extract the JSON object from a Claude response.

    Claude is instructed to return only JSON, but may occasionally wrap it in
    markdown fences or add a sentence around it. Both cases are handled.
    """
    cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip(), flags=re.MULTILINE)
    cleaned = re.sub(r"\s*```$", "", cleaned, flags=re.MULTILINE).strip()

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end == -1:
        raise ValueError(
            f"Claude response does not contain a JSON object.\n"
            f"Response (first 500 chars): {raw[:500]}"
        )

    json_str = cleaned[start : end + 1]
    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse JSON from Claude response: {e}\nJSON: {json_str[:500]}") from e

    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def _validate_items(raw_items: Any) -> list[SuggestionItem]:
    if not isinstance(raw_items, list):
        raise ValueError(f"Expected 'suggestions' to be a list, got {type(raw_items).__name__}")

    items: list[SuggestionItem] = []
    errors: list[str] = []
    for i, raw_item in enumerate(raw_items):
        try:
            items.append(SuggestionItem.model_validate(raw_item))
        except ValidationError as e:
            errors.append(f"Suggestion {i + 1}: {e.errors()[0]['msg']}")

    if errors:
        logger.warning("%d suggestion(s) had validation errors: %s", len(errors), "; ".join(errors))
    return items


class FMEAAssistant:
    """Thin client over the Anthropic Messages API for FMEA content."""

    def __init__(
        self,
        config: AppConfig,
        client: Optional[anthropic.Anthropic] = None,
        sleep: Callable[[float], None] = time.sleep,
        base_delay: float = 1.0,
    ):
        self.config = config
        self._client = client
        self._sleep = sleep
        self._base_delay = base_delay

    @property
    def client(self) -> anthropic.Anthropic:
        if self._client is None:
            if not self.config.anthropic_api_key:
                raise AIServiceError(
                    "ANTHROPIC_API_KEY is not configured; AI suggestions are unavailable."
                )
            # The SDK would also retry timeouts, conflicts and every 5xx. Only
            # rate-limit and overload responses are retried, in _call; any other
            # failure surfaces at once as AIServiceError.
            self._client = anthropic.Anthropic(api_key=self.config.anthropic_api_key, max_retries=0)
        return self._client

    def _call(self, prompt: str) -> str:
        """
        Send one prompt, retrying rate-limit (429) and overload (529) responses
        with exponential backoff plus jitter.

        Raises:
            AIServiceError: on a non-retryable error or once retries run out.
        """
        client = self.client
        retries = self.config.ai_max_retries
        for attempt in range(retries + 1):
            try:
                message = client.messages.create(
                    model=self.config.ai_model,
                    max_tokens=self.config.ai_max_tokens,
                    system=SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": prompt}],
                )
            except anthropic.APIStatusError as e:
                if e.status_code not in RETRYABLE_STATUS or attempt == retries:
                    raise AIServiceError(
                        f"AI service unavailable after {attempt + 1} attempt(s): {e}"
                    ) from e
                delay = self._base_delay * (2 ** attempt) + random.random()
                logger.warning(
                    "Claude API returned %s (attempt %d/%d), retrying in %.1fs",
                    e.status_code, attempt + 1, retries + 1, delay,
                )
                self._sleep(delay)
                continue
            except anthropic.APIError as e:
                raise AIServiceError(f"AI service request failed: {e}") from e

            block = message.content[0]
            text = getattr(block, "text", None)
            if text is None:
                raise AIServiceError("Unexpected response format from Claude")
            logger.info("Received response (%d chars)", len(text))
            return text.strip()

        raise AIServiceError("AI service unavailable")

    def suggest(self, kind: SuggestionKind, context: SuggestionContext) -> AISuggestion:
        """
        Ask for 3-5 new items of the given kind.

        Raises:
            ValueError: if the response is not a valid suggestions object.
            AIServiceError: on API failures.
        """
        if kind not in PROMPTS:
            raise ValueError(f"Unknown suggestion kind '{kind}'")
        fields = context.prompt_fields()
        raw = self._call(PROMPTS[kind].format(**fields))
        parsed = parse_json_object(raw)
        subject = fields["asset_name"] if kind == "failure-mode" else f'"{fields["failure_mode"]}"'
        return AISuggestion(
            type=kind,
            suggestions=_validate_items(parsed.get("suggestions", [])),
            context=f"{kind.replace('-', ' ').capitalize()} suggestions for {subject}",
        )

    def suggest_risk_score(self, score_type: ScoreType, context: SuggestionContext) -> RiskScoreSuggestion:
        """Suggest a single 1-10 rating; out-of-range scores are clamped."""
        if score_type not in SCALE_HINTS:
            raise ValueError(f"Unknown score type '{score_type}'")
        fields = context.prompt_fields()
        raw = self._call(RISK_SCORE_PROMPT.format(
            score_type=score_type, scale_hint=SCALE_HINTS[score_type], **fields,
        ))
        parsed = parse_json_object(raw)
        try:
            score = int(parsed.get("score") or 5)
        except (TypeError, ValueError):
            score = 5
        return RiskScoreSuggestion(
            score=max(1, min(10, score)),
            reasoning=parsed.get("reasoning") or f"{score_type} assessment based on asset characteristics",
        )

    def explain_risk(self, context: SuggestionContext) -> str:
        return self._call(EXPLAIN_RISK_PROMPT.format(**context.prompt_fields()))
