"""
Prompt templates for AI-assisted FMEA content.

Each template asks for a single JSON object so responses can be parsed and
validated the same way regardless of which suggestion was requested. Rating
scales follow the 1-10 severity / occurrence / detection conventions used by
the risk engine.
"""

SYSTEM_PROMPT = """You are an expert reliability engineer specializing in Failure Mode and Effects Analysis (FMEA).
You give specific, technically accurate and actionable answers, calibrated to the asset and context provided.
When asked for JSON you respond with a single valid JSON object and nothing else: no preamble, no markdown."""

_ASSET_BLOCK = """Asset Details:
- Name: {asset_name}
- Type: {asset_type}
- Context: {asset_context}
- Criticality: {asset_criticality}
- Standards: {standards}"""

_SUGGESTIONS_FORMAT = """Format your response as JSON with this structure:
{{{{
  "suggestions": [
    {{{{
      "text": "{text_hint}",{extra_fields}
      "confidence": 0.85,
      "reasoning": "{reasoning_hint}"
    }}}}
  ]
}}}}"""

FAILURE_MODE_PROMPT = _ASSET_BLOCK + """

Existing Failure Modes: {existing}

Suggest 3-5 potential failure modes for this asset. They must be:
1. Specific to this asset type and context
2. Different from the existing ones
3. Realistic and technically accurate

""" + _SUGGESTIONS_FORMAT.format(
    text_hint="Specific failure mode description",
    extra_fields="",
    reasoning_hint="Why this failure mode is relevant for this asset",
)

CAUSE_PROMPT = _ASSET_BLOCK + """

Failure Mode: {failure_mode}
Process Step: {process_step}
Existing Causes: {existing}

Suggest 3-5 potential root causes for this failure mode: root causes, not symptoms.
Rate each cause's occurrence from 1 (remote) to 10 (almost certain).

""" + _SUGGESTIONS_FORMAT.format(
    text_hint="Specific cause description",
    extra_fields='\n      "occurrence": 5,',
    reasoning_hint="Why this is a likely root cause",
)

EFFECT_PROMPT = _ASSET_BLOCK + """

Failure Mode: {failure_mode}
Existing Effects: {existing}

Suggest 3-5 potential effects of this failure mode, considering safety, environmental,
operational, cost and regulatory impact. Rate each effect's severity from 1 (no effect)
to 10 (hazardous without warning), taking the asset criticality into account.

""" + _SUGGESTIONS_FORMAT.format(
    text_hint="Specific effect description",
    extra_fields='\n      "severity": 7,',
    reasoning_hint="Why this effect would occur and its significance",
)

CONTROL_PROMPT = _ASSET_BLOCK + """

Failure Mode: {failure_mode}
Existing Controls: {existing}

Suggest 3-5 practical controls, mixing prevention and detection methods.
For each give "type" ("prevention" or "detection"), a detection rating from
1 (almost certain to detect) to 10 (cannot detect), and an effectiveness rating from 1 to 10.

""" + _SUGGESTIONS_FORMAT.format(
    text_hint="Control description",
    extra_fields='\n      "type": "detection",\n      "detection": 4,\n      "effectiveness": 7,',
    reasoning_hint="How this control addresses the failure mode",
)

ACTION_PROMPT = _ASSET_BLOCK + """

Failure Mode: {failure_mode}
Current RPN: {rpn} (S={severity}, O={occurrence}, D={detection})
Existing Actions: {existing}

Suggest 3-5 recommended actions that would lower the RPN: design changes, tolerances,
test procedures, inspections or redundancy.

""" + _SUGGESTIONS_FORMAT.format(
    text_hint="Specific corrective or preventive action",
    extra_fields="",
    reasoning_hint="Which rating this action lowers and why",
)

RISK_SCORE_PROMPT = _ASSET_BLOCK + """

Failure Mode: {failure_mode}

Suggest a {score_type} rating on a 1-10 scale.
{scale_hint}

Provide your assessment as JSON:
{{
  "score": 6,
  "reasoning": "Why this score is appropriate"
}}"""

SCALE_HINTS = {
    "severity": "Severity Scale: 1 = no effect, 10 = hazardous without warning.",
    "occurrence": "Occurrence Scale: 1 = remote, 10 = very high.",
    "detection": "Detection Scale: 1 = certain detection, 10 = cannot detect.",
}

EXPLAIN_RISK_PROMPT = _ASSET_BLOCK + """

Failure Mode: {failure_mode}
Current RPN: {rpn} (S={severity}, O={occurrence}, D={detection})

Explain concisely, for a reliability engineer:
1. Why this failure mode is significant
2. Which factors drive its risk level
3. The recommended mitigation approach
Answer in plain prose."""

PROMPTS = {
    "failure-mode": FAILURE_MODE_PROMPT,
    "cause": CAUSE_PROMPT,
    "effect": EFFECT_PROMPT,
    "control": CONTROL_PROMPT,
    "action": ACTION_PROMPT,
}
