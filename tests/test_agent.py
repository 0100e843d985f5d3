"""
Tests for the FMEA Assistant with a mocked Anthropic client.

Tests cover:
  - Context building from the datastore
  - JSON parsing (clean, fenced, invalid)
  - Suggestion, risk score and explanation calls
  - Retry with backoff on 429 / 529, and failure on other errors
  - Missing API key
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import anthropic
import httpx
import pytest

# Ensure src/ is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agent import AIServiceError, FMEAAssistant, build_context, parse_json_object
from config import AppConfig
from repository import EntityNotFoundError


def api_error(status: int) -> anthropic.APIStatusError:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    return anthropic.APIStatusError(
        f"status {status}", response=httpx.Response(status, request=request), body=None,
    )


def reply(text: str) -> MagicMock:
    message = MagicMock()
    message.content = [MagicMock(text=text)]
    return message


def assistant_with(*responses, retries: int = 3):
    client = MagicMock()
    client.messages.create.side_effect = list(responses)
    sleep = MagicMock()
    config = AppConfig(anthropic_api_key="test-key", ai_max_retries=retries)
    return FMEAAssistant(config, client=client, sleep=sleep), client, sleep


CAUSE_RESPONSE = json.dumps({
    "suggestions": [
        {"text": "Brake fluid contamination", "occurrence": 4, "confidence": 0.8, "reasoning": "Hygroscopic fluid"},
        {"text": "Piston bore scoring", "occurrence": 3, "confidence": 0.6, "reasoning": "Debris"},
    ]
})


# ── Context ───────────────────────────────────────────────────────────────────

class TestBuildContext:
    def test_failure_mode_context(self, store, seeded):
        ctx = build_context(store.load(), seeded.project.id, "cause", seeded.fm.id)
        fields = ctx.prompt_fields()
        assert fields["asset_name"] == "Disc Brake"
        assert fields["failure_mode"] == "Piston seizure"
        assert fields["rpn"] == 224
        assert "Corrosion of piston bore" in fields["existing"]

    def test_project_context_lists_failure_modes(self, store, seeded):
        ctx = build_context(store.load(), seeded.project.id, "failure-mode")
        assert ctx.existing == ["Piston seizure"]
        assert ctx.prompt_fields()["standards"] == "ISO 26262"

    def test_missing_failure_mode_raises(self, store, seeded):
        with pytest.raises(EntityNotFoundError):
            build_context(store.load(), seeded.project.id, "cause", "nope")


# ── JSON parsing ──────────────────────────────────────────────────────────────

class TestParseJSONObject:
    def test_clean_json(self):
        assert parse_json_object('{"score": 7}') == {"score": 7}

    def test_json_with_markdown_fences(self):
        assert parse_json_object('```json\n{"score": 7}\n```') == {"score": 7}

    def test_json_with_surrounding_prose(self):
        assert parse_json_object('Here you go:\n{"score": 2}\nThanks') == {"score": 2}

    def test_missing_object_raises(self):
        with pytest.raises(ValueError, match="does not contain"):
            parse_json_object("No JSON here at all.")

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError, match="Failed to parse"):
            parse_json_object('{"score": 7,,}')


# ── Calls ─────────────────────────────────────────────────────────────────────

class TestSuggest:
    def test_cause_suggestions(self, store, seeded):
        assistant, client, _ = assistant_with(reply(CAUSE_RESPONSE))
        ctx = build_context(store.load(), seeded.project.id, "cause", seeded.fm.id)

        result = assistant.suggest("cause", ctx)

        assert result.type == "cause"
        assert [s.text for s in result.suggestions] == ["Brake fluid contamination", "Piston bore scoring"]
        assert result.suggestions[0].model_extra["occurrence"] == 4
        assert result.context == 'Cause suggestions for "Piston seizure"'
        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert "Piston seizure" in prompt
        assert "Disc Brake" in prompt

    def test_fenced_response(self, store, seeded):
        assistant, _, _ = assistant_with(reply(f"```json\n{CAUSE_RESPONSE}\n```"))
        ctx = build_context(store.load(), seeded.project.id, "cause", seeded.fm.id)
        assert len(assistant.suggest("cause", ctx).suggestions) == 2

    def test_invalid_items_are_skipped(self, store, seeded):
        body = json.dumps({"suggestions": [{"text": ""}, {"text": "Valid", "confidence": 0.5}]})
        assistant, _, _ = assistant_with(reply(body))
        ctx = build_context(store.load(), seeded.project.id, "failure-mode")
        assert [s.text for s in assistant.suggest("failure-mode", ctx).suggestions] == ["Valid"]

    def test_invalid_json_raises_value_error(self, store, seeded):
        assistant, _, _ = assistant_with(reply("Sorry, I cannot help with that."))
        ctx = build_context(store.load(), seeded.project.id, "failure-mode")
        with pytest.raises(ValueError):
            assistant.suggest("failure-mode", ctx)

    def test_unknown_kind_rejected(self, store, seeded):
        assistant, client, _ = assistant_with()
        ctx = build_context(store.load(), seeded.project.id, "failure-mode")
        with pytest.raises(ValueError, match="Unknown suggestion kind"):
            assistant.suggest("mitigation", ctx)
        client.messages.create.assert_not_called()


class TestRiskScoreAndExplain:
    def test_score_is_clamped(self, store, seeded):
        assistant, _, _ = assistant_with(reply('{"score": 14, "reasoning": "Hazardous"}'))
        ctx = build_context(store.load(), seeded.project.id, "cause", seeded.fm.id)
        result = assistant.suggest_risk_score("severity", ctx)
        assert result.score == 10
        assert result.reasoning == "Hazardous"

    def test_low_score_is_clamped(self, store, seeded):
        assistant, _, _ = assistant_with(reply('{"score": -3, "reasoning": "x"}'))
        ctx = build_context(store.load(), seeded.project.id, "cause", seeded.fm.id)
        assert assistant.suggest_risk_score("detection", ctx).score == 1

    def test_explain_returns_text(self, store, seeded):
        assistant, _, _ = assistant_with(reply("  Seizure drives a high RPN.  "))
        ctx = build_context(store.load(), seeded.project.id, "cause", seeded.fm.id)
        assert assistant.explain_risk(ctx) == "Seizure drives a high RPN."


# ── Retries ───────────────────────────────────────────────────────────────────

class TestRetries:
    def test_overloaded_then_success(self):
        assistant, client, sleep = assistant_with(api_error(529), api_error(429), reply("ok"))
        assert assistant._call("prompt") == "ok"
        assert client.messages.create.call_count == 3
        delays = [c.args[0] for c in sleep.call_args_list]
        assert len(delays) == 2
        assert delays[0] < delays[1]

    def test_retries_exhausted(self):
        assistant, client, sleep = assistant_with(*(api_error(529) for _ in range(4)))
        with pytest.raises(AIServiceError, match="after 4 attempt"):
            assistant._call("prompt")
        assert client.messages.create.call_count == 4
        assert sleep.call_count == 3

    def test_other_status_is_not_retried(self):
        assistant, client, sleep = assistant_with(api_error(400))
        with pytest.raises(AIServiceError):
            assistant._call("prompt")
        assert client.messages.create.call_count == 1
        sleep.assert_not_called()


class TestClientConstruction:
    def test_missing_api_key_raises_before_any_call(self):
        with patch("agent.anthropic.Anthropic") as MockAnthropic:
            assistant = FMEAAssistant(AppConfig(anthropic_api_key=None))
            with pytest.raises(AIServiceError, match="ANTHROPIC_API_KEY"):
                assistant._call("prompt")
            MockAnthropic.assert_not_called()

    def test_client_built_from_config(self):
        with patch("agent.anthropic.Anthropic") as MockAnthropic:
            mock_client = MagicMock()
            mock_client.messages.create.return_value = reply("done")
            MockAnthropic.return_value = mock_client

            config = AppConfig(anthropic_api_key="k", ai_model="claude-test", ai_max_tokens=123)
            assert FMEAAssistant(config)._call("prompt") == "done"

            MockAnthropic.assert_called_once_with(api_key="k", max_retries=0)
            kwargs = mock_client.messages.create.call_args.kwargs
            assert kwargs["model"] == "claude-test"
            assert kwargs["max_tokens"] == 123
