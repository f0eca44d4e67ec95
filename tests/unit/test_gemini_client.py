"""Unit tests for the Gemini classifier/interpreter adapter.

The SDK is never touched: ``_make_api_call`` is stubbed on the instance.
"""

import json
from unittest.mock import MagicMock

import pytest
from tenacity import wait_none

from src.common.config import GeminiConfig
from src.extraction.gemini_client import (
    GeminiAPIError,
    GeminiClient,
    GeminiConfigurationError,
    GeminiParseError,
    GeminiRequestError,
    GeminiResponse,
    parse_json_text,
)
from src.extraction.models import FeedbackSignal, SignalType
from src.extraction.prompt_templates import (
    build_classifier_prompt,
    build_interpreter_prompt,
    build_post_draft_prompt,
)

from tests.fakes import BASE_TIME


@pytest.fixture
def client():
    return GeminiClient(GeminiConfig(
        model="gemini-2.5-flash",
        temperature=0.1,
        max_output_tokens=1024,
        location="us-central1",
        request_timeout_sec=5.0,
    ))


def _response(payload):
    text = json.dumps(payload)
    return GeminiResponse(raw_text=text, parsed_json=payload)


def test_parse_json_text_accepts_code_fence():
    assert parse_json_text('```json\n{"actionable": true}\n```') == {"actionable": True}
    assert parse_json_text('  {"signals": []}  ') == {"signals": []}


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", ""])
def test_parse_json_text_rejects_non_objects(raw):
    with pytest.raises(GeminiParseError):
        parse_json_text(raw)


def test_classify_returns_verdict(client, monkeypatch):
    api_call = MagicMock(return_value=_response({"actionable": True, "rationale": "Asks for dark mode."}))
    monkeypatch.setattr(client, "_make_api_call", api_call)

    result = client.classify("Please add dark mode")

    assert result.actionable is True
    assert result.rationale == "Asks for dark mode."
    prompt = api_call.call_args[0][0]
    assert prompt.endswith("Please add dark mode")


def test_classify_invalid_payload_is_parse_error(client, monkeypatch):
    monkeypatch.setattr(client, "_make_api_call", MagicMock(return_value=_response({"rationale": "x"})))

    with pytest.raises(GeminiParseError):
        client.classify("Please add dark mode")


def test_interpret_skips_malformed_signals(client, monkeypatch):
    payload = {
        "signals": [
            {"signal_type": "feature_request", "summary": "Add dark mode", "evidence": ["dark mode"], "confidence": 0.9},
            {"signal_type": "bug_report", "summary": "   ", "evidence": [], "confidence": 0.8},
            {"signal_type": "complaint", "summary": "Pricing feels high", "evidence": [], "confidence": 0.6},
            {"signal_type": "question", "summary": "Is SSO supported?", "evidence": [], "confidence": 7},
        ]
    }
    monkeypatch.setattr(client, "_make_api_call", MagicMock(return_value=_response(payload)))

    drafts = client.interpret("Please add dark mode. Also pricing feels high.")

    assert [d.summary for d in drafts] == ["Add dark mode", "Pricing feels high"]
    assert drafts[0].signal_type == SignalType.FEATURE_REQUEST
    assert drafts[1].signal_type == SignalType.OTHER


def test_interpret_without_signals_list_is_parse_error(client, monkeypatch):
    monkeypatch.setattr(client, "_make_api_call", MagicMock(return_value=_response({"items": []})))

    with pytest.raises(GeminiParseError):
        client.interpret("Please add dark mode")


def test_api_errors_are_retried(client, monkeypatch):
    monkeypatch.setattr(GeminiClient.generate_json.retry, "wait", wait_none())
    api_call = MagicMock(side_effect=[
        GeminiAPIError("Transient error: 503"),
        _response({"actionable": False, "rationale": "Greeting."}),
    ])
    monkeypatch.setattr(client, "_make_api_call", api_call)

    result = client.classify("hello there")

    assert result.actionable is False
    assert api_call.call_count == 2


def test_parse_errors_are_not_retried(client, monkeypatch):
    api_call = MagicMock(side_effect=GeminiParseError("Empty response from Gemini"))
    monkeypatch.setattr(client, "_make_api_call", api_call)

    with pytest.raises(GeminiParseError):
        client.classify("hello there")

    assert api_call.call_count == 1


def test_rejected_request_is_not_retried(client, monkeypatch):
    monkeypatch.setattr(GeminiClient.generate_json.retry, "wait", wait_none())
    sdk = MagicMock()
    sdk.models.generate_content.side_effect = Exception("400 INVALID_ARGUMENT: response_schema is invalid")
    monkeypatch.setattr(client, "_get_client", lambda: sdk)

    with pytest.raises(GeminiRequestError) as exc_info:
        client.classify("Please add dark mode")

    assert exc_info.value.retryable is False
    assert sdk.models.generate_content.call_count == 1


def test_server_errors_from_sdk_are_retried(client, monkeypatch):
    monkeypatch.setattr(GeminiClient.generate_json.retry, "wait", wait_none())
    sdk = MagicMock()
    sdk.models.generate_content.side_effect = Exception("503 UNAVAILABLE")
    monkeypatch.setattr(client, "_get_client", lambda: sdk)

    with pytest.raises(GeminiAPIError):
        client.classify("Please add dark mode")

    assert sdk.models.generate_content.call_count == 3


def test_configuration_error_is_not_retryable():
    assert GeminiConfigurationError("no credentials").retryable is False
    assert GeminiAPIError("503").retryable is True


def test_prompts_embed_the_message():
    assert "## Message" in build_classifier_prompt("dark mode please")
    prompt = build_interpreter_prompt("dark mode please")
    assert "dark mode please" in prompt
    for signal_type in SignalType:
        assert signal_type.value in prompt


def _signal(item_id):
    return FeedbackSignal(
        id="sig_1",
        raw_feedback_item_id=item_id,
        signal_type=SignalType.FEATURE_REQUEST,
        summary="Add a dark mode to the dashboard",
        evidence=["dark mode for the dashboard"],
        implicit_need="Use the dashboard comfortably at night",
        created_at=BASE_TIME,
    )


def test_draft_post_returns_validated_draft(client, ingest, monkeypatch):
    item = ingest()
    payload = {
        "title": "  Dark mode for the dashboard ",
        "body": "A dark theme for night-time use.",
        "board_id": "board_ideas",
        "reasoning": "Feature request about themes.",
    }
    api_call = MagicMock(return_value=_response(payload))
    monkeypatch.setattr(client, "_make_api_call", api_call)

    draft = client.draft_post(_signal(item.id), item, ["board_bugs", "board_ideas"])

    assert draft.title == "Dark mode for the dashboard"
    assert draft.board_id == "board_ideas"
    prompt = api_call.call_args[0][0]
    assert "- board_ideas" in prompt
    assert "Add a dark mode to the dashboard" in prompt


def test_draft_post_blank_title_is_parse_error(client, ingest, monkeypatch):
    item = ingest()
    payload = {"title": "  ", "body": "x", "reasoning": "y"}
    monkeypatch.setattr(client, "_make_api_call", MagicMock(return_value=_response(payload)))

    with pytest.raises(GeminiParseError):
        client.draft_post(_signal(item.id), item, [])


def test_post_draft_prompt_carries_envelope_context(ingest):
    item = ingest(contextEnvelope={
        "channel": "support-chat",
        "customerTier": "enterprise",
        "threadExcerpt": "Customer asked about themes last week.",
    })

    prompt = build_post_draft_prompt(_signal(item.id), item, [])

    assert "Channel: support-chat" in prompt
    assert "Customer tier: enterprise" in prompt
    assert "Earlier in the thread: Customer asked about themes last week." in prompt
    assert "Subject: Please add dark mode" in prompt
    assert "(no boards configured; use null)" in prompt
