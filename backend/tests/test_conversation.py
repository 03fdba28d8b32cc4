"""
Tests for turn parsing and conversation rebuilding

Run with: pytest backend/tests/test_conversation.py -v
"""

import asyncio

from google.genai import types

from brandforge.agents.conversation import (
    Conversation,
    build_opening_message,
    call_signature_sequence,
    decode_token,
    encode_token,
    parse_turn,
)
from brandforge.agents.graph import AgentOrchestrator
from brandforge.models.schemas import InputArtifact, StopReason, default_style_profile

from conftest import FakeGeminiService, audit_json, make_settings, model_turn, png_base64


# ============ Turn parsing ============

def test_parse_pure_text_turn():
    turn = parse_turn(model_turn(text="Which season is the sale for?"))
    assert turn.calls == []
    assert turn.text == "Which season is the sale for?"
    assert turn.reasoning_text == turn.text


def test_parse_reasoning_with_many_calls():
    turn = parse_turn(model_turn(
        ("search_trends", {"query": "summer"}),
        ("analyze_canvas", {"focus": "colors"}),
        thought="Research and analyze in parallel.",
        signature=b"opaque-1",
    ))

    assert [c.name for c in turn.calls] == ["search_trends", "analyze_canvas"]
    assert turn.calls[1].args == {"focus": "colors"}
    assert turn.calls[0].signature == b"opaque-1"
    assert turn.calls[1].signature is None
    assert turn.reasoning_text == "Research and analyze in parallel."
    assert turn.text is None


def test_parse_empty_response():
    turn = parse_turn(types.GenerateContentResponse(candidates=[]))
    assert turn.content is None
    assert turn.calls == []


def test_token_round_trip_and_empty():
    assert decode_token(encode_token(b"\x00\xffsig")) == b"\x00\xffsig"
    assert encode_token(None) is None
    assert decode_token("") is None


def test_opening_message_mentions_memory_only_with_profile():
    artifacts = [InputArtifact(kind="swatch", content="#00FFCC")]
    without = build_opening_message("Poster", artifacts).parts[0].text
    with_profile = build_opening_message("Poster", artifacts, default_style_profile()).parts[0].text

    assert "[COLOR: #00FFCC]" in without
    assert "MEMORY" not in without
    assert "MEMORY" in with_profile
    assert "Modern, bold, high contrast" in with_profile


# ============ Resume ============

LIVE_TURNS = [
    model_turn(("analyze_canvas", {}), thought="Start with the moodboard.", signature=b"sig-1"),
    model_turn(
        ("search_trends", {"query": "summer"}),
        ("generate_image", {"prompt": "Beach poster"}),
        thought="Research while generating.",
        signature=b"sig-2",
    ),
    model_turn(("audit_compliance", {}), signature=b"sig-3"),
    model_turn(("complete_task", {"success": True, "message": "Done"}), signature=b"sig-4"),
]

EXPECTED_SIGNATURES = [
    [("analyze_canvas", b"sig-1")],
    [("search_trends", b"sig-2"), ("generate_image", None)],
    [("audit_compliance", b"sig-3")],
    [("complete_task", b"sig-4")],
]


def _live_run():
    service = FakeGeminiService(turns=list(LIVE_TURNS), audits=[audit_json(94)])
    orchestrator = AgentOrchestrator(service=service, settings=make_settings())
    moodboard = [InputArtifact(kind="image", content=png_base64())]
    result = asyncio.run(orchestrator.run("Summer poster", moodboard))
    return service, orchestrator, moodboard, result


def test_live_conversation_keeps_signatures_on_their_parts():
    service, _, _, result = _live_run()

    assert result.stop_reason == StopReason.COMPLETED
    # the last request carried every model turn except the final one
    assert call_signature_sequence(service.sent_contents[-1]) == EXPECTED_SIGNATURES[:3]
    assert [a.continuation_token for a in result.history] == [
        encode_token(b"sig-1"), encode_token(b"sig-2"), None, encode_token(b"sig-3"), encode_token(b"sig-4"),
    ]


def test_rebuilt_conversation_matches_live_structure():
    _, _, moodboard, result = _live_run()

    rebuilt = Conversation.from_history("Summer poster", moodboard, result.history)

    assert rebuilt.signatures() == EXPECTED_SIGNATURES
    assert [c.role for c in rebuilt.contents] == ["user"] + ["model", "user"] * 4
    assert rebuilt.contents[1].parts[0].text == "Start with the moodboard."
    assert "Resuming" in rebuilt.contents[-1].parts[-1].text


def test_resumed_run_sends_recorded_signatures_and_continues_numbering():
    _, orchestrator, moodboard, first = _live_run()
    orchestrator.service.turns = [model_turn(("complete_task", {"success": True, "message": "Still good"}))]

    resumed = asyncio.run(orchestrator.run("Summer poster", moodboard, prior_history=first.history))

    sent = orchestrator.service.sent_contents[-1]
    assert call_signature_sequence(sent) == EXPECTED_SIGNATURES
    assert resumed.history[:5] == first.history
    assert resumed.history[5].sequence_number == 6
    assert resumed.history[5].turn == 5
    assert resumed.artifact == first.artifact
    assert resumed.success is True
