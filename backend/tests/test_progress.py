"""
Tests for the progress reporter

Run with: pytest backend/tests/test_progress.py -v
"""

import asyncio
import json

from brandforge.agents.progress import ProgressReporter, format_sse, summarize_input, summarize_output
from brandforge.models.schemas import AgentAction, RunResult, StopReason


def _action(**overrides) -> AgentAction:
    values = dict(
        sequence_number=1,
        turn=1,
        tool_name="generate_image",
        input_args={"prompt": "p" * 150, "image_base64": "A" * 500, "aspect_ratio": "1:1"},
        output_result={"success": True, "status": "success", "attempt": 1},
    )
    values.update(overrides)
    return AgentAction(**values)


def test_summarize_input_truncates_and_hides_images():
    summary = summarize_input({"prompt": "p" * 150, "image_base64": "A" * 500, "aspect_ratio": "1:1"})

    assert summary["prompt"] == "p" * 100 + "..."
    assert summary["image_base64"] == "[IMAGE DATA]"
    assert summary["aspect_ratio"] == "1:1"


def test_summarize_output_compacts_profile():
    summary = summarize_output({"profile": {"palette": ["#000000"], "style_description": "Bold", "voice_tone": "x"}})
    assert summary["profile"] == {"palette": ["#000000"], "style_description": "Bold"}


def test_on_action_enqueues_summary_with_status_message():
    queue = asyncio.Queue()
    ProgressReporter(queue=queue).on_action(_action())

    event, data = queue.get_nowait()
    assert event == "action"
    assert data["tool"] == "generate_image"
    assert data["input"]["image_base64"] == "[IMAGE DATA]"
    assert data["thinking"] == "Generating the image..."


def test_reasoning_text_replaces_status_message():
    queue = asyncio.Queue()
    ProgressReporter(queue=queue).on_action(_action(reasoning_text="Trying a warmer palette"))
    _, data = queue.get_nowait()
    assert data["thinking"] == "Trying a warmer palette"


def test_failing_listener_does_not_propagate():
    seen = []

    def listener(event, data):
        seen.append(event)
        raise RuntimeError("client went away")

    reporter = ProgressReporter(listener=listener)
    reporter.on_action(_action())
    reporter.on_error(ValueError("boom"))

    assert seen == ["action", "error"]


def test_async_listener_is_scheduled_without_blocking():
    received = []

    async def listener(event, data):
        received.append((event, data["tool"]))

    async def scenario():
        reporter = ProgressReporter(listener=listener)
        reporter.on_action(_action())
        assert received == []
        await asyncio.sleep(0)
        return received

    assert asyncio.run(scenario()) == [("action", "generate_image")]


def test_complete_event_and_sse_format():
    queue = asyncio.Queue()
    result = RunResult(success=True, message="done", artifact=b"\x89PNG", artifact_reference="artifact_1",
                       stop_reason=StopReason.COMPLETED)
    ProgressReporter(queue=queue).on_complete(result)

    event, data = queue.get_nowait()
    frame = format_sse(event, data)

    assert frame.startswith("event: complete\ndata: ")
    assert frame.endswith("\n\n")
    payload = json.loads(frame.split("data: ", 1)[1])
    assert payload["has_image"] is True
    assert payload["stop_reason"] == "completed"
    assert payload["artifact_reference"] == "artifact_1"
