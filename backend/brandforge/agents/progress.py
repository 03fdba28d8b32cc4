"""
Progress Reporter

Turns agent actions into display-friendly events for a live client.
Delivery never blocks the loop: events go to an asyncio.Queue with
put_nowait and/or to a listener callback whose failures are only logged.
"""

import asyncio
import base64
import inspect
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from brandforge.models.schemas import AgentAction, RunResult


logger = logging.getLogger(__name__)


THINKING_MESSAGES = {
    "analyze_canvas": "Analyzing your moodboard to understand the brand DNA...",
    "generate_image": "Generating the image...",
    "audit_compliance": "Auditing the image against brand guidelines...",
    "refine_prompt": "Refining the prompt based on audit feedback...",
    "search_trends": "Searching for current design trends...",
    "complete_task": "Task complete!",
}

IMAGE_PLACEHOLDER = "[IMAGE DATA]"


def thinking_message(tool_name: str) -> str:
    return THINKING_MESSAGES.get(tool_name, f"Executing {tool_name}...")


def _looks_like_image_key(key: str) -> bool:
    key = key.lower()
    return "base64" in key or "image" in key


def summarize_input(args: Dict[str, Any], max_length: int = 100) -> Dict[str, Any]:
    """Truncate long strings; never forward image payloads."""
    summary = {}
    for key, value in args.items():
        if isinstance(value, str) and _looks_like_image_key(key) and len(value) > max_length:
            summary[key] = IMAGE_PLACEHOLDER
        elif isinstance(value, str) and len(value) > max_length:
            summary[key] = value[:max_length] + "..."
        else:
            summary[key] = value
    return summary


def summarize_output(output: Dict[str, Any], max_length: int = 100) -> Dict[str, Any]:
    summary = {}
    for key, value in output.items():
        if key == "profile" and isinstance(value, dict):
            summary[key] = {"palette": value.get("palette", []), "style_description": value.get("style_description", "")}
        elif isinstance(value, str) and len(value) > max_length:
            summary[key] = IMAGE_PLACEHOLDER if _looks_like_image_key(key) else value[:max_length] + "..."
        else:
            summary[key] = value
    return summary


def format_sse(event: str, data: Dict[str, Any]) -> str:
    """Format one Server-Sent Event frame."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


class ProgressReporter:
    """
    Emits `action`, `complete` and `error` events for one run.

    Args:
        queue: optional asyncio.Queue receiving (event, data) tuples
        listener: optional callable(event, data); may be sync or async
        max_string_length: truncation length for summarized strings
    """

    def __init__(
        self,
        queue: Optional[asyncio.Queue] = None,
        listener: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
        max_string_length: int = 100,
    ):
        self.queue = queue
        self.listener = listener
        self.max_string_length = max_string_length
        self._pending: set = set()

    def on_action(self, action: AgentAction) -> None:
        self._emit("action", {
            "step": action.sequence_number,
            "turn": action.turn,
            "tool": action.tool_name,
            "input": summarize_input(action.input_args, self.max_string_length),
            "output": summarize_output(action.output_result, self.max_string_length),
            "thinking": action.reasoning_text or thinking_message(action.tool_name),
            "artifact_reference": action.artifact_reference,
            "timestamp": action.timestamp,
        })

    def on_complete(self, result: RunResult) -> None:
        self._emit("complete", {
            "success": result.success,
            "message": result.message,
            "stop_reason": result.stop_reason.value,
            "has_image": result.artifact is not None,
            "image": base64.b64encode(result.artifact).decode("ascii") if result.artifact else None,
            "artifact_reference": result.artifact_reference,
            "history_length": len(result.history),
        })

    def on_error(self, error: BaseException) -> None:
        self._emit("error", {"message": str(error) or type(error).__name__, "timestamp": time.time()})

    def _emit(self, event: str, data: Dict[str, Any]) -> None:
        if self.queue is not None:
            try:
                self.queue.put_nowait((event, data))
            except asyncio.QueueFull:
                logger.warning("[Progress] Queue full, dropping %s event", event)

        if self.listener is None:
            return
        try:
            outcome = self.listener(event, data)
            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(outcome)
                self._pending.add(task)
                task.add_done_callback(self._on_listener_done)
        except Exception as e:
            logger.warning("[Progress] Listener failed on %s event: %s", event, e)

    def _on_listener_done(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("[Progress] Async listener failed: %s", task.exception())
