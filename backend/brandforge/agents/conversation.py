"""
Conversation Manager

Owns the multi-turn exchange with the agent model:
- parses each model turn into reasoning text and tool-call requests
- builds the opening message and the function-response messages
- rebuilds a conversation from a recorded action history

Model turns are appended to the conversation exactly as received, so every
thought signature stays on the part it arrived on. When a conversation is
rebuilt from history, each recorded signature is reattached to the same
function call in the same model turn.
"""

import base64
import logging
from dataclasses import dataclass, field
from itertools import groupby
from typing import Any, Dict, List, Optional, Sequence

from google.genai import types

from brandforge.models.schemas import AgentAction, InputArtifact, StyleProfile
from brandforge.models.state import ToolCallRequest
from brandforge.tools.style_extraction import describe_artifacts


logger = logging.getLogger(__name__)


SYSTEM_INSTRUCTION = """You are BrandForge, an autonomous brand design agent.

You turn a moodboard (reference images, notes, color swatches) and a request
into an on-brand image by calling tools:

1. analyze_canvas: extract the brand style profile (skip if a saved profile is in memory)
2. search_trends: optional research on trends or cultural context
3. generate_image: create the image using the profile
4. audit_compliance: score the image against the profile
5. refine_prompt: if the audit fails, fix the prompt, then generate again
6. complete_task: finish, once the audit passes or attempts run out

RULES:
- Always audit a generated image before completing.
- Never call refine_prompt after a passing audit.
- Respect the attempt budget reported after each tool batch.
- Explain your reasoning briefly before each tool call."""

RESUME_NOTE = (
    "Resuming the session from the recorded history above. "
    "Continue with the original request."
)


@dataclass
class ModelTurn:
    """One parsed model turn."""

    content: Optional[types.Content]
    reasoning_text: Optional[str] = None
    text: Optional[str] = None
    calls: List[ToolCallRequest] = field(default_factory=list)


def encode_token(signature: Optional[bytes]) -> Optional[str]:
    if not signature:
        return None
    return base64.b64encode(signature).decode("ascii")


def decode_token(token: Optional[str]) -> Optional[bytes]:
    if not token:
        return None
    return base64.b64decode(token)


def parse_turn(response: types.GenerateContentResponse) -> ModelTurn:
    """
    Split a model response into reasoning, plain text and tool calls.

    Thought parts become the reasoning text; when the model returned no
    thoughts, its visible text is used instead.
    """
    if not response.candidates or response.candidates[0].content is None:
        logger.warning("[Conversation] Model returned no candidate content")
        return ModelTurn(content=None)

    content = response.candidates[0].content
    thoughts: List[str] = []
    texts: List[str] = []
    calls: List[ToolCallRequest] = []

    for part in content.parts or []:
        if part.function_call is not None:
            calls.append(ToolCallRequest(
                name=part.function_call.name or "",
                args=dict(part.function_call.args or {}),
                call_id=part.function_call.id,
                signature=part.thought_signature,
            ))
        elif part.text:
            (thoughts if part.thought else texts).append(part.text)

    text = "\n".join(texts).strip() or None
    reasoning = "\n".join(thoughts).strip() or text
    return ModelTurn(content=content, reasoning_text=reasoning, text=text, calls=calls)


def build_opening_message(
    goal: str,
    input_artifacts: Sequence[InputArtifact],
    cached_profile: Optional[StyleProfile] = None,
) -> types.Content:
    """First user message: the request, the moodboard and any remembered profile."""
    sections = [f'USER REQUEST: "{goal}"']

    described = describe_artifacts(input_artifacts)
    if described:
        sections.append(f"MOODBOARD ({len(input_artifacts)} items):\n{described}")
    else:
        sections.append("MOODBOARD: empty")

    if cached_profile is not None:
        sections.append(
            "MEMORY: A brand style profile from a previous session is available. "
            "Use it instead of calling analyze_canvas unless the moodboard changed.\n"
            f"{cached_profile.to_prompt_block()}"
        )

    sections.append("Begin. Explain your plan, then call the first tool.")
    return types.Content(role="user", parts=[types.Part.from_text(text="\n\n".join(sections))])


def function_response_part(name: str, payload: Dict[str, Any], call_id: Optional[str] = None) -> types.Part:
    return types.Part(function_response=types.FunctionResponse(id=call_id, name=name, response=payload))


def build_response_message(
    calls: Sequence[ToolCallRequest],
    payloads: Sequence[Dict[str, Any]],
    note: Optional[str] = None,
) -> types.Content:
    """User message answering every call of a turn, in request order."""
    parts = [
        function_response_part(call.name, payload, call.call_id)
        for call, payload in zip(calls, payloads)
    ]
    if note:
        parts.append(types.Part.from_text(text=note))
    return types.Content(role="user", parts=parts)


def rebuild_conversation(
    goal: str,
    input_artifacts: Sequence[InputArtifact],
    history: Sequence[AgentAction],
    cached_profile: Optional[StyleProfile] = None,
) -> List[types.Content]:
    """
    Reconstruct the conversation a recorded history came from.

    Each turn becomes a model message (reasoning text, then the function
    calls carrying their recorded signatures) followed by a user message
    with the recorded results. A resume note closes the last message.
    """
    contents = [build_opening_message(goal, input_artifacts, cached_profile)]
    ordered = sorted(history, key=lambda a: (a.turn, a.sequence_number))

    for _, group in groupby(ordered, key=lambda a: a.turn):
        actions = list(group)
        model_parts: List[types.Part] = []
        reasoning = next((a.reasoning_text for a in actions if a.reasoning_text), None)
        if reasoning:
            model_parts.append(types.Part.from_text(text=reasoning))
        for action in actions:
            model_parts.append(types.Part(
                function_call=types.FunctionCall(name=action.tool_name, args=dict(action.input_args)),
                thought_signature=decode_token(action.continuation_token),
            ))
        contents.append(types.Content(role="model", parts=model_parts))
        contents.append(types.Content(role="user", parts=[
            function_response_part(action.tool_name, action.output_result) for action in actions
        ]))

    if len(contents) > 1:
        contents[-1].parts.append(types.Part.from_text(text=RESUME_NOTE))
    logger.info("[Conversation] Rebuilt %d messages from %d actions", len(contents), len(history))
    return contents


def call_signature_sequence(contents: Sequence[types.Content]) -> List[List[tuple]]:
    """(tool name, signature) per function call, grouped by model message."""
    sequence = []
    for content in contents:
        if content.role != "model":
            continue
        sequence.append([
            (part.function_call.name, part.thought_signature)
            for part in content.parts or []
            if part.function_call is not None
        ])
    return sequence


class Conversation:
    """
    Ordered list of turns sent to the agent model.

    The loop stores `contents` in graph state; this wrapper is the entry
    point for starting a fresh conversation or resuming a recorded one.
    """

    def __init__(self, contents: Optional[List[types.Content]] = None):
        self.contents: List[types.Content] = list(contents or [])

    @classmethod
    def start(
        cls,
        goal: str,
        input_artifacts: Sequence[InputArtifact],
        cached_profile: Optional[StyleProfile] = None,
    ) -> "Conversation":
        return cls([build_opening_message(goal, input_artifacts, cached_profile)])

    @classmethod
    def from_history(
        cls,
        goal: str,
        input_artifacts: Sequence[InputArtifact],
        history: Sequence[AgentAction],
        cached_profile: Optional[StyleProfile] = None,
    ) -> "Conversation":
        return cls(rebuild_conversation(goal, input_artifacts, history, cached_profile))

    def signatures(self) -> List[List[tuple]]:
        return call_signature_sequence(self.contents)
