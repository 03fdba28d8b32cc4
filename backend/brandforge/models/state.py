"""
Agent State

Defines the state owned by the LangGraph orchestration loop.
This is the "memory" of the agent for one run: phase, style profile, latest
artifact, last validation score, attempt counter and the action history.
"""

import operator
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Tuple, TypedDict

from google.genai import types
from pydantic import BaseModel, ConfigDict

from brandforge.models.schemas import AgentAction, InputArtifact, StopReason, StyleProfile


logger = logging.getLogger(__name__)


class AgentPhase(str, Enum):
    PLANNING = "planning"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    AUDITING = "auditing"
    REFINING = "refining"
    COMPLETE = "complete"


# Forward edges plus the bounded generating -> auditing -> refining -> generating cycle
PHASE_TRANSITIONS: Dict[AgentPhase, set] = {
    AgentPhase.PLANNING: {AgentPhase.ANALYZING, AgentPhase.GENERATING, AgentPhase.COMPLETE},
    AgentPhase.ANALYZING: {AgentPhase.GENERATING, AgentPhase.COMPLETE},
    AgentPhase.GENERATING: {AgentPhase.AUDITING, AgentPhase.GENERATING, AgentPhase.COMPLETE},
    AgentPhase.AUDITING: {AgentPhase.REFINING, AgentPhase.GENERATING, AgentPhase.COMPLETE},
    AgentPhase.REFINING: {AgentPhase.GENERATING, AgentPhase.COMPLETE},
    AgentPhase.COMPLETE: set(),
}

# Phase entered when a tool succeeds
TOOL_PHASES: Dict[str, AgentPhase] = {
    "analyze_canvas": AgentPhase.ANALYZING,
    "generate_image": AgentPhase.GENERATING,
    "audit_compliance": AgentPhase.AUDITING,
    "refine_prompt": AgentPhase.REFINING,
    "complete_task": AgentPhase.COMPLETE,
}


def transition_phase(current: AgentPhase, target: Optional[str]) -> AgentPhase:
    """
    Apply a requested phase change if it is an allowed edge.

    Same-phase requests and disallowed edges leave the phase unchanged.
    """
    if target is None:
        return current
    target_phase = AgentPhase(target)
    if target_phase == current:
        return current
    if target_phase in PHASE_TRANSITIONS[current]:
        return target_phase
    logger.info("[State] Ignoring phase change %s -> %s", current.value, target_phase.value)
    return current


@dataclass(frozen=True)
class ToolCallRequest:
    """One function call requested by the model in a turn."""

    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None
    signature: Optional[bytes] = None


@dataclass(frozen=True)
class RunOutcome:
    """Terminal decision of the loop, set by the node that ends the run."""

    stop_reason: StopReason
    success: bool
    message: str


class AgentState(TypedDict):
    """
    Shared state for the LangGraph workflow.

    `history` and `contents` use the add reducer: nodes only ever return the
    new entries, so both are append-only. Every other field is replaced by
    the last update.
    """

    # === Input ===
    goal: str
    input_artifacts: List[InputArtifact]

    # === Progress ===
    phase: AgentPhase
    style_profile: Optional[StyleProfile]
    current_artifact: Optional[bytes]
    current_artifact_ref: Optional[str]
    validation_score: Optional[float]
    last_prompt: Optional[str]

    # === Attempt cycle ===
    attempts: int
    max_attempts: int

    # === History ===
    history: Annotated[List[AgentAction], operator.add]
    contents: Annotated[List[types.Content], operator.add]

    # === Control ===
    pending_calls: List[ToolCallRequest]
    pending_reasoning: Optional[str]
    turns: int
    turn_offset: int
    outcome: Optional[RunOutcome]


class AgentStateView(BaseModel):
    """Read-only snapshot of AgentState handed to tool executors."""

    model_config = ConfigDict(frozen=True)

    goal: str
    phase: AgentPhase
    input_artifacts: Tuple[InputArtifact, ...] = ()
    style_profile: Optional[StyleProfile] = None
    current_artifact: Optional[bytes] = None
    current_artifact_ref: Optional[str] = None
    validation_score: Optional[float] = None
    last_prompt: Optional[str] = None
    attempts: int = 0
    max_attempts: int = 3

    @classmethod
    def from_state(cls, state: AgentState) -> "AgentStateView":
        return cls(
            goal=state["goal"],
            phase=state["phase"],
            input_artifacts=tuple(state["input_artifacts"]),
            style_profile=state.get("style_profile"),
            current_artifact=state.get("current_artifact"),
            current_artifact_ref=state.get("current_artifact_ref"),
            validation_score=state.get("validation_score"),
            last_prompt=state.get("last_prompt"),
            attempts=state.get("attempts", 0),
            max_attempts=state.get("max_attempts", 3),
        )


def create_initial_state(
    goal: str,
    input_artifacts: List[InputArtifact],
    cached_profile: Optional[StyleProfile] = None,
    max_attempts: int = 3,
) -> AgentState:
    """
    Create a fresh agent state for one run.

    Args:
        goal: The caller's natural-language goal
        input_artifacts: Reference material (images, notes, swatches)
        cached_profile: Style profile from a prior session, if any
        max_attempts: Generate/validate cycles allowed

    Returns:
        Initial AgentState ready for the graph
    """
    return AgentState(
        goal=goal,
        input_artifacts=list(input_artifacts),
        phase=AgentPhase.PLANNING,
        style_profile=cached_profile,
        current_artifact=None,
        current_artifact_ref=None,
        validation_score=None,
        last_prompt=None,
        attempts=0,
        max_attempts=max_attempts,
        history=[],
        contents=[],
        pending_calls=[],
        pending_reasoning=None,
        turns=0,
        turn_offset=0,
        outcome=None,
    )


def hydrate_state(
    goal: str,
    input_artifacts: List[InputArtifact],
    prior_history: List[AgentAction],
    cached_profile: Optional[StyleProfile] = None,
    max_attempts: int = 3,
) -> AgentState:
    """
    Rebuild state for a resumed run by replaying a prior action list.

    Recomputes phase, attempts, last score, last prompt and the latest
    artifact reference. The binary artifact is not part of history; the
    caller resolves `current_artifact_ref` against an artifact store.
    """
    state = create_initial_state(goal, input_artifacts, cached_profile, max_attempts)
    state["history"] = list(prior_history)
    state["turn_offset"] = max((a.turn for a in prior_history), default=0)

    for action in sorted(prior_history, key=lambda a: a.sequence_number):
        output = action.output_result
        if not output.get("success"):
            continue
        state["phase"] = transition_phase(state["phase"], TOOL_PHASES.get(action.tool_name))

        if action.tool_name == "generate_image":
            state["attempts"] += 1
            state["validation_score"] = None
            state["current_artifact_ref"] = action.artifact_reference
            state["last_prompt"] = action.input_args.get("prompt", state["last_prompt"])
        elif action.tool_name == "audit_compliance" and output.get("score") is not None:
            state["validation_score"] = float(output["score"])
        elif action.tool_name == "refine_prompt" and output.get("refined_prompt"):
            state["last_prompt"] = output["refined_prompt"]

    # A finished run resumes as a new request with a fresh attempt cycle
    if state["phase"] == AgentPhase.COMPLETE:
        state["phase"] = AgentPhase.PLANNING if state["current_artifact_ref"] is None else AgentPhase.GENERATING
        state["attempts"] = 0
    return state
