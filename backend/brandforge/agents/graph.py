"""
LangGraph Workflow

Autonomous agent loop. The model decides which tools to call; the graph
runs them and feeds the results back:

    START → model → tools → model → ... → END

- `model` sends the conversation to Gemini and parses the next turn
- `tools` dispatches the requested calls concurrently, merges their state
  deltas in request order and answers the model

The run ends when the model calls complete_task, stops calling tools, hits
the attempt or iteration ceiling, is aborted, or the model becomes
unreachable after an image already exists (graceful degradation).
"""

import asyncio
import logging
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph
from langsmith import traceable
from pydantic import ValidationError

from brandforge.agents.conversation import (
    SYSTEM_INSTRUCTION,
    Conversation,
    build_response_message,
    encode_token,
    parse_turn,
)
from brandforge.agents.progress import ProgressReporter
from brandforge.config import Settings, get_settings
from brandforge.core.artifacts import ArtifactStore
from brandforge.core.backoff import BackoffPolicy
from brandforge.core.exceptions import TurnExchangeError
from brandforge.core.gemini_service import GeminiService
from brandforge.models.schemas import (
    AgentAction,
    InputArtifact,
    RunResult,
    StateDelta,
    StopReason,
    StyleProfile,
    ToolResult,
)
from brandforge.models.state import (
    AgentPhase,
    AgentState,
    AgentStateView,
    RunOutcome,
    ToolCallRequest,
    create_initial_state,
    hydrate_state,
    transition_phase,
)
from brandforge.tools.completion import CompletionTool
from brandforge.tools.image_generation import ImageGenerationTool, attempt_limit_result
from brandforge.tools.refinement import PromptRefinementTool
from brandforge.tools.registry import ToolRegistry
from brandforge.tools.search import ContextSearchTool
from brandforge.tools.style_extraction import StyleExtractionTool
from brandforge.tools.validation import ComplianceValidationTool


logger = logging.getLogger(__name__)


def create_tool_registry(service: GeminiService, settings: Optional[Settings] = None) -> ToolRegistry:
    """Registry with every built-in tool."""
    settings = settings or get_settings()
    registry = ToolRegistry()
    registry.register_all([
        StyleExtractionTool(service, settings),
        ContextSearchTool(service, settings),
        ImageGenerationTool(service, settings),
        ComplianceValidationTool(service, settings),
        PromptRefinementTool(service, settings),
        CompletionTool(),
    ])
    return registry


def apply_delta(values: Dict[str, Any], delta: StateDelta) -> None:
    """Merge one executor delta into the working copy of the state."""
    values["phase"] = transition_phase(values["phase"], delta.phase)
    if delta.style_profile is not None:
        values["style_profile"] = delta.style_profile
    if delta.current_artifact is not None:
        values["current_artifact"] = delta.current_artifact
    if delta.clear_validation_score:
        values["validation_score"] = None
    if delta.validation_score is not None:
        values["validation_score"] = delta.validation_score
    if delta.last_prompt:
        values["last_prompt"] = delta.last_prompt
    values["attempts"] += delta.attempts_used


def reserve_attempts(calls: Sequence[ToolCallRequest], view: AgentStateView) -> List[AgentStateView]:
    """
    One view per call. Each generate_image call sees the attempts already
    claimed by earlier generate_image calls in the same batch, so a batch can
    never run more generations than the attempt budget allows.
    """
    views = []
    claimed = 0
    for call in calls:
        if call.name == ImageGenerationTool.name:
            views.append(view.model_copy(update={"attempts": view.attempts + claimed}))
            claimed += 1
        else:
            views.append(view)
    return views


def next_step_directive(values: Dict[str, Any], max_attempts: int, threshold: float) -> str:
    """Short hint appended to each batch of tool results."""
    attempts = values["attempts"]
    score = values["validation_score"]
    budget = f"Attempts used: {attempts}/{max_attempts}."

    if values["phase"] == AgentPhase.COMPLETE:
        return budget
    if values["current_artifact"] is None:
        if attempts >= max_attempts:
            return f"{budget} No attempts left. Call complete_task with success=false."
        if values["style_profile"] is None:
            return f"{budget} Next: call analyze_canvas, then generate_image."
        return f"{budget} Next: call generate_image."
    if score is None:
        return f"{budget} Next: call audit_compliance on the new image."
    if score >= threshold:
        return f"{budget} The image passed the audit (score {score:.0f}). Call complete_task with success=true."
    if attempts < max_attempts:
        return (
            f"{budget} The audit failed (score {score:.0f}, need {threshold:.0f}). "
            "Call refine_prompt, then generate_image with the refined prompt."
        )
    return f"{budget} No attempts left. Call complete_task."


def _is_aborted(config: Optional[RunnableConfig]) -> bool:
    event = ((config or {}).get("configurable") or {}).get("abort_event")
    return event is not None and event.is_set()


def _reporter(config: Optional[RunnableConfig]) -> ProgressReporter:
    return ((config or {}).get("configurable") or {}).get("reporter") or ProgressReporter()


def _aborted_outcome() -> RunOutcome:
    return RunOutcome(StopReason.ABORTED, False, "Run aborted by caller")


# ============ Router Functions ============

def route_after_model(state: AgentState) -> Literal["tools", "end"]:
    return "end" if state.get("outcome") else "tools"


def route_after_tools(state: AgentState) -> Literal["model", "end"]:
    return "end" if state.get("outcome") else "model"


class AgentOrchestrator:
    """
    Owns the compiled graph and its collaborators.

    One orchestrator can serve many runs; per-run inputs (progress
    reporter, abort flag) travel in the LangGraph config.
    """

    def __init__(
        self,
        service: Optional[GeminiService] = None,
        registry: Optional[ToolRegistry] = None,
        settings: Optional[Settings] = None,
        artifact_store: Optional[ArtifactStore] = None,
        turn_policy: Optional[BackoffPolicy] = None,
    ):
        self.settings = settings or get_settings()
        self.service = service or GeminiService()
        self.registry = registry or create_tool_registry(self.service, self.settings)
        self.artifact_store = artifact_store if artifact_store is not None else ArtifactStore()
        self.turn_policy = turn_policy or BackoffPolicy.from_settings(
            self.settings, self.settings.turn_retry_attempts
        )
        self.tools = self.registry.function_declarations()
        self.app = self.create_graph().compile()

    def create_graph(self) -> StateGraph:
        graph = StateGraph(AgentState)

        graph.add_node("model", self.model_node)
        graph.add_node("tools", self.tools_node)

        graph.set_entry_point("model")
        graph.add_conditional_edges("model", route_after_model, {"tools": "tools", "end": END})
        graph.add_conditional_edges("tools", route_after_tools, {"model": "model", "end": END})
        return graph

    # ============ Nodes ============

    async def model_node(self, state: AgentState, config: RunnableConfig) -> dict:
        """Exchange one turn with the agent model."""
        if _is_aborted(config):
            return {"outcome": _aborted_outcome()}

        turn_number = state["turns"] + 1
        if turn_number > self.settings.max_iterations:
            return {"outcome": self._limit_outcome(state, StopReason.ITERATION_LIMIT)}

        logger.info("[Agent] Turn %d (phase=%s, attempts=%d)", turn_number, state["phase"].value, state["attempts"])
        try:
            response = await self.turn_policy.run(
                lambda: self.service.send_turn(state["contents"], self.tools, SYSTEM_INSTRUCTION),
                label=f"agent turn {turn_number}",
                timeout=self.settings.text_timeout_seconds,
            )
        except Exception as e:
            if state["current_artifact"] is not None:
                logger.warning("[Agent] Model unreachable, returning latest image: %s", e)
                return {
                    "turns": turn_number,
                    "outcome": RunOutcome(
                        StopReason.DEGRADED,
                        True,
                        f"Agent was interrupted after {state['attempts']} attempt(s) ({e}). "
                        "Returning the latest generated image.",
                    ),
                }
            raise TurnExchangeError(f"Agent turn {turn_number} failed: {e}", history=list(state["history"])) from e

        if _is_aborted(config):
            return {"turns": turn_number, "outcome": _aborted_outcome()}

        turn = parse_turn(response)
        update: Dict[str, Any] = {
            "turns": turn_number,
            "pending_calls": turn.calls,
            "pending_reasoning": turn.reasoning_text,
        }
        if turn.content is not None:
            update["contents"] = [turn.content]

        if not turn.calls:
            logger.info("[Agent] No tool calls in turn %d, stopping", turn_number)
            update["outcome"] = RunOutcome(
                StopReason.NO_TOOL_CALLS,
                state["current_artifact"] is not None,
                turn.text or "Agent stopped without completing the task",
            )
        return update

    async def tools_node(self, state: AgentState, config: RunnableConfig) -> dict:
        """Dispatch the pending calls and merge their results."""
        calls: List[ToolCallRequest] = list(state["pending_calls"])
        limit = self.settings.max_tool_calls_per_turn
        dispatched, skipped = calls[:limit], calls[limit:]
        if skipped:
            logger.warning("[Tools] %d call(s) over the per-turn limit of %d skipped", len(skipped), limit)

        if _is_aborted(config):
            return {"outcome": _aborted_outcome()}

        base = max((a.sequence_number for a in state["history"]), default=0)
        sequence_numbers = [base + i + 1 for i in range(len(dispatched))]
        views = reserve_attempts(dispatched, AgentStateView.from_state(state))
        logger.info(
            "[Tools] Dispatching %s",
            ", ".join(f"#{n} {c.name}" for n, c in zip(sequence_numbers, dispatched)),
        )

        results = await asyncio.gather(*(self._dispatch(call, view) for call, view in zip(dispatched, views)))

        if _is_aborted(config):
            logger.info("[Tools] Aborted during dispatch; discarding batch")
            return {"outcome": _aborted_outcome()}

        reporter = _reporter(config)
        values = {
            key: state[key]
            for key in ("phase", "style_profile", "current_artifact", "current_artifact_ref",
                        "validation_score", "last_prompt", "attempts")
        }
        actions: List[AgentAction] = []
        payloads: List[Dict[str, Any]] = []
        completion: Optional[ToolResult] = None

        for number, call, (result, delta) in zip(sequence_numbers, dispatched, results):
            reference = None
            if delta.current_artifact is not None:
                reference = self.artifact_store.put(delta.current_artifact)
                values["current_artifact_ref"] = reference
            apply_delta(values, delta)

            payload = result.to_model_payload()
            if call.name == "complete_task" and result.success:
                reference = values["current_artifact_ref"]
                payload["has_artifact"] = values["current_artifact"] is not None
                payload["artifact_reference"] = reference
                if completion is None:
                    completion = result

            action = AgentAction(
                sequence_number=number,
                turn=state["turn_offset"] + state["turns"],
                tool_name=call.name,
                input_args=call.args,
                output_result=payload,
                reasoning_text=state["pending_reasoning"],
                continuation_token=encode_token(call.signature),
                artifact_reference=reference,
            )
            actions.append(action)
            payloads.append(payload)
            reporter.on_action(action)

        for call in skipped:
            payloads.append({
                "success": False,
                "status": "skipped",
                "error": f"Too many tool calls in one turn; the limit is {limit}.",
            })

        max_attempts = state["max_attempts"]
        threshold = self.settings.pass_threshold
        directive = next_step_directive(values, max_attempts, threshold)
        update: Dict[str, Any] = {
            **values,
            "history": actions,
            "contents": [build_response_message(dispatched + skipped, payloads, directive)],
            "pending_calls": [],
            "pending_reasoning": None,
        }

        if completion is not None:
            update["outcome"] = RunOutcome(
                StopReason.COMPLETED,
                bool(completion.data.get("task_success")),
                completion.data.get("message") or "Task complete",
            )
        elif (
            values["attempts"] >= max_attempts
            and values["validation_score"] is not None
            and values["validation_score"] < threshold
        ):
            update["outcome"] = self._limit_outcome({**state, **values}, StopReason.ATTEMPT_LIMIT)
        elif state["turns"] >= self.settings.max_iterations:
            update["outcome"] = self._limit_outcome({**state, **values}, StopReason.ITERATION_LIMIT)
        return update

    async def _dispatch(self, call: ToolCallRequest, view: AgentStateView) -> Tuple[ToolResult, StateDelta]:
        executor = self.registry.get(call.name)
        if executor is None:
            return ToolResult.hard_failure(f"Unknown tool: {call.name}"), StateDelta()
        if call.name == ImageGenerationTool.name and view.attempts >= view.max_attempts:
            return attempt_limit_result(view.attempts, view.max_attempts), StateDelta()
        try:
            args = self.registry.validate_args(call.name, call.args)
        except ValidationError as e:
            return ToolResult.soft_failure(f"Invalid arguments for {call.name}: {e}"), StateDelta()
        try:
            return await executor.execute(args, view)
        except Exception as e:
            logger.exception("[Tools] %s raised", call.name)
            return ToolResult.hard_failure(f"{call.name} failed: {e}"), StateDelta()

    def _limit_outcome(self, state: Dict[str, Any], reason: StopReason) -> RunOutcome:
        score = state.get("validation_score")
        best = f" Latest score: {score:.0f}." if score is not None else ""
        has_image = state.get("current_artifact") is not None
        label = "Attempt limit" if reason == StopReason.ATTEMPT_LIMIT else "Iteration limit"
        message = f"{label} reached after {state['attempts']} attempt(s).{best}"
        if has_image:
            message += " Returning the latest generated image."
        return RunOutcome(reason, has_image, message)

    # ============ Execution ============

    @traceable(name="brandforge_agent_run", run_type="chain", tags=["agent", "langgraph"])
    async def run(
        self,
        goal: str,
        input_artifacts: Sequence[InputArtifact] = (),
        cached_profile: Optional[StyleProfile] = None,
        prior_history: Optional[Sequence[AgentAction]] = None,
        reporter: Optional[ProgressReporter] = None,
        abort_event: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """
        Run the agent until it completes or a ceiling is reached.

        Args:
            goal: The caller's request
            input_artifacts: Moodboard items
            cached_profile: Style profile remembered from an earlier session
            prior_history: Actions of an earlier run to resume from
            reporter: Receives one event per action plus a terminal event
            abort_event: Set to stop the run at the next checkpoint

        Raises:
            TurnExchangeError: the model was unreachable before any image existed
        """
        reporter = reporter or ProgressReporter(max_string_length=self.settings.progress_max_string_length)
        max_attempts = self.settings.max_attempts

        if prior_history:
            state = hydrate_state(goal, list(input_artifacts), list(prior_history), cached_profile, max_attempts)
            state["current_artifact"] = self.artifact_store.get(state["current_artifact_ref"])
            if state["current_artifact"] is None:
                state["current_artifact_ref"] = None
            conversation = Conversation.from_history(goal, input_artifacts, prior_history, cached_profile)
        else:
            state = create_initial_state(goal, list(input_artifacts), cached_profile, max_attempts)
            conversation = Conversation.start(goal, input_artifacts, cached_profile)
        state["contents"] = conversation.contents

        config = {
            "recursion_limit": self.settings.max_iterations * 2 + 5,
            "configurable": {"reporter": reporter, "abort_event": abort_event},
        }
        try:
            final = await self.app.ainvoke(state, config=config)
        except TurnExchangeError as e:
            reporter.on_error(e)
            raise

        outcome = final.get("outcome") or self._limit_outcome(final, StopReason.ITERATION_LIMIT)
        result = RunResult(
            success=outcome.success,
            message=outcome.message,
            history=final["history"],
            artifact=final["current_artifact"],
            artifact_reference=final["current_artifact_ref"],
            profile=final["style_profile"],
            stop_reason=outcome.stop_reason,
        )
        logger.info(
            "[Agent] Finished: %s (success=%s, actions=%d)",
            result.stop_reason.value, result.success, len(result.history),
        )
        reporter.on_complete(result)
        return result


async def run(
    goal: str,
    input_artifacts: Sequence[InputArtifact] = (),
    cached_profile: Optional[StyleProfile] = None,
    prior_history: Optional[Sequence[AgentAction]] = None,
    reporter: Optional[ProgressReporter] = None,
    abort_event: Optional[asyncio.Event] = None,
    orchestrator: Optional[AgentOrchestrator] = None,
) -> RunResult:
    """Run the agent with a default orchestrator unless one is given."""
    orchestrator = orchestrator or AgentOrchestrator()
    return await orchestrator.run(
        goal,
        input_artifacts,
        cached_profile=cached_profile,
        prior_history=prior_history,
        reporter=reporter,
        abort_event=abort_event,
    )
