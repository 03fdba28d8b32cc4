"""
Completion Tool

Declares the task finished. The final bundle always points at the artifact
held in agent state; whatever image string the model echoes back is a
placeholder and is ignored.
"""

from typing import Optional, Tuple

from pydantic import BaseModel, Field

from brandforge.models.schemas import StateDelta, ToolResult
from brandforge.models.state import AgentPhase, AgentStateView
from brandforge.tools.base import ToolExecutor


class CompleteTaskInput(BaseModel):
    success: bool = Field(..., description="Whether the goal was achieved")
    message: str = Field(..., description="Short summary for the user")
    final_image: Optional[str] = Field(
        default=None,
        description="Not needed: the latest generated image is attached automatically",
    )


class CompletionTool(ToolExecutor):
    name = "complete_task"
    description = (
        "Finish the task. Call once the image passes the audit, or when attempts are "
        "exhausted, with success=false if the goal was not met."
    )
    input_model = CompleteTaskInput
    reads = ("current_artifact",)
    writes = ("phase",)

    async def execute(self, args: CompleteTaskInput, state: AgentStateView) -> Tuple[ToolResult, StateDelta]:
        result = ToolResult.ok(
            task_success=args.success,
            message=args.message,
            has_artifact=state.current_artifact is not None,
            artifact_reference=state.current_artifact_ref,
        )
        return result, StateDelta(phase=AgentPhase.COMPLETE.value)
