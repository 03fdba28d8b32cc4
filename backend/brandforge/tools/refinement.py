"""
Prompt Refinement Tool

Rewrites a generation prompt using audit feedback. Pure text transform:
the only state it touches is the phase (and the remembered prompt).
"""

import logging
from typing import List, Optional, Tuple

from langsmith import traceable
from pydantic import BaseModel, Field

from brandforge.config import Settings, get_settings
from brandforge.core.backoff import BackoffPolicy, is_transient_error
from brandforge.core.gemini_service import GeminiService
from brandforge.models.schemas import StateDelta, ToolResult
from brandforge.models.state import AgentPhase, AgentStateView
from brandforge.tools.base import ToolExecutor


logger = logging.getLogger(__name__)


REFINE_PROMPT = """You are a prompt engineer.

ORIGINAL PROMPT: "{original}"

AUDIT FEEDBACK: {feedback}
{issues}
Rewrite the prompt to fix these issues. Output ONLY the refined prompt, nothing else."""


class RefinePromptInput(BaseModel):
    original_prompt: str = Field(..., description="The prompt used for the last generation")
    audit_feedback: str = Field(..., description="Fix instructions from the compliance audit")
    issues: Optional[List[str]] = Field(default=None, description="Specific issues found by the audit")


class PromptRefinementTool(ToolExecutor):
    name = "refine_prompt"
    description = (
        "Rewrite an image prompt so the next generation fixes the issues found by "
        "audit_compliance. Only useful after a failed audit."
    )
    input_model = RefinePromptInput
    reads = ("validation_score",)
    writes = ("phase", "last_prompt")

    def __init__(self, service: GeminiService, settings: Optional[Settings] = None,
                 policy: Optional[BackoffPolicy] = None):
        self.service = service
        self.settings = settings or get_settings()
        self.policy = policy or BackoffPolicy.from_settings(self.settings, self.settings.tool_retry_attempts)

    @traceable(name="refinement_tool.execute", run_type="tool", tags=["tool", "prompt", "refine"])
    async def execute(self, args: RefinePromptInput, state: AgentStateView) -> Tuple[ToolResult, StateDelta]:
        score = state.validation_score
        if score is not None and score >= self.settings.pass_threshold:
            return (
                ToolResult.soft_failure(
                    f"The latest image already passes the audit (score {score:.0f}). Call complete_task."
                ),
                StateDelta(),
            )

        prompt = REFINE_PROMPT.format(
            original=args.original_prompt,
            feedback=args.audit_feedback,
            issues=f"SPECIFIC ISSUES: {', '.join(args.issues)}\n" if args.issues else "",
        )
        try:
            refined = await self.policy.run(
                lambda: self.service.generate_text(prompt),
                label="prompt refinement",
                timeout=self.settings.text_timeout_seconds,
            )
        except Exception as e:
            logger.warning("[Refinement] Failed: %s", e)
            return (
                ToolResult.soft_failure(f"Prompt refinement failed: {e}", retry_suggested=is_transient_error(e)),
                StateDelta(),
            )

        refined = refined.strip().strip('"')
        if not refined:
            refined = f"{args.original_prompt}\n\nFIX: {args.audit_feedback}"

        return (
            ToolResult.ok(refined_prompt=refined),
            StateDelta(phase=AgentPhase.REFINING.value, last_prompt=refined),
        )
