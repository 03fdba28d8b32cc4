"""
Compliance Validation Tool

Audits the latest generated image against the style profile and scores it
0-100. The numeric pass threshold is authoritative; the pass flag reported
by the model is kept only as advice.

Preconditions (an image and a profile must exist) are reported back to the
model as soft failures so it can self-correct.
FULLY TRACED with LangSmith.
"""

import json
import logging
from typing import Optional, Tuple

from langsmith import traceable
from pydantic import BaseModel, Field

from brandforge.config import Settings, get_settings
from brandforge.core.artifacts import sniff_mime_type
from brandforge.core.backoff import BackoffPolicy, is_transient_error
from brandforge.core.exceptions import MalformedResponseError
from brandforge.core.gemini_service import GeminiService
from brandforge.core.normalization import normalize_validation_report, parse_model_json
from brandforge.models.schemas import StateDelta, StyleProfile, ToolResult, ValidationReport
from brandforge.models.state import AgentPhase, AgentStateView
from brandforge.tools.base import ToolExecutor


logger = logging.getLogger(__name__)


AUDIT_PROMPT = """You are the Brand Compliance Auditor.

BRAND STYLE PROFILE:
{profile}
{focus}
Audit the attached image against the brand guidelines.

OUTPUT ONLY VALID JSON:
{{
  "compliance_score": 0-100,
  "pass": true/false (true if score >= {threshold:.0f}),
  "heatmap_coordinates": [{{"x": 0-100, "y": 0-100, "issue": "description"}}],
  "fix_instructions": "how to fix issues"
}}"""


class AuditComplianceInput(BaseModel):
    focus: Optional[str] = Field(
        default=None,
        description="Optional aspect to check with extra care (e.g. 'logo colors')",
    )


class ComplianceValidationTool(ToolExecutor):
    """
    Tool for auditing generated images against the style profile.
    All methods are traced with LangSmith.
    """

    name = "audit_compliance"
    description = (
        "Audit the most recently generated image against the brand style profile. "
        "Returns a 0-100 compliance score, pass/fail, located issues and fix "
        "instructions. Requires a generated image and a style profile."
    )
    input_model = AuditComplianceInput
    reads = ("current_artifact", "style_profile")
    writes = ("validation_score", "phase")

    def __init__(self, service: GeminiService, settings: Optional[Settings] = None,
                 policy: Optional[BackoffPolicy] = None):
        self.service = service
        self.settings = settings or get_settings()
        self.policy = policy or BackoffPolicy.from_settings(self.settings, self.settings.tool_retry_attempts)

    @property
    def threshold(self) -> float:
        return self.settings.pass_threshold

    @traceable(name="validation_tool.execute", run_type="tool", tags=["tool", "audit", "compliance"])
    async def execute(self, args: AuditComplianceInput, state: AgentStateView) -> Tuple[ToolResult, StateDelta]:
        if state.current_artifact is None:
            return ToolResult.soft_failure("No generated image to audit. Call generate_image first."), StateDelta()
        if state.style_profile is None:
            return ToolResult.soft_failure("No style profile available. Call analyze_canvas first."), StateDelta()

        try:
            report = await self.audit(state.current_artifact, state.style_profile, focus=args.focus)
        except MalformedResponseError as e:
            logger.warning("[Validation] Malformed audit response: %s", e)
            return ToolResult.soft_failure(f"Audit response unusable: {e}", retry_suggested=True), StateDelta()
        except Exception as e:
            logger.warning("[Validation] Audit failed: %s", e)
            return (
                ToolResult.soft_failure(f"Audit failed: {e}", retry_suggested=is_transient_error(e)),
                StateDelta(),
            )

        logger.info("[Validation] Score %.1f (threshold %.0f) passed=%s", report.score, self.threshold, report.passed)
        result = ToolResult.ok(
            score=report.score,
            passed=report.passed,
            threshold=self.threshold,
            reported_pass=report.reported_pass,
            issues=[issue.description for issue in report.issues],
            fix_instructions=report.fix_instructions,
        )
        return result, StateDelta(validation_score=report.score, phase=AgentPhase.AUDITING.value)

    async def audit(self, image: bytes, profile: StyleProfile, focus: Optional[str] = None) -> ValidationReport:
        """
        Score one image against a profile.

        Raises:
            MalformedResponseError: no score could be recovered from the response
        """
        prompt = AUDIT_PROMPT.format(
            profile=json.dumps(profile.model_dump(exclude={"is_default"}), indent=2),
            focus=f"\nFOCUS: {focus}\n" if focus else "",
            threshold=self.threshold,
        )
        response_text = await self.policy.run(
            lambda: self.service.generate_json(prompt, [(image, sniff_mime_type(image))]),
            label="compliance audit",
            timeout=self.settings.text_timeout_seconds,
        )
        return normalize_validation_report(parse_model_json(response_text), self.threshold)
