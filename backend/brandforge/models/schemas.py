"""
BrandForge - Pydantic Schemas

Data model shared by the agent loop, the tool executors and the API:
style profiles, input artifacts, tool results, actions and run results.
"""

import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============ Style Profile ============

DEFAULT_RISK_THRESHOLDS: Dict[str, str] = {
    "nudity": "STRICT_ZERO_TOLERANCE",
    "political": "STRICT_ZERO_TOLERANCE",
}


class StyleProfile(BaseModel):
    """Extracted visual and verbal style constraints of a brand."""

    palette: List[str] = Field(default_factory=list, description="Hex color codes, e.g. '#00FFCC'")
    style_description: str = Field(default="", description="Photography / visual style")
    voice_tone: str = Field(default="", description="Overall tone of the brand voice")
    voice_keywords: List[str] = Field(default_factory=list)
    forbidden_elements: List[str] = Field(default_factory=list)
    risk_thresholds: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_RISK_THRESHOLDS))
    is_default: bool = Field(default=False, description="True when built from the fixed default profile")

    def to_prompt_block(self) -> str:
        """Render the profile as prompt constraints for generation."""
        return (
            f"STYLE: {self.style_description}\n"
            f"COLORS: {', '.join(self.palette) or 'Any'}\n"
            f"TONE: {self.voice_tone}\n"
            f"FORBIDDEN: {', '.join(self.forbidden_elements) or 'None'}"
        )


def default_style_profile() -> StyleProfile:
    """The documented fallback profile used when no usable input exists."""
    return StyleProfile(
        palette=["#00FFCC", "#FF00FF", "#000000"],
        style_description="Modern, bold, high contrast",
        voice_tone="Professional yet approachable",
        voice_keywords=["Innovation", "Quality"],
        forbidden_elements=[],
        risk_thresholds=dict(DEFAULT_RISK_THRESHOLDS),
        is_default=True,
    )


# ============ Input Artifacts ============

class ArtifactKind(str, Enum):
    IMAGE = "image"
    TEXT = "text"
    SWATCH = "swatch"


class InputArtifact(BaseModel):
    """A caller-supplied reference item (image, note or color swatch)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    kind: ArtifactKind
    content: str = Field(..., description="Base64/data URL for images, text for notes, hex for swatches")
    name: Optional[str] = None


# ============ Validation ============

class ValidationIssue(BaseModel):
    """A located compliance issue (coordinates are percentages 0-100)."""

    x: Optional[float] = None
    y: Optional[float] = None
    description: str
    severity: Literal["low", "medium", "high"] = "medium"


class ValidationReport(BaseModel):
    """Normalized compliance audit of one artifact."""

    score: float = Field(..., ge=0, le=100)
    passed: bool
    reported_pass: Optional[bool] = Field(default=None, description="Advisory pass flag reported by the model")
    issues: List[ValidationIssue] = Field(default_factory=list)
    fix_instructions: str = ""


# ============ Tool Results ============

class ToolStatus(str, Enum):
    SUCCESS = "success"
    SOFT_FAILURE = "soft_failure"
    HARD_FAILURE = "hard_failure"


class ToolResult(BaseModel):
    """
    Outcome of one tool execution.

    The binary artifact (if any) rides along for the loop but is excluded
    from every serialization, so it never reaches the model or the history.
    """

    status: ToolStatus
    data: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
    retry_suggested: bool = False
    artifact: Optional[bytes] = Field(default=None, exclude=True, repr=False)

    @classmethod
    def ok(cls, artifact: Optional[bytes] = None, **data: Any) -> "ToolResult":
        return cls(status=ToolStatus.SUCCESS, data=data, artifact=artifact)

    @classmethod
    def soft_failure(cls, reason: str, retry_suggested: bool = False, **data: Any) -> "ToolResult":
        return cls(status=ToolStatus.SOFT_FAILURE, reason=reason, retry_suggested=retry_suggested, data=data)

    @classmethod
    def hard_failure(cls, reason: str, **data: Any) -> "ToolResult":
        return cls(status=ToolStatus.HARD_FAILURE, reason=reason, data=data)

    @property
    def success(self) -> bool:
        return self.status == ToolStatus.SUCCESS

    def to_model_payload(self, max_text: int = 500) -> Dict[str, Any]:
        """Compact summary echoed back to the model: flag, scores, short text."""
        payload: Dict[str, Any] = {"success": self.success, "status": self.status.value}
        if self.reason:
            payload["error"] = self.reason[:max_text]
        if self.retry_suggested:
            payload["retry_suggested"] = True
        for key, value in self.data.items():
            if isinstance(value, (bytes, bytearray)):
                continue
            if isinstance(value, str) and len(value) > max_text:
                value = value[:max_text] + "..."
            payload[key] = value
        return payload


class StateDelta(BaseModel):
    """Changes an executor asks the loop to apply to AgentState."""

    phase: Optional[str] = None
    style_profile: Optional[StyleProfile] = None
    current_artifact: Optional[bytes] = Field(default=None, exclude=True, repr=False)
    validation_score: Optional[float] = None
    clear_validation_score: bool = False
    attempts_used: int = 0
    last_prompt: Optional[str] = None


# ============ Actions & Results ============

class AgentAction(BaseModel):
    """One record per tool invocation. Immutable once appended to history."""

    model_config = ConfigDict(frozen=True)

    sequence_number: int
    turn: int
    tool_name: str
    input_args: Dict[str, Any] = Field(default_factory=dict)
    output_result: Dict[str, Any] = Field(default_factory=dict)
    reasoning_text: Optional[str] = None
    continuation_token: Optional[str] = Field(default=None, description="Base64 of the opaque signature")
    artifact_reference: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class StopReason(str, Enum):
    COMPLETED = "completed"
    NO_TOOL_CALLS = "no_tool_calls"
    ITERATION_LIMIT = "iteration_limit"
    ATTEMPT_LIMIT = "attempt_limit"
    DEGRADED = "degraded"
    ABORTED = "aborted"


class RunResult(BaseModel):
    """Final bundle of one agent run."""

    success: bool
    message: str
    history: List[AgentAction] = Field(default_factory=list)
    artifact: Optional[bytes] = Field(default=None, exclude=True, repr=False)
    artifact_reference: Optional[str] = None
    profile: Optional[StyleProfile] = None
    stop_reason: StopReason


# ============ API Requests / Responses ============

class AgentRunRequest(BaseModel):
    """Request body for POST /agent."""

    prompt: str = Field(..., min_length=1)
    canvas_elements: List[InputArtifact] = Field(default_factory=list)
    saved_profile: Optional[StyleProfile] = None
    profile_key: Optional[str] = Field(default=None, description="Brand id for the style-profile cache")
    prior_history: Optional[List[AgentAction]] = None


class ConstitutionRequest(BaseModel):
    """Request body for POST /agent/constitution."""

    elements: List[InputArtifact] = Field(..., min_length=1)
    profile_key: Optional[str] = None


class ConstitutionResponse(BaseModel):
    profile: StyleProfile
    skipped_images: List[str] = Field(default_factory=list)


class AuditRequest(BaseModel):
    """Request body for POST /agent/audit."""

    image_base64: str = Field(..., min_length=1)
    profile: StyleProfile


class GenerateRequest(BaseModel):
    """Request body for POST /generate."""

    prompt: str = Field(..., min_length=1)
    profile: StyleProfile
    aspect_ratio: Optional[str] = "1:1"


class GenerateResponse(BaseModel):
    enhanced_prompt: str
    image_base64: str
    artifact_reference: str
    message: str


class EditRequest(BaseModel):
    """Request body for POST /ai-edit."""

    image_base64: str = Field(..., min_length=1)
    edit_prompt: str = Field(..., min_length=1)
    thought_signature: Optional[str] = Field(
        default=None,
        description="Opaque token from the previous edit, echoed back for multi-turn editing",
    )


class EditResponse(BaseModel):
    image_base64: str
    artifact_reference: str
    text: Optional[str] = None
    thought_signature: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    message: Optional[str] = None
