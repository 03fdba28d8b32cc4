"""
Image Generation Tool

Generates a marketing image with Gemini image generation, constrained by
the style profile. Constraints the model leaves out of the call fall back
to the profile held in agent state.

Transient failures are retried with exponential backoff; once retries are
exhausted the tool returns a soft failure with `retry_suggested` instead of
raising, so the loop and the model decide what happens next.
FULLY TRACED with LangSmith.
"""

import logging
from typing import List, Literal, Optional, Tuple

from langsmith import traceable
from pydantic import BaseModel, Field

from brandforge.config import Settings, get_settings
from brandforge.core.backoff import BackoffPolicy, is_transient_error
from brandforge.core.gemini_service import GeminiService
from brandforge.models.schemas import StateDelta, StyleProfile, ToolResult
from brandforge.models.state import AgentPhase, AgentStateView
from brandforge.tools.base import ToolExecutor


logger = logging.getLogger(__name__)

AspectRatio = Literal["1:1", "16:9", "9:16", "4:3", "3:4"]


class GenerateImageInput(BaseModel):
    prompt: str = Field(..., description="What the image should show")
    style_guide: Optional[str] = Field(default=None, description="Visual style to apply")
    color_palette: Optional[List[str]] = Field(default=None, description="Hex colors to use primarily")
    forbidden_elements: Optional[List[str]] = Field(default=None, description="Elements that must not appear")
    aspect_ratio: Optional[AspectRatio] = Field(default=None, description="Output aspect ratio")


def build_enhanced_prompt(
    prompt: str,
    style_guide: Optional[str] = None,
    color_palette: Optional[List[str]] = None,
    forbidden_elements: Optional[List[str]] = None,
    profile: Optional[StyleProfile] = None,
) -> str:
    """
    Append brand constraints to a generation prompt.

    Explicit arguments win; anything omitted is taken from `profile`.
    """
    if profile is not None:
        style_guide = style_guide or profile.style_description
        color_palette = color_palette or profile.palette
        forbidden_elements = forbidden_elements or profile.forbidden_elements

    enhanced = prompt
    if style_guide:
        enhanced += f"\n\nSTYLE GUIDE: {style_guide}"
    if color_palette:
        enhanced += f"\n\nCOLOR PALETTE: Use primarily these colors: {', '.join(color_palette)}"
    if forbidden_elements:
        enhanced += f"\n\nFORBIDDEN (DO NOT INCLUDE): {', '.join(forbidden_elements)}"
    if profile is not None and profile.voice_tone:
        enhanced += f"\n\nBRAND TONE: {profile.voice_tone}"
    return enhanced


def attempt_limit_result(attempts: int, max_attempts: int) -> ToolResult:
    return ToolResult.soft_failure(
        f"Attempt limit reached ({min(attempts, max_attempts)}/{max_attempts}). "
        "Call complete_task with the best result."
    )


class ImageGenerationTool(ToolExecutor):
    """
    Tool for generating on-brand images.
    All methods are traced with LangSmith.
    """

    name = "generate_image"
    description = (
        "Generate a marketing image from a prompt. Style guide, palette and forbidden "
        "elements default to the current brand style profile when omitted. Each call "
        "uses one generation attempt."
    )
    input_model = GenerateImageInput
    reads = ("style_profile", "attempts", "max_attempts")
    writes = ("current_artifact", "attempts", "validation_score", "last_prompt", "phase")

    def __init__(self, service: GeminiService, settings: Optional[Settings] = None,
                 policy: Optional[BackoffPolicy] = None):
        self.service = service
        self.settings = settings or get_settings()
        self.policy = policy or BackoffPolicy.from_settings(self.settings, self.settings.tool_retry_attempts)

    @traceable(
        name="image_generation_tool.execute",
        run_type="tool",
        tags=["tool", "image", "generation"],
        metadata={"description": "Generate on-brand image"},
    )
    async def execute(self, args: GenerateImageInput, state: AgentStateView) -> Tuple[ToolResult, StateDelta]:
        if state.attempts >= state.max_attempts:
            return attempt_limit_result(state.attempts, state.max_attempts), StateDelta()

        enhanced = build_enhanced_prompt(
            args.prompt,
            style_guide=args.style_guide,
            color_palette=args.color_palette,
            forbidden_elements=args.forbidden_elements,
            profile=state.style_profile,
        )
        attempt = state.attempts + 1
        logger.info("[ImageGeneration] Attempt %d/%d (%d chars prompt)", attempt, state.max_attempts, len(enhanced))

        try:
            image = await self.policy.run(
                lambda: self.service.generate_image(enhanced, args.aspect_ratio),
                label="image generation",
                timeout=self.settings.image_timeout_seconds,
            )
        except Exception as e:
            transient = is_transient_error(e)
            logger.warning("[ImageGeneration] Failed (transient=%s): %s", transient, e)
            return (
                ToolResult.soft_failure(f"Image generation failed: {e}", retry_suggested=transient),
                StateDelta(),
            )

        result = ToolResult.ok(
            artifact=image,
            image_generated=True,
            attempt=attempt,
            max_attempts=state.max_attempts,
            size_bytes=len(image),
        )
        delta = StateDelta(
            current_artifact=image,
            attempts_used=1,
            clear_validation_score=True,
            last_prompt=args.prompt,
            phase=AgentPhase.GENERATING.value,
        )
        return result, delta
