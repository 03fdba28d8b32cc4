"""
Style Extraction Tool

Analyzes the caller's reference material (images, notes, color swatches)
and extracts the brand's style profile.

Images are verified with Pillow before they are sent; unreadable images are
reported back, never dropped silently. With zero usable images the tool
returns the documented default profile without calling Gemini.
FULLY TRACED with LangSmith.
"""

import json
import logging
from typing import List, Optional, Sequence, Tuple

from langsmith import traceable
from pydantic import BaseModel, Field

from brandforge.config import Settings, get_settings
from brandforge.core.artifacts import decode_base64_image
from brandforge.core.backoff import BackoffPolicy
from brandforge.core.exceptions import MalformedResponseError
from brandforge.core.gemini_service import GeminiService
from brandforge.core.normalization import normalize_style_profile, parse_model_json
from brandforge.models.schemas import (
    ArtifactKind,
    InputArtifact,
    StateDelta,
    StyleProfile,
    ToolResult,
    default_style_profile,
)
from brandforge.models.state import AgentPhase, AgentStateView
from brandforge.tools.base import ToolExecutor


logger = logging.getLogger(__name__)


STYLE_EXTRACTION_PROMPT = """You are the Brand Constitution Architect.
Analyze the attached moodboard images and the elements listed below, and
extract the brand DNA.

OUTPUT ONLY VALID JSON:
{{
  "visual_identity": {{
    "color_palette_hex": ["#HEX1", "#HEX2"],
    "photography_style": "description",
    "forbidden_elements": ["element1", "element2"]
  }},
  "voice": {{
    "tone": "description",
    "keywords": ["keyword1", "keyword2"]
  }},
  "risk_thresholds": {{
    "nudity": "STRICT_ZERO_TOLERANCE",
    "political": "STRICT_ZERO_TOLERANCE"
  }}
}}
{focus}
CANVAS ELEMENTS:
{context}
"""


class AnalyzeCanvasInput(BaseModel):
    focus: Optional[str] = Field(
        default=None,
        description="Optional aspect of the brand to pay special attention to",
    )


def describe_artifacts(artifacts: Sequence[InputArtifact]) -> str:
    """One line per artifact; image payloads are referenced, not inlined."""
    lines = []
    for artifact in artifacts:
        if artifact.kind == ArtifactKind.IMAGE:
            lines.append(f"[IMAGE: {artifact.name or artifact.id}]")
        elif artifact.kind == ArtifactKind.TEXT:
            lines.append(f'[NOTE: "{artifact.content}"]')
        elif artifact.kind == ArtifactKind.SWATCH:
            lines.append(f"[COLOR: {artifact.content}]")
    return "\n".join(lines)


class StyleExtractionTool(ToolExecutor):
    """
    Tool for extracting a style profile from the input artifacts.
    All remote calls are traced with LangSmith.
    """

    name = "analyze_canvas"
    description = (
        "Analyze the moodboard (reference images, notes and color swatches supplied "
        "with the request) and extract the brand style profile: palette, visual style, "
        "voice, forbidden elements and risk thresholds. Skip this if a saved profile "
        "is already available and still relevant."
    )
    input_model = AnalyzeCanvasInput
    reads = ("input_artifacts",)
    writes = ("style_profile", "phase")

    def __init__(self, service: GeminiService, settings: Optional[Settings] = None,
                 policy: Optional[BackoffPolicy] = None):
        self.service = service
        self.settings = settings or get_settings()
        self.policy = policy or BackoffPolicy.from_settings(self.settings, self.settings.tool_retry_attempts)

    @traceable(name="style_extraction_tool.execute", run_type="tool", tags=["tool", "style", "analysis"])
    async def execute(self, args: AnalyzeCanvasInput, state: AgentStateView) -> Tuple[ToolResult, StateDelta]:
        try:
            profile, skipped = await self.extract(state.input_artifacts, focus=args.focus)
        except Exception as e:
            logger.warning("[StyleExtraction] Analysis failed: %s", e)
            return (
                ToolResult.soft_failure(f"Style analysis failed: {e}", retry_suggested=True),
                StateDelta(),
            )

        result = ToolResult.ok(
            profile=profile.model_dump(),
            is_default=profile.is_default,
            skipped_images=skipped,
        )
        return result, StateDelta(style_profile=profile, phase=AgentPhase.ANALYZING.value)

    async def extract(
        self,
        artifacts: Sequence[InputArtifact],
        focus: Optional[str] = None,
    ) -> Tuple[StyleProfile, List[str]]:
        """
        Extract a style profile from input artifacts.

        Returns:
            (profile, ids of images that could not be decoded)
        """
        images: List[Tuple[bytes, str]] = []
        skipped: List[str] = []
        for artifact in artifacts:
            if artifact.kind != ArtifactKind.IMAGE:
                continue
            try:
                images.append(decode_base64_image(artifact.content))
            except ValueError as e:
                logger.warning("[StyleExtraction] Skipping image %s: %s", artifact.id, e)
                skipped.append(artifact.id)

        if not images:
            logger.info("[StyleExtraction] No usable images (%d skipped); using default profile", len(skipped))
            return default_style_profile(), skipped

        prompt = STYLE_EXTRACTION_PROMPT.format(
            focus=f"\nFOCUS: {focus}\n" if focus else "",
            context=describe_artifacts(artifacts),
        )
        response_text = await self.policy.run(
            lambda: self.service.generate_json(prompt, images),
            label="style extraction",
            timeout=self.settings.text_timeout_seconds,
        )

        try:
            raw = parse_model_json(response_text)
        except MalformedResponseError as e:
            logger.warning("[StyleExtraction] Unparseable profile response (%s); using default profile", e)
            return default_style_profile(), skipped

        profile = normalize_style_profile(raw)
        logger.info(
            "[StyleExtraction] Profile extracted: %d colors, default=%s",
            len(profile.palette), profile.is_default,
        )
        logger.debug("[StyleExtraction] %s", json.dumps(profile.model_dump())[:500])
        return profile, skipped
