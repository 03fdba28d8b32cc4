"""
Agent Routes

POST /agent              - Run the autonomous agent, streamed as Server-Sent Events
POST /agent/constitution - Extract a brand style profile from a moodboard
POST /agent/audit        - Audit one image against a style profile
POST /generate           - Single profile-enhanced image generation
POST /ai-edit            - Edit an image with a text instruction
GET  /agent/artifacts/id - Download a generated image by reference

FULLY TRACED with LangSmith.
"""

import asyncio
import base64
import logging
import time
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response, StreamingResponse
from langsmith import traceable

from brandforge.agents.graph import AgentOrchestrator
from brandforge.agents.progress import ProgressReporter, format_sse
from brandforge.config import get_settings
from brandforge.core.artifacts import decode_base64_image, sniff_mime_type
from brandforge.core.exceptions import InvalidImageError, TurnExchangeError
from brandforge.core.profile_cache import InMemoryProfileCache, StyleProfileCache
from brandforge.models.schemas import (
    AgentRunRequest,
    AuditRequest,
    ConstitutionRequest,
    ConstitutionResponse,
    EditRequest,
    EditResponse,
    GenerateRequest,
    GenerateResponse,
    StyleProfile,
    ValidationReport,
)
from brandforge.tools.image_generation import build_enhanced_prompt


logger = logging.getLogger(__name__)
router = APIRouter(tags=["Agent"])

DISCONNECT_POLL_SECONDS = 1.0


@lru_cache()
def get_orchestrator() -> AgentOrchestrator:
    """Shared orchestrator; its artifact store backs the download endpoint."""
    return AgentOrchestrator()


@lru_cache()
def get_profile_cache() -> StyleProfileCache:
    return InMemoryProfileCache()


def _resolve_profile(saved: Optional[StyleProfile], key: Optional[str], cache: StyleProfileCache) -> Optional[StyleProfile]:
    if saved is not None:
        return saved
    if key:
        return cache.get(key)
    return None


@router.post("/agent")
async def run_agent(
    request: AgentRunRequest,
    http_request: Request,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
    cache: StyleProfileCache = Depends(get_profile_cache),
) -> StreamingResponse:
    """
    Run the agent loop and stream its progress.

    Events: `start`, one `action` per tool call, then `complete` or `error`.
    The run is aborted if the client disconnects.
    """
    settings = get_settings()
    queue: asyncio.Queue = asyncio.Queue()
    reporter = ProgressReporter(queue=queue, max_string_length=settings.progress_max_string_length)
    abort_event = asyncio.Event()
    cached_profile = _resolve_profile(request.saved_profile, request.profile_key, cache)

    async def run_in_background() -> None:
        try:
            result = await orchestrator.run(
                request.prompt,
                request.canvas_elements,
                cached_profile=cached_profile,
                prior_history=request.prior_history,
                reporter=reporter,
                abort_event=abort_event,
            )
            if request.profile_key and result.profile is not None:
                cache.put(request.profile_key, result.profile)
        except TurnExchangeError as e:
            logger.error("[API] Agent run failed: %s", e)
        except Exception as e:
            logger.exception("[API] Agent run crashed")
            reporter.on_error(e)

    async def event_generator():
        yield format_sse("start", {"message": "Agent starting...", "timestamp": time.time()})
        task = asyncio.create_task(run_in_background())
        finished = False
        try:
            while True:
                try:
                    event, data = await asyncio.wait_for(queue.get(), timeout=DISCONNECT_POLL_SECONDS)
                except asyncio.TimeoutError:
                    event = None
                if event is not None:
                    yield format_sse(event, data)
                    if event in ("complete", "error"):
                        finished = True
                        break
                if await http_request.is_disconnected():
                    logger.info("[API] Client disconnected, aborting run")
                    break
        finally:
            if not finished:
                abort_event.set()
            await task

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/agent/constitution", response_model=ConstitutionResponse)
@traceable(name="constitution_endpoint", run_type="chain", tags=["api", "style"])
async def extract_constitution(
    request: ConstitutionRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
    cache: StyleProfileCache = Depends(get_profile_cache),
) -> ConstitutionResponse:
    """Extract a brand style profile from moodboard items without running the agent."""
    tool = orchestrator.registry.get("analyze_canvas")
    profile, skipped = await tool.extract(request.elements)
    if request.profile_key:
        cache.put(request.profile_key, profile)
    return ConstitutionResponse(profile=profile, skipped_images=skipped)


@router.post("/agent/audit", response_model=ValidationReport)
@traceable(name="audit_endpoint", run_type="chain", tags=["api", "audit"])
async def audit_image(
    request: AuditRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> ValidationReport:
    """Score one image against a style profile."""
    try:
        image, _ = decode_base64_image(request.image_base64)
    except ValueError as e:
        raise InvalidImageError(str(e))
    tool = orchestrator.registry.get("audit_compliance")
    return await tool.audit(image, request.profile)


@router.post("/generate", response_model=GenerateResponse)
@traceable(name="generate_endpoint", run_type="chain", tags=["api", "image"])
async def generate_image(
    request: GenerateRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> GenerateResponse:
    """Generate one image with the profile's constraints appended to the prompt."""
    settings = get_settings()
    tool = orchestrator.registry.get("generate_image")
    enhanced = build_enhanced_prompt(request.prompt, profile=request.profile)

    image = await tool.policy.run(
        lambda: orchestrator.service.generate_image(enhanced, request.aspect_ratio),
        label="single generation",
        timeout=settings.image_timeout_seconds,
    )
    reference = orchestrator.artifact_store.put(image)
    return GenerateResponse(
        enhanced_prompt=enhanced,
        image_base64=base64.b64encode(image).decode("ascii"),
        artifact_reference=reference,
        message=f"Generated image ({len(image)} bytes)",
    )


@router.post("/ai-edit", response_model=EditResponse)
@traceable(name="ai_edit_endpoint", run_type="chain", tags=["api", "image", "edit"])
async def edit_image(
    request: EditRequest,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> EditResponse:
    """
    Edit an image with a text instruction.

    The thought signature is passed straight back so the client can keep a
    multi-turn editing session going.
    """
    try:
        image, mime_type = decode_base64_image(request.image_base64)
    except ValueError as e:
        raise InvalidImageError(str(e))

    settings = get_settings()
    tool = orchestrator.registry.get("generate_image")
    edited, text = await tool.policy.run(
        lambda: orchestrator.service.edit_image(image, mime_type, request.edit_prompt),
        label="image edit",
        timeout=settings.image_timeout_seconds,
    )
    reference = orchestrator.artifact_store.put(edited)
    return EditResponse(
        image_base64=base64.b64encode(edited).decode("ascii"),
        artifact_reference=reference,
        text=text,
        thought_signature=request.thought_signature,
    )


@router.get("/agent/artifacts/{artifact_id}")
async def download_artifact(
    artifact_id: str,
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
) -> Response:
    data = orchestrator.artifact_store.get(artifact_id)
    if data is None:
        raise HTTPException(status_code=404, detail=f"Artifact {artifact_id} not found")
    return Response(content=data, media_type=sniff_mime_type(data))
