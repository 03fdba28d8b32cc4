"""
Tests for the tool executors

Run with: pytest backend/tests/test_tools.py -v
"""

import asyncio

from brandforge.core.exceptions import TransientRemoteError
from brandforge.models.schemas import InputArtifact, ToolStatus, default_style_profile
from brandforge.models.state import AgentPhase, AgentStateView
from brandforge.tools.completion import CompleteTaskInput, CompletionTool
from brandforge.tools.image_generation import GenerateImageInput, ImageGenerationTool, build_enhanced_prompt
from brandforge.tools.refinement import PromptRefinementTool, RefinePromptInput
from brandforge.tools.search import ContextSearchTool, SearchTrendsInput
from brandforge.tools.style_extraction import AnalyzeCanvasInput, StyleExtractionTool
from brandforge.tools.validation import AuditComplianceInput, ComplianceValidationTool

from conftest import FakeGeminiService, audit_json, make_settings, png_base64, png_bytes


def _view(**fields) -> AgentStateView:
    fields.setdefault("goal", "Summer sale poster")
    fields.setdefault("phase", AgentPhase.PLANNING)
    return AgentStateView(**fields)


# ============ Style extraction ============

def test_style_extraction_without_images_uses_default_and_skips_model():
    service = FakeGeminiService()
    tool = StyleExtractionTool(service, make_settings())
    view = _view(input_artifacts=(InputArtifact(kind="text", content="Make it pop"),))

    result, delta = asyncio.run(tool.execute(AnalyzeCanvasInput(), view))

    assert result.status == ToolStatus.SUCCESS
    assert result.data["is_default"] is True
    assert delta.style_profile == default_style_profile()
    assert service.json_prompts == []


def test_style_extraction_skips_undecodable_images():
    service = FakeGeminiService()
    tool = StyleExtractionTool(service, make_settings())
    view = _view(input_artifacts=(
        InputArtifact(id="good", kind="image", content=png_base64()),
        InputArtifact(id="bad", kind="image", content="bm90IGFuIGltYWdl"),
    ))

    result, delta = asyncio.run(tool.execute(AnalyzeCanvasInput(), view))

    assert result.data["skipped_images"] == ["bad"]
    assert delta.style_profile.palette == ["#112233", "#AABBCC"]
    assert delta.style_profile.is_default is False
    assert delta.phase == AgentPhase.ANALYZING.value


def test_style_extraction_unparseable_response_uses_default():
    service = FakeGeminiService(profile="I cannot analyze this.")
    tool = StyleExtractionTool(service, make_settings())
    view = _view(input_artifacts=(InputArtifact(kind="image", content=png_base64()),))

    _, delta = asyncio.run(tool.execute(AnalyzeCanvasInput(), view))
    assert delta.style_profile.is_default is True


# ============ Image generation ============

def test_enhanced_prompt_falls_back_to_profile():
    profile = default_style_profile()
    enhanced = build_enhanced_prompt("A sneaker ad", style_guide="Film grain", profile=profile)

    assert enhanced.startswith("A sneaker ad")
    assert "STYLE GUIDE: Film grain" in enhanced
    assert "#00FFCC, #FF00FF, #000000" in enhanced
    assert "BRAND TONE: Professional yet approachable" in enhanced


def test_image_generation_success_updates_state():
    tool = ImageGenerationTool(FakeGeminiService(), make_settings())
    view = _view(style_profile=default_style_profile(), validation_score=70.0, attempts=1)

    result, delta = asyncio.run(tool.execute(GenerateImageInput(prompt="A sneaker ad"), view))

    assert result.success and result.artifact is not None
    assert result.data["attempt"] == 2
    assert "artifact" not in result.to_model_payload()
    assert delta.current_artifact == result.artifact
    assert delta.attempts_used == 1
    assert delta.clear_validation_score is True


def test_image_generation_refused_at_attempt_limit():
    service = FakeGeminiService()
    tool = ImageGenerationTool(service, make_settings())

    result, delta = asyncio.run(tool.execute(GenerateImageInput(prompt="x"), _view(attempts=3, max_attempts=3)))

    assert result.status == ToolStatus.SOFT_FAILURE
    assert delta.attempts_used == 0
    assert service.image_prompts == []


def test_image_generation_retries_then_succeeds():
    service = FakeGeminiService(image_failures=2)
    tool = ImageGenerationTool(service, make_settings(tool_retry_attempts=3))

    result, _ = asyncio.run(tool.execute(GenerateImageInput(prompt="x"), _view()))

    assert result.success
    assert len(service.image_prompts) == 3


def test_image_generation_soft_fails_after_retries():
    service = FakeGeminiService(image_failures=5)
    tool = ImageGenerationTool(service, make_settings(tool_retry_attempts=3))

    result, delta = asyncio.run(tool.execute(GenerateImageInput(prompt="x"), _view()))

    assert result.status == ToolStatus.SOFT_FAILURE
    assert result.retry_suggested is True
    assert delta.current_artifact is None
    assert len(service.image_prompts) == 3


# ============ Validation ============

def test_audit_requires_artifact_and_profile():
    tool = ComplianceValidationTool(FakeGeminiService(), make_settings())

    no_image, _ = asyncio.run(tool.execute(AuditComplianceInput(), _view(style_profile=default_style_profile())))
    no_profile, _ = asyncio.run(tool.execute(AuditComplianceInput(), _view(current_artifact=png_bytes())))

    assert no_image.status == ToolStatus.SOFT_FAILURE
    assert "generate_image" in no_image.reason
    assert no_profile.status == ToolStatus.SOFT_FAILURE


def test_audit_score_decides_pass():
    service = FakeGeminiService(audits=[audit_json("72%", passed=True)])
    tool = ComplianceValidationTool(service, make_settings())
    view = _view(current_artifact=png_bytes(), style_profile=default_style_profile())

    result, delta = asyncio.run(tool.execute(AuditComplianceInput(), view))

    assert result.data["score"] == 72
    assert result.data["passed"] is False
    assert result.data["reported_pass"] is True
    assert result.data["issues"] == ["Off-palette background"]
    assert delta.validation_score == 72
    assert delta.phase == AgentPhase.AUDITING.value


def test_audit_without_score_is_soft_failure():
    service = FakeGeminiService(audits=['{"pass": true}'])
    tool = ComplianceValidationTool(service, make_settings())
    view = _view(current_artifact=png_bytes(), style_profile=default_style_profile())

    result, delta = asyncio.run(tool.execute(AuditComplianceInput(), view))

    assert result.status == ToolStatus.SOFT_FAILURE
    assert result.retry_suggested is True
    assert delta.validation_score is None


# ============ Refinement ============

def test_refinement_refused_after_passing_audit():
    service = FakeGeminiService()
    tool = PromptRefinementTool(service, make_settings())
    args = RefinePromptInput(original_prompt="x", audit_feedback="none")

    result, _ = asyncio.run(tool.execute(args, _view(validation_score=93.0)))

    assert result.status == ToolStatus.SOFT_FAILURE
    assert "complete_task" in result.reason
    assert service.text_prompts == []


def test_refinement_rewrites_prompt():
    service = FakeGeminiService(refined='"A teal sneaker ad on black"')
    tool = PromptRefinementTool(service, make_settings())
    args = RefinePromptInput(original_prompt="A sneaker ad", audit_feedback="Use teal", issues=["Wrong color"])

    result, delta = asyncio.run(tool.execute(args, _view(validation_score=60.0)))

    assert result.data["refined_prompt"] == "A teal sneaker ad on black"
    assert "Wrong color" in service.text_prompts[0]
    assert delta.phase == AgentPhase.REFINING.value


def test_refinement_empty_response_keeps_original_with_fix():
    tool = PromptRefinementTool(FakeGeminiService(refined="  "), make_settings())
    args = RefinePromptInput(original_prompt="A sneaker ad", audit_feedback="Use teal")

    result, _ = asyncio.run(tool.execute(args, _view(validation_score=60.0)))
    assert result.data["refined_prompt"] == "A sneaker ad\n\nFIX: Use teal"


# ============ Search ============

def test_search_uses_grounding_without_serpapi_key():
    tool = ContextSearchTool(FakeGeminiService(), make_settings())
    result, delta = asyncio.run(tool.execute(SearchTrendsInput(query="teal"), _view()))

    assert result.data == {"search_results": "Teal and magenta are trending", "found": True}
    assert delta.phase is None


def test_search_failure_degrades_to_empty_summary():
    class BrokenSearch(FakeGeminiService):
        async def search_grounded(self, query):
            raise ConnectionError("offline")

    tool = ContextSearchTool(BrokenSearch(), make_settings())
    result, _ = asyncio.run(tool.execute(SearchTrendsInput(query="teal"), _view()))

    assert result.success
    assert result.data["found"] is False


def test_search_retries_transient_failure_then_succeeds():
    class FlakySearch(FakeGeminiService):
        calls = 0

        async def search_grounded(self, query):
            FlakySearch.calls += 1
            if FlakySearch.calls == 1:
                raise TransientRemoteError("503 Service Unavailable")
            return "Teal is back"

    tool = ContextSearchTool(FlakySearch(), make_settings())
    result, _ = asyncio.run(tool.execute(SearchTrendsInput(query="teal"), _view()))

    assert FlakySearch.calls == 2
    assert result.data == {"search_results": "Teal is back", "found": True}


# ============ Completion ============

def test_completion_references_state_artifact_not_echo():
    tool = CompletionTool()
    args = CompleteTaskInput(success=True, message="Done", final_image="[IMAGE]")
    view = _view(current_artifact=png_bytes(), current_artifact_ref="artifact_abc")

    result, delta = asyncio.run(tool.execute(args, view))

    assert result.data["artifact_reference"] == "artifact_abc"
    assert result.data["has_artifact"] is True
    assert delta.phase == AgentPhase.COMPLETE.value
