"""
Shared test helpers: settings, a scripted Gemini fake and response builders.

No test talks to a real model; every remote call is served from a script.
"""

import asyncio
import base64
import io
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest
from google.genai import types
from PIL import Image

from brandforge.config import Settings
from brandforge.core.exceptions import TransientRemoteError


def make_settings(**overrides: Any) -> Settings:
    values = dict(
        google_api_key="test-key",
        serpapi_key="",
        langchain_api_key="",
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        text_timeout_seconds=5.0,
        image_timeout_seconds=5.0,
        search_timeout_seconds=5.0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def png_bytes(color=(0, 255, 204), size=(8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_base64(color=(0, 255, 204)) -> str:
    return base64.b64encode(png_bytes(color)).decode("ascii")


def model_turn(
    *calls: Tuple[str, Dict[str, Any]],
    thought: Optional[str] = None,
    text: Optional[str] = None,
    signature: Optional[bytes] = None,
) -> types.GenerateContentResponse:
    """A model response; `signature` rides on the first function call."""
    parts: List[types.Part] = []
    if thought:
        parts.append(types.Part(text=thought, thought=True))
    if text:
        parts.append(types.Part(text=text))
    for index, (name, args) in enumerate(calls):
        parts.append(types.Part(
            function_call=types.FunctionCall(name=name, args=args),
            thought_signature=signature if index == 0 else None,
        ))
    return types.GenerateContentResponse(
        candidates=[types.Candidate(content=types.Content(role="model", parts=parts))]
    )


def audit_json(score: Any, passed: Optional[bool] = None, fix: str = "Use more teal") -> str:
    payload: Dict[str, Any] = {"compliance_score": score, "fix_instructions": fix,
                               "heatmap_coordinates": [{"x": 40, "y": 60, "issue": "Off-palette background"}]}
    if passed is not None:
        payload["pass"] = passed
    return json.dumps(payload)


PROFILE_JSON = json.dumps({
    "visual_identity": {
        "color_palette_hex": ["#112233", "#AABBCC"],
        "photography_style": "Moody film photography",
        "forbidden_elements": ["clip art"],
    },
    "voice": {"tone": "Calm", "keywords": ["craft"]},
})


class FakeGeminiService:
    """
    Scripted stand-in for GeminiService.

    Args:
        turns: agent turn responses (or exceptions to raise), served in order
        audits: audit JSON strings (or exceptions), served in order
        profile: style-extraction JSON string
        image_failures: number of generate_image calls that fail first
        image_delays: per-call sleep for generate_image, in call order
    """

    def __init__(
        self,
        turns: Sequence[Any] = (),
        audits: Sequence[Any] = (),
        profile: str = PROFILE_JSON,
        image_failures: int = 0,
        image_delays: Sequence[float] = (),
        refined: str = "refined prompt",
        search_result: str = "Teal and magenta are trending",
    ):
        self.turns = list(turns)
        self.audits = list(audits)
        self.profile = profile
        self.image_failures = image_failures
        self.image_delays = list(image_delays)
        self.refined = refined
        self.search_result = search_result
        self.sent_contents: List[List[types.Content]] = []
        self.image_prompts: List[str] = []
        self.images_finished: List[str] = []
        self.text_prompts: List[str] = []
        self.json_prompts: List[str] = []
        self.edit_prompts: List[str] = []

    async def send_turn(self, contents, tools, system_instruction=None):
        self.sent_contents.append(list(contents))
        if not self.turns:
            return model_turn(text="Nothing left to do.")
        item = self.turns.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_json(self, prompt, images=()):
        self.json_prompts.append(prompt)
        if "Compliance Auditor" in prompt:
            item = self.audits.pop(0) if self.audits else audit_json(95)
            if isinstance(item, BaseException):
                raise item
            return item
        return self.profile

    async def generate_text(self, prompt):
        self.text_prompts.append(prompt)
        return self.refined

    async def generate_image(self, prompt, aspect_ratio=None):
        index = len(self.image_prompts)
        self.image_prompts.append(prompt)
        if index < len(self.image_delays):
            await asyncio.sleep(self.image_delays[index])
        if self.image_failures > 0:
            self.image_failures -= 1
            raise TransientRemoteError("No image generated in response")
        self.images_finished.append(prompt)
        return png_bytes(color=(index * 40 % 256, 255, 204))

    async def edit_image(self, image, mime_type, prompt):
        self.edit_prompts.append(prompt)
        return png_bytes(color=(255, 0, 255)), "Made the sky magenta"

    async def search_grounded(self, query):
        return self.search_result


@pytest.fixture
def settings() -> Settings:
    return make_settings()
