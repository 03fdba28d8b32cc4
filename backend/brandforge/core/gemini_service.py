"""
Gemini Service

Handles every call to Google Gemini: agent turns with function calling,
JSON analysis of reference material, image generation and editing, plain
text rewrites and Google Search grounding.

Each method makes exactly one attempt. Retry, backoff and timeouts are
applied by the caller through BackoffPolicy so the policy is uniform.
FULLY TRACED with LangSmith.
"""

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

from google import genai
from google.genai import types
from langsmith import traceable

from brandforge.config import get_settings
from brandforge.core.exceptions import ConfigurationError, TransientRemoteError


logger = logging.getLogger(__name__)


def get_gemini_client() -> genai.Client:
    """Create and configure Gemini client."""
    settings = get_settings()

    if not settings.google_api_key:
        raise ConfigurationError(
            "GOOGLE_API_KEY not set. Add it to your .env file:\n"
            "GOOGLE_API_KEY=your_api_key_here"
        )

    return genai.Client(api_key=settings.google_api_key)


def _extract_image(response: types.GenerateContentResponse) -> Tuple[bytes, Optional[str]]:
    """First inline image part plus the last text part, if any."""
    image = None
    text = None
    if response.candidates:
        for part in response.candidates[0].content.parts or []:
            if part.inline_data and part.inline_data.data and image is None:
                image = part.inline_data.data
            elif part.text and not part.thought:
                text = part.text
    if image is None:
        raise TransientRemoteError("No image generated in response")
    return image, text


class GeminiService:
    """
    Thin async adapter over the google-genai client.
    All methods are traced with LangSmith.
    """

    def __init__(self, client: Optional[genai.Client] = None):
        settings = get_settings()
        self.client = client or get_gemini_client()
        self.agent_model = settings.agent_model_name
        self.analysis_model = settings.analysis_model_name
        self.image_model = settings.image_model_name

    @traceable(name="gemini_agent_turn", run_type="llm", tags=["gemini", "agent", "api-call"])
    async def send_turn(
        self,
        contents: List[types.Content],
        tools: List[types.Tool],
        system_instruction: Optional[str] = None,
    ) -> types.GenerateContentResponse:
        """
        Exchange one agent turn: full conversation in, next model turn out.

        Thoughts are requested so the reasoning text and the thought
        signatures come back on the response parts.
        """
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            tools=tools,
            tool_config=types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(mode="AUTO")
            ),
            thinking_config=types.ThinkingConfig(include_thoughts=True),
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
            temperature=1.0,
        )
        return await asyncio.to_thread(
            self.client.models.generate_content,
            model=self.agent_model,
            contents=contents,
            config=config,
        )

    @traceable(name="gemini_json_call", run_type="llm", tags=["gemini", "json", "api-call"])
    async def generate_json(
        self,
        prompt: str,
        images: Sequence[Tuple[bytes, str]] = (),
    ) -> str:
        """Ask for a JSON answer about the prompt and optional images."""
        parts: list = [types.Part.from_bytes(data=data, mime_type=mime) for data, mime in images]
        parts.append(prompt)

        response = await asyncio.to_thread(
            self.client.models.generate_content,
            model=self.analysis_model,
            contents=parts,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                temperature=1.0,
            ),
        )
        return response.text or ""

    @traceable(name="gemini_text_call", run_type="llm", tags=["gemini", "text", "api-call"])
    async def generate_text(self, prompt: str) -> str:
        """Plain text completion."""
        response = await asyncio.to_thread(
            self.client.models.generate_content,
            model=self.analysis_model,
            contents=prompt,
            config=types.GenerateContentConfig(temperature=1.0),
        )
        return (response.text or "").strip()

    @traceable(
        name="gemini_image_generation_call",
        run_type="llm",
        tags=["gemini", "image", "generation", "api-call"],
        metadata={"model_type": "gemini-image"},
    )
    async def generate_image(self, prompt: str, aspect_ratio: Optional[str] = None) -> bytes:
        """
        Generate one image.

        Raises:
            TransientRemoteError: the model answered without an image part
        """
        config = types.GenerateContentConfig(
            response_modalities=["IMAGE", "TEXT"],
            temperature=1.0,
        )
        if aspect_ratio:
            config.image_config = types.ImageConfig(aspect_ratio=aspect_ratio)

        response = await asyncio.to_thread(
            self.client.models.generate_content,
            model=self.image_model,
            contents=prompt,
            config=config,
        )
        image, _ = _extract_image(response)
        return image

    @traceable(
        name="gemini_image_edit_call",
        run_type="llm",
        tags=["gemini", "image", "edit", "api-call"],
        metadata={"model_type": "gemini-image"},
    )
    async def edit_image(self, image: bytes, mime_type: str, prompt: str) -> Tuple[bytes, Optional[str]]:
        """
        Edit an existing image according to an instruction.

        Returns:
            (edited image bytes, any text the model sent along)

        Raises:
            TransientRemoteError: the model answered without an image part
        """
        instruction = (
            "You are an AI image editor. Edit the provided image according to the user's instructions.\n\n"
            f"USER REQUEST: \"{prompt}\"\n\n"
            "Apply the edit precisely. Maintain the overall composition and quality of the original image.\n"
            "Return the edited image."
        )
        response = await asyncio.to_thread(
            self.client.models.generate_content,
            model=self.image_model,
            contents=[instruction, types.Part.from_bytes(data=image, mime_type=mime_type)],
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE", "TEXT"],
                temperature=1.0,
            ),
        )
        return _extract_image(response)

    @traceable(name="gemini_search_grounding_call", run_type="llm", tags=["gemini", "search", "api-call"])
    async def search_grounded(self, query: str) -> str:
        """Summarize web results for a query using Google Search grounding."""
        response = await asyncio.to_thread(
            self.client.models.generate_content,
            model=self.analysis_model,
            contents=(
                f"Search and summarize: {query}. "
                "Focus on visual trends, colors, and design patterns."
            ),
            config=types.GenerateContentConfig(
                tools=[types.Tool(google_search=types.GoogleSearch())],
                temperature=1.0,
            ),
        )
        return (response.text or "").strip()
