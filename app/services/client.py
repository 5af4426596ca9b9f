import asyncio
from typing import Any, Protocol

from google import genai
from google.genai import types
from loguru import logger

from app.models import InlineData, InlinePart, ModelInfo, ModelOutput, TokenUsage, Turn

MODEL_NAME_PREFIXES = ("gemini", "imagen")


class ModelClient(Protocol):
    """Generative model capability used by the dispatcher."""

    async def generate_content(self, model: str, contents: list[Turn]) -> ModelOutput: ...

    async def generate_image(self, model: str, prompt: str) -> bytes | None: ...

    async def list_models(self) -> list[ModelInfo]: ...


def turn_to_content(turn: Turn) -> types.Content:
    """Convert an internal turn into a google-genai Content."""
    parts: list[types.Part] = []
    for part in turn.parts:
        if isinstance(part, InlinePart):
            parts.append(
                types.Part.from_bytes(
                    data=part.inline_data.data, mime_type=part.inline_data.mime_type
                )
            )
        else:
            parts.append(types.Part.from_text(text=part.text))
    return types.Content(role=turn.role, parts=parts)


def extract_usage(usage_metadata: Any) -> TokenUsage | None:
    if usage_metadata is None:
        return None
    return TokenUsage(
        prompt_token_count=getattr(usage_metadata, "prompt_token_count", None),
        candidates_token_count=getattr(usage_metadata, "candidates_token_count", None),
        total_token_count=getattr(usage_metadata, "total_token_count", None),
    )


def extract_output(response: types.GenerateContentResponse) -> ModelOutput:
    """Split the first candidate into text and inline binary segments, in emission order."""
    output = ModelOutput(usage=extract_usage(response.usage_metadata))
    candidates = response.candidates or []
    content = candidates[0].content if candidates else None
    for part in (content.parts if content else None) or []:
        if getattr(part, "thought", False):
            continue
        if part.text:
            output.text_parts.append(part.text)
        elif part.inline_data is not None and part.inline_data.data:
            output.binary_parts.append(
                InlineData(
                    mime_type=part.inline_data.mime_type or "image/png",
                    data=part.inline_data.data,
                )
            )
    return output


class GeminiModelClient:
    """Thin async wrapper over the google-genai SDK with per-call deadlines."""

    def __init__(self, api_key: str | None, timeout: float = 120, number_of_images: int = 1):
        self._client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )
        self._timeout = timeout
        self._number_of_images = number_of_images

    async def generate_content(self, model: str, contents: list[Turn]) -> ModelOutput:
        logger.debug(f"generate_content model={model} turns={len(contents)}")
        response = await asyncio.wait_for(
            self._client.aio.models.generate_content(
                model=model,
                contents=[turn_to_content(turn) for turn in contents],
            ),
            timeout=self._timeout,
        )
        output = extract_output(response)
        logger.debug(
            f"Gemini response: {len(output.text_parts)} text part(s), "
            f"{len(output.binary_parts)} binary part(s), usage={output.usage}"
        )
        return output

    async def generate_image(self, model: str, prompt: str) -> bytes | None:
        logger.debug(f"generate_images model={model}")
        response = await asyncio.wait_for(
            self._client.aio.models.generate_images(
                model=model,
                prompt=prompt,
                config=types.GenerateImagesConfig(number_of_images=self._number_of_images),
            ),
            timeout=self._timeout,
        )
        generated = response.generated_images or []
        if not generated or generated[0].image is None:
            return None
        return generated[0].image.image_bytes

    async def list_models(self) -> list[ModelInfo]:
        models: list[ModelInfo] = []
        pager = await asyncio.wait_for(self._client.aio.models.list(), timeout=self._timeout)
        async for m in pager:
            name = m.name or ""
            short_name = name.split("/")[-1] or name
            if not short_name.lower().startswith(MODEL_NAME_PREFIXES):
                continue
            models.append(
                ModelInfo(
                    name=name,
                    display_name=m.display_name or short_name,
                    supported_actions=list(m.supported_actions or []),
                )
            )
        models.sort(key=lambda m: m.display_name or m.name)
        return models
