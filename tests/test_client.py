import asyncio

import pytest
from google.genai import types

from app.models import InlineData, InlinePart, TextPart, TokenUsage, Turn
from app.services.client import GeminiModelClient, extract_output, turn_to_content

from .conftest import PNG_BYTES


def test_turn_to_content_keeps_part_order():
    turn = Turn(
        role="user",
        parts=[
            TextPart(text="describe"),
            InlinePart(inline_data=InlineData(mime_type="image/png", data=PNG_BYTES)),
        ],
    )

    content = turn_to_content(turn)

    assert content.role == "user"
    assert content.parts[0].text == "describe"
    assert content.parts[1].inline_data.mime_type == "image/png"
    assert content.parts[1].inline_data.data == PNG_BYTES


def test_extract_output_skips_thoughts():
    response = types.GenerateContentResponse(
        candidates=[
            types.Candidate(
                content=types.Content(
                    role="model",
                    parts=[
                        types.Part(text="planning", thought=True),
                        types.Part(text="Here you go"),
                        types.Part(inline_data=types.Blob(mime_type="image/png", data=PNG_BYTES)),
                        types.Part(text="enjoy"),
                    ],
                )
            )
        ],
        usage_metadata=types.GenerateContentResponseUsageMetadata(
            prompt_token_count=5, total_token_count=12
        ),
    )

    output = extract_output(response)

    assert output.text_parts == ["Here you go", "enjoy"]
    assert output.binary_parts == [InlineData(mime_type="image/png", data=PNG_BYTES)]
    assert output.usage == TokenUsage(prompt_token_count=5, total_token_count=12)


def test_extract_output_without_candidates():
    output = extract_output(types.GenerateContentResponse())

    assert output.text_parts == []
    assert output.binary_parts == []
    assert output.usage is None


async def test_generate_content_deadline(monkeypatch):
    client = GeminiModelClient(api_key="test-key", timeout=0.05)

    async def _slow_generate(**kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(client._client.aio.models, "generate_content", _slow_generate)

    with pytest.raises(TimeoutError):
        await client.generate_content("gemini-1.5-flash", [Turn(role="user", parts=[TextPart(text="hi")])])
