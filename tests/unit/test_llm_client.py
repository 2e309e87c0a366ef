# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the LiteLLM client wrapper."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import SecretStr

from src.core.config.settings import LLMSettings
from src.core.intelligence.llm import LLMClient, LLMError


def _response(content: str) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.choices[0].finish_reason = "stop"
    response.usage.prompt_tokens = 12
    response.usage.completion_tokens = 34
    return response


@pytest.fixture
def llm_settings() -> LLMSettings:
    """LLM settings pointing at a local model."""
    return LLMSettings(
        model="ollama/llama3",
        api_base="http://localhost:11434",
        api_key=SecretStr("sk-test"),
        max_retries=1,
    )


@pytest.mark.unit
class TestLLMClient:
    """Tests for LLMClient."""

    @pytest.mark.asyncio
    async def test_complete(self, llm_settings: LLMSettings) -> None:
        """Test message construction and provider parameters."""
        client = LLMClient(llm_settings=llm_settings)
        with patch(
            "src.core.intelligence.llm.client.acompletion",
            new=AsyncMock(return_value=_response("hello")),
        ) as completion:
            response = await client.complete("Hi", system_prompt="Be brief")

        assert response.content == "hello"
        assert response.total_tokens == 46
        kwargs = completion.await_args.kwargs
        assert kwargs["model"] == "ollama/llama3"
        assert kwargs["messages"][0] == {"role": "system", "content": "Be brief"}
        assert kwargs["api_base"] == "http://localhost:11434"
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["num_retries"] == 1

    @pytest.mark.asyncio
    async def test_empty_prompt(self, llm_settings: LLMSettings) -> None:
        """Test that blank prompts are rejected before calling the provider."""
        with pytest.raises(ValueError):
            await LLMClient(llm_settings=llm_settings).complete("  ")

    @pytest.mark.asyncio
    async def test_provider_error_wrapped(self, llm_settings: LLMSettings) -> None:
        """Test that provider failures surface as LLMError."""
        with patch(
            "src.core.intelligence.llm.client.acompletion",
            new=AsyncMock(side_effect=TimeoutError("slow")),
        ):
            with pytest.raises(LLMError) as exc_info:
                await LLMClient(llm_settings=llm_settings).complete("Hi")

        assert exc_info.value.model == "ollama/llama3"
        assert isinstance(exc_info.value.original_error, TimeoutError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content",
        ['{"nodes": [], "edges": []}', '```json\n{"nodes": [], "edges": []}\n```'],
    )
    async def test_complete_json(self, llm_settings: LLMSettings, content: str) -> None:
        """Test JSON parsing with and without code fences."""
        with patch(
            "src.core.intelligence.llm.client.acompletion",
            new=AsyncMock(return_value=_response(content)),
        ) as completion:
            data = await LLMClient(llm_settings=llm_settings).complete_json("Extract")

        assert data == {"nodes": [], "edges": []}
        assert completion.await_args.kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["not json", "[1, 2]"])
    async def test_complete_json_invalid(self, llm_settings: LLMSettings, content: str) -> None:
        """Test that non-object output raises LLMError."""
        with patch(
            "src.core.intelligence.llm.client.acompletion",
            new=AsyncMock(return_value=_response(content)),
        ):
            with pytest.raises(LLMError):
                await LLMClient(llm_settings=llm_settings).complete_json("Extract")
