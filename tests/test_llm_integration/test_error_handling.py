"""
Error handling tests for the engine clients.

Tests verify SDK failures and timeouts land on the pipeline's error taxonomy
instead of escaping as provider-specific exceptions.
"""
import asyncio
import json
import httpx
import pytest
import anthropic
import openai
from unittest.mock import AsyncMock, MagicMock

from muni_core.analysis.llm import (
    AnthropicClient,
    GeminiClient,
    LLMClient,
    OpenAIClient,
    create_llm_client,
)
from muni_core.config import DEFAULT_CONFIG
from muni_core.exceptions import AnalysisError, APIKeyMissingError, TransientError
from muni_core.utils import get_cost_summary, reset_cost_tracker


def _anthropic_sdk(text=None, error=None):
    client = MagicMock()
    if error is not None:
        client.messages.create = AsyncMock(side_effect=error)
        return client
    thinking = MagicMock(type="thinking")
    block = MagicMock(type="text", text=text)
    client.messages.create = AsyncMock(return_value=MagicMock(content=[thinking, block]))
    return client


class _SlowClient(LLMClient):
    provider = "slow"

    async def _generate(self, prompt, max_tokens):
        await asyncio.sleep(5)
        return "{}"


@pytest.mark.llm
class TestAnthropicClient:
    """Default engine."""

    @pytest.mark.asyncio
    async def test_text_block_returned(self, valid_analysis_response):
        sdk = _anthropic_sdk(json.dumps(valid_analysis_response))
        client = AnthropicClient(api_key="k", model="claude-sonnet-4-20250514", client=sdk)
        assert await client.complete_json("prompt", 4000) == valid_analysis_response

        kwargs = sdk.messages.create.call_args.kwargs
        assert kwargs["max_tokens"] == 4000
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    @pytest.mark.asyncio
    async def test_cost_logged(self):
        reset_cost_tracker()
        client = AnthropicClient(api_key="k", model="claude-sonnet-4-20250514", client=_anthropic_sdk('{"a": 1}'))
        await client.complete("prompt text", 300)
        summary = get_cost_summary()
        assert summary["total_calls"] == 1
        assert summary["models"] == ["claude-sonnet-4-20250514"]

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
        client = AnthropicClient(api_key="k", model="m", client=_anthropic_sdk(error=error))
        with pytest.raises(TransientError, match="anthropic call failed"):
            await client.complete("prompt", 300)

    @pytest.mark.asyncio
    async def test_no_text_block_is_malformed(self):
        sdk = MagicMock()
        sdk.messages.create = AsyncMock(return_value=MagicMock(content=[MagicMock(type="thinking")]))
        client = AnthropicClient(api_key="k", model="m", client=sdk)
        with pytest.raises(AnalysisError, match="returned no text"):
            await client.complete("prompt", 300)

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self):
        client = AnthropicClient(api_key="k", model="m", client=_anthropic_sdk("Sorry, I can't help"))
        with pytest.raises(AnalysisError):
            await client.complete_json("prompt", 300)


@pytest.mark.llm
class TestTimeouts:
    """Every engine call is bounded."""

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        client = _SlowClient(model="m", timeout=0.01)
        with pytest.raises(TransientError, match="timed out"):
            await client.complete("prompt", 300)


@pytest.mark.llm
class TestOpenAIClient:
    """OpenAI Responses API."""

    @pytest.mark.asyncio
    async def test_output_text_returned(self):
        sdk = MagicMock()
        sdk.responses.create = AsyncMock(return_value=MagicMock(output_text='{"relevant": true}'))
        client = OpenAIClient(api_key="k", model="gpt-4o", client=sdk)
        assert await client.complete_json("prompt", 300) == {"relevant": True}
        assert sdk.responses.create.call_args.kwargs["max_output_tokens"] == 300

    @pytest.mark.asyncio
    async def test_timeout_error_is_transient(self):
        sdk = MagicMock()
        sdk.responses.create = AsyncMock(
            side_effect=openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/responses"))
        )
        client = OpenAIClient(api_key="k", model="gpt-4o", client=sdk)
        with pytest.raises(TransientError):
            await client.complete("prompt", 300)


@pytest.mark.llm
class TestGeminiClient:
    """Gemini async API with thought parts."""

    @pytest.mark.asyncio
    async def test_response_text_used(self):
        sdk = MagicMock()
        sdk.aio.models.generate_content = AsyncMock(return_value=MagicMock(text='{"a": 1}'))
        client = GeminiClient(api_key="k", model="gemini-2.5-flash", client=sdk)
        assert await client.complete_json("prompt", 300) == {"a": 1}

    @pytest.mark.asyncio
    async def test_none_text_falls_back_to_first_part(self):
        thought = MagicMock(text="trace", thought=True)
        text_part = MagicMock(text='{"a": 1}', thought=False)
        response = MagicMock(text=None)
        response.candidates = [MagicMock()]
        response.candidates[0].content.parts = [thought, text_part]

        sdk = MagicMock()
        sdk.aio.models.generate_content = AsyncMock(return_value=response)
        client = GeminiClient(api_key="k", model="gemini-2.5-flash", client=sdk)
        assert await client.complete_json("prompt", 300) == {"a": 1}

    @pytest.mark.asyncio
    async def test_thought_only_response_is_malformed(self):
        response = MagicMock(text=None)
        response.candidates = [MagicMock()]
        response.candidates[0].content.parts = []

        sdk = MagicMock()
        sdk.aio.models.generate_content = AsyncMock(return_value=response)
        client = GeminiClient(api_key="k", model="gemini-2.5-flash", client=sdk)
        with pytest.raises(AnalysisError, match="no parts"):
            await client.complete("prompt", 300)


class TestCreateClient:
    """Provider selection from config."""

    def test_default_provider_is_anthropic(self):
        client = create_llm_client(DEFAULT_CONFIG, {"anthropic": "sk-test"})
        assert isinstance(client, AnthropicClient)
        assert client.model == "claude-sonnet-4-20250514"
        assert client.timeout == DEFAULT_CONFIG["llm"]["timeout"]

    def test_openai_provider(self):
        config = {**DEFAULT_CONFIG, "llm": {**DEFAULT_CONFIG["llm"], "provider": "openai"}}
        assert isinstance(create_llm_client(config, {"openai": "sk-test"}), OpenAIClient)

    def test_missing_key_raises(self):
        with pytest.raises(APIKeyMissingError, match="ANTHROPIC_API_KEY"):
            create_llm_client(DEFAULT_CONFIG, {"anthropic": ""})

    def test_unknown_provider_raises(self):
        config = {"llm": {"provider": "llama"}}
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            create_llm_client(config, {})
