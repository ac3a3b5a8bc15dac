import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import anthropic
import openai
from google import genai
from google.genai import errors as genai_errors

from muni_core.exceptions import AnalysisError, APIKeyMissingError, TransientError
from muni_core.utils import log_llm_cost

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT: float = 120.0

_JSON_FENCE = re.compile(r"```(?:json)?\s*\n?|\n?```")


def strip_json_fences(text: str) -> str:
    """Remove markdown code fences the engine sometimes wraps JSON in."""
    return _JSON_FENCE.sub("", text or "").strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Decode engine output into a JSON object.

    Raises:
        AnalysisError: If the text is not a single JSON object
    """
    cleaned = strip_json_fences(text)
    if not cleaned:
        raise AnalysisError("malformed response: empty output")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AnalysisError(f"malformed response: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisError(f"malformed response: expected JSON object, got {type(data).__name__}")
    return data


# =============================================================================
# GEMINI RESPONSE PARSING
# =============================================================================
# Thinking models return thought parts alongside the text part. response.text
# concatenates every text part (or is None when only thought parts exist), so
# take the first non-thought text part ourselves.
# =============================================================================

def extract_first_text_part(response: Any) -> str:
    """
    Extract the first non-thought text part of a Gemini response.

    Raises:
        ValueError: If response has no candidates, no parts, or no text parts
    """
    if not response.candidates:
        raise ValueError("Gemini response has no candidates")
    content = response.candidates[0].content
    if not content:
        raise ValueError("Gemini response candidate has no content")
    if not content.parts:
        raise ValueError("Gemini response content has no parts")

    for part in content.parts:
        # thought can be True or None (not always False)
        thought_val = getattr(part, 'thought', False)
        if thought_val is True:
            continue
        if part.text and part.text.strip():
            return part.text
    raise ValueError("No text part found in Gemini response")


class LLMClient(ABC):
    """
    Analysis-engine collaborator.

    complete() bounds every call with a timeout and maps SDK failures onto the
    pipeline's taxonomy: timeouts, transport and rate-limit errors become
    TransientError; an empty reply becomes AnalysisError. One instance is shared
    by all concurrent candidates.
    """

    provider: str = ""
    transient_errors: tuple = ()

    def __init__(self, model: str, timeout: float = DEFAULT_TIMEOUT, debug_responses: bool = False):
        self.model = model
        self.timeout = timeout
        self.debug_responses = debug_responses

    @abstractmethod
    async def _generate(self, prompt: str, max_tokens: int) -> str:
        """Provider-specific call returning the raw response text."""

    async def complete(self, prompt: str, max_tokens: int) -> str:
        try:
            text = await asyncio.wait_for(self._generate(prompt, max_tokens), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransientError(f"{self.provider} call timed out after {self.timeout}s") from e
        except self.transient_errors as e:
            raise TransientError(f"{self.provider} call failed: {e}") from e

        if self.debug_responses:
            logger.debug("%s raw response: %s", self.model, (text or "")[:2000])
        if not text or not text.strip():
            raise AnalysisError(f"malformed response: {self.provider} returned no text")

        log_llm_cost(self.model, prompt, text)
        return text

    async def complete_json(self, prompt: str, max_tokens: int) -> dict[str, Any]:
        return parse_json_object(await self.complete(prompt, max_tokens))


class AnthropicClient(LLMClient):
    provider = "anthropic"
    transient_errors = (anthropic.APIError,)

    def __init__(self, api_key: str, model: str, timeout: float = DEFAULT_TIMEOUT,
                 debug_responses: bool = False, client: Optional[anthropic.AsyncAnthropic] = None):
        super().__init__(model, timeout, debug_responses)
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def _generate(self, prompt: str, max_tokens: int) -> str:
        message = await self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        return next((block.text for block in message.content if block.type == "text"), "")


class OpenAIClient(LLMClient):
    provider = "openai"
    transient_errors = (openai.APIError,)

    def __init__(self, api_key: str, model: str, timeout: float = DEFAULT_TIMEOUT,
                 debug_responses: bool = False, client: Optional[openai.AsyncOpenAI] = None):
        super().__init__(model, timeout, debug_responses)
        self._client = client or openai.AsyncOpenAI(api_key=api_key)

    async def _generate(self, prompt: str, max_tokens: int) -> str:
        response = await self._client.responses.create(
            model=self.model,
            input=prompt,
            max_output_tokens=max_tokens,
        )
        return response.output_text


class GeminiClient(LLMClient):
    provider = "gemini"
    transient_errors = (genai_errors.APIError,)

    def __init__(self, api_key: str, model: str, timeout: float = DEFAULT_TIMEOUT,
                 debug_responses: bool = False, client: Optional[genai.Client] = None):
        super().__init__(model, timeout, debug_responses)
        self._client = client or genai.Client(api_key=api_key)

    async def _generate(self, prompt: str, max_tokens: int) -> str:
        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config={
                "max_output_tokens": max_tokens,
                "response_mime_type": "application/json",
            },
        )
        text = response.text
        if text is None:
            try:
                text = extract_first_text_part(response)
            except ValueError as e:
                raise AnalysisError(f"malformed response: {e}") from e
        return text


_PROVIDERS = {
    "anthropic": (AnthropicClient, "anthropic"),
    "openai": (OpenAIClient, "openai"),
    "gemini": (GeminiClient, "google"),
}


def create_llm_client(config: dict[str, Any], api_keys: dict[str, str]) -> LLMClient:
    """
    Build the configured engine client.

    Raises:
        APIKeyMissingError: If the provider's API key is not set
        ValueError: If the provider is unknown
    """
    llm_config = config.get("llm", {})
    provider = llm_config.get("provider", "anthropic")
    if provider not in _PROVIDERS:
        raise ValueError(f"Unknown LLM provider {provider!r}. Expected one of {sorted(_PROVIDERS)}")

    client_cls, key_name = _PROVIDERS[provider]
    api_key = api_keys.get(key_name)
    if not api_key:
        raise APIKeyMissingError(f"{key_name.upper()}_API_KEY is required for provider {provider!r}")

    model = llm_config.get(provider, {}).get("model")
    logger.info("Using %s engine (%s)", provider, model)
    return client_cls(
        api_key=api_key,
        model=model,
        timeout=llm_config.get("timeout", DEFAULT_TIMEOUT),
        debug_responses=config.get("debug", {}).get("llm_responses", False),
    )
