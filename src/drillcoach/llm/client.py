"""OpenAI-compatible chat client for capability-stage generation.

One client serves both a local LM Studio server and OpenAI: they differ
only in base URL, key and whether ``response_format`` is honoured. The
stage generator needs a single JSON object per request, so most of this
module is about getting one out of model output reliably.
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog
from openai import APIConnectionError, OpenAI, OpenAIError

from drillcoach.config.app_config import ProviderConfig, get_provider_config

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

Provider = Literal["lmstudio", "openai"]

# LM Studio ignores the key but the SDK requires one
LOCAL_API_KEY = "lm-studio"

# Providers that accept response_format={"type": "json_object"}
JSON_OBJECT_PROVIDERS: frozenset[str] = frozenset({"openai"})

REPAIR_EXCERPT_CHARS = 1000

JSON_REPAIR_PROMPT = """Your previous reply was not a valid JSON object:
<<<
{invalid_output}
>>>

Return the same content as ONE valid JSON object. No prose, no markdown fences."""

# Reasoning blocks some local models emit ahead of the answer
REASONING_BLOCK = re.compile(r"<(think|reasoning)>.*?</\1>", re.DOTALL | re.IGNORECASE)
FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


# =============================================================================
# JSON EXTRACTION
# =============================================================================


def _json_candidates(text: str) -> Iterator[str]:
    """Substrings worth handing to json.loads, most specific last."""
    yield text
    for match in FENCED_BLOCK.finditer(text):
        yield match.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if 0 <= start < end:
        yield text[start:end + 1]


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Pull the first JSON object out of model output.

    Reasoning blocks are dropped first; then the whole reply, any fenced
    block and the outermost brace span are tried in turn.

    Returns:
        The parsed object, or None when nothing parses to a dict.
    """
    cleaned = REASONING_BLOCK.sub("", text).strip()
    for candidate in _json_candidates(cleaned):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class LLMConfig:
    """Connection and sampling settings for a provider."""

    provider: str = "lmstudio"
    base_url: str | None = "http://localhost:1234/v1"
    model: str = "default"
    temperature: float = 0.4
    max_tokens: int = 2048
    timeout: int = 60
    api_key: str | None = None

    @classmethod
    def from_provider(
        cls,
        name: str,
        provider_config: ProviderConfig | None = None,
        model: str | None = None,
    ) -> LLMConfig:
        """Settings for a provider named in app_config.

        Args:
            name: Provider name ("lmstudio", "openai")
            provider_config: Explicit provider settings (looked up if None)
            model: Replaces the provider's default model

        Returns:
            LLMConfig for the provider; bare defaults when it is unknown.
        """
        provider_config = provider_config or get_provider_config(name)
        if provider_config is None:
            logger.warning("provider_not_configured", provider=name)
            return cls(provider=name, model=model or "default")

        api_key = provider_config.get_api_key()
        if api_key is None and name == "lmstudio":
            api_key = LOCAL_API_KEY

        return cls(
            provider=name,
            base_url=provider_config.base_url,
            model=model or provider_config.default_model,
            api_key=api_key,
        )

    @property
    def supports_json_object(self) -> bool:
        return self.provider in JSON_OBJECT_PROVIDERS


@dataclass
class Message:
    """A chat message."""

    role: Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Text of one completion plus the accounting around it."""

    content: str
    model: str
    provider: str
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return self.usage.get("total_tokens", 0)

    @classmethod
    def from_completion(cls, completion: Any, provider: str, latency_ms: int) -> LLMResponse:
        """Wrap an SDK chat completion.

        Raises:
            LLMResponseError: If the completion carries no choices
        """
        if not completion.choices:
            raise LLMResponseError("Empty response from LLM")

        usage: dict[str, int] = {}
        if completion.usage:
            usage = {
                "prompt_tokens": completion.usage.prompt_tokens,
                "completion_tokens": completion.usage.completion_tokens,
                "total_tokens": completion.usage.total_tokens,
            }
        return cls(
            content=completion.choices[0].message.content or "",
            model=completion.model,
            provider=provider,
            usage=usage,
            latency_ms=latency_ms,
        )


class LLMError(Exception):
    """The model could not be used for this request."""


class LLMConnectionError(LLMError):
    """The provider endpoint could not be reached."""


class LLMResponseError(LLMError):
    """The provider answered with something unusable."""


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """Chat client for OpenAI-compatible endpoints."""

    def __init__(self, config: LLMConfig | None = None):
        self.config = config or LLMConfig.from_provider("lmstudio")
        self._client = OpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key or "not-needed",
            timeout=self.config.timeout,
        )
        logger.info(
            "llm_client_initialized",
            provider=self.config.provider,
            model=self.config.model,
            base_url=self.config.base_url,
        )

    def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Run one chat completion.

        ``json_mode`` asks for a JSON object where the provider supports it;
        elsewhere the prompt has to ask for it.

        Raises:
            LLMConnectionError: If the server cannot be reached
            LLMResponseError: If the response has no choices
            LLMError: For any other SDK failure
        """
        request: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": self.config.max_tokens if max_tokens is None else max_tokens,
        }
        if json_mode and self.config.supports_json_object:
            request["response_format"] = {"type": "json_object"}

        started = time.monotonic()
        try:
            completion = self._client.chat.completions.create(**request)
        except APIConnectionError as e:
            raise LLMConnectionError(
                f"Could not connect to {self.config.provider} at {self.config.base_url}: {e}"
            ) from e
        except OpenAIError as e:
            raise LLMError(f"LLM call failed: {e}") from e

        response = LLMResponse.from_completion(
            completion, self.config.provider, int((time.monotonic() - started) * 1000)
        )
        logger.debug(
            "llm_response",
            provider=response.provider,
            model=response.model,
            tokens=response.total_tokens,
            latency_ms=response.latency_ms,
        )
        return response

    def chat_json(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
        repair_attempts: int = 1,
    ) -> dict[str, Any]:
        """Chat until the reply holds a JSON object.

        Each failed parse sends the bad reply back with a repair request,
        up to ``repair_attempts`` times.

        Raises:
            LLMResponseError: If no attempt yields a JSON object
        """
        first = self.chat(messages, temperature, max_tokens, json_mode=True)
        reply = first.content

        for attempt in range(repair_attempts + 1):
            parsed = extract_json_object(reply)
            if parsed is not None:
                if attempt:
                    logger.info("json_parse_recovered_after_retry", attempts=attempt)
                return parsed
            if attempt == repair_attempts:
                break

            logger.warning(
                "json_parse_failed_retrying",
                provider=self.config.provider,
                content=reply[:100],
            )
            repair = JSON_REPAIR_PROMPT.format(invalid_output=reply[:REPAIR_EXCERPT_CHARS])
            reply = self.chat(
                [*messages, Message(role="user", content=repair)],
                temperature,
                max_tokens,
                json_mode=True,
            ).content

        raise LLMResponseError(f"Could not obtain valid JSON: {first.content[:200]}...")

    def simple_json(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        """Single-turn chat expecting a JSON object."""
        return self.chat_json(
            [
                Message(role="system", content=system_prompt),
                Message(role="user", content=user_message),
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )

    def is_available(self) -> bool:
        """Whether the server answers a model listing."""
        try:
            self._client.models.list()
        except OpenAIError as e:
            logger.debug("llm_unreachable", provider=self.config.provider, error=str(e))
            return False
        return True
