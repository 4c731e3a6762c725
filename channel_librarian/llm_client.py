"""
Model Backends
One small capability interface, ``call_model``, implemented per provider and
selected by configuration. Debug mode is just another backend that never
touches the network.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from .error_handler import (
    APIError,
    ConfigurationError,
    InvalidCredentials,
    MalformedRequest,
    RateLimitExceeded,
    UpstreamUnavailable,
)
from .rate_limiter import LLM_API

logger = logging.getLogger(__name__)


@dataclass
class LLMConfig:
    """Configuration for the model backend."""

    provider: str = "openai"  # openai, anthropic, ollama, debug
    model: str = "gpt-3.5-turbo"
    api_key: str = ""
    base_url: str | None = None
    temperature: float = 0.7
    topic_temperature: float = 0.3
    max_tokens: int = 4000  # context window budget
    max_response_tokens: int = 500
    max_retries: int = 3
    retry_delay: float = 1.0
    timeout: int = 60
    debug_mode: bool = False

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "LLMConfig":
        llm = config.get("llm", {})
        api_key_env = llm.get("api_key_env", "LLM_API_KEY")
        return cls(
            provider=str(llm.get("provider", "openai")),
            model=str(llm.get("model", "gpt-3.5-turbo")),
            api_key=llm.get("api_key") or os.getenv(api_key_env, ""),
            base_url=llm.get("base_url") or os.getenv("LLM_API_URL") or None,
            temperature=float(llm.get("temperature", 0.7)),
            topic_temperature=float(llm.get("topic_temperature", 0.3)),
            max_tokens=int(llm.get("max_tokens", 4000)),
            max_response_tokens=int(llm.get("max_response_tokens", 500)),
            max_retries=int(llm.get("max_retries", 3)),
            retry_delay=float(llm.get("retry_delay_seconds", 1.0)),
            timeout=int(llm.get("timeout_seconds", 60)),
            debug_mode=bool(config.get("debug_mode", False)),
        )


class ModelBackend(Protocol):
    def call_model(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str: ...


def _translate_sdk_error(exc: Exception, sdk: Any, api_name: str) -> APIError:
    """Map an openai/anthropic SDK exception onto the pipeline's error kinds."""
    status_code = getattr(exc, "status_code", None)
    message = f"{api_name} call failed: {exc}"
    if isinstance(exc, sdk.RateLimitError):
        return RateLimitExceeded(message, api_name=LLM_API, status_code=429)
    if isinstance(exc, sdk.APIConnectionError):
        return UpstreamUnavailable(message, api_name=LLM_API)
    if isinstance(exc, (sdk.AuthenticationError, sdk.PermissionDeniedError)):
        return InvalidCredentials("Invalid API key. Please check your configuration.", api_name=LLM_API, status_code=status_code)
    if isinstance(exc, sdk.APIStatusError) and status_code is not None:
        if status_code >= 500:
            return UpstreamUnavailable(message, api_name=LLM_API, status_code=status_code)
        if status_code in (400, 404, 413, 422):
            return MalformedRequest(f"Invalid request: {exc}", api_name=LLM_API, status_code=status_code)
    return APIError(message, api_name=LLM_API, status_code=status_code)


def _normalize_openai_base_url(base_url: str | None) -> str | None:
    if not base_url:
        return None
    return base_url.replace("/v1/chat/completions", "/v1").rstrip("/")


class OpenAIBackend:
    """OpenAI (or OpenAI-compatible) chat completions."""

    def __init__(self, config: LLMConfig):
        self.config = config
        try:
            import openai
        except ImportError:
            raise ImportError("openai package not installed. Run: pip install openai")

        self._sdk = openai
        self.client = openai.OpenAI(
            api_key=config.api_key or os.getenv("OPENAI_API_KEY"),
            base_url=_normalize_openai_base_url(config.base_url),
            timeout=config.timeout,
            max_retries=0,
        )

    def call_model(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,  # type: ignore[arg-type]
                temperature=self.config.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.config.max_response_tokens,
            )
        except self._sdk.APIError as exc:
            raise _translate_sdk_error(exc, self._sdk, "OpenAI") from exc
        content = response.choices[0].message.content
        return str(content) if content else ""


class AnthropicBackend:
    """Anthropic (Claude) messages API."""

    def __init__(self, config: LLMConfig):
        self.config = config
        try:
            import anthropic
        except ImportError:
            raise ImportError("anthropic package not installed. Run: pip install anthropic")

        self._sdk = anthropic
        self.client = anthropic.Anthropic(
            api_key=config.api_key or os.getenv("ANTHROPIC_API_KEY"),
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=0,
        )

    def call_model(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        try:
            response = self.client.messages.create(
                model=self.config.model,
                max_tokens=max_tokens or self.config.max_response_tokens,
                temperature=self.config.temperature if temperature is None else temperature,
                system=system_prompt or "",
                messages=[{"role": "user", "content": prompt}],
            )
        except self._sdk.APIError as exc:
            raise _translate_sdk_error(exc, self._sdk, "Anthropic") from exc
        # Extract text from first content block (safely handle different block types)
        first_block = response.content[0] if response.content else None
        if first_block is not None and hasattr(first_block, "text"):
            return str(first_block.text)
        return ""


class OllamaBackend:
    """Ollama local model server."""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.base_url = (config.base_url or "http://localhost:11434").rstrip("/")

    def call_model(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = requests.post(
                f"{self.base_url}/api/chat",
                json={
                    "model": self.config.model,
                    "messages": messages,
                    "stream": False,
                    "options": {
                        "temperature": self.config.temperature if temperature is None else temperature,
                        "num_predict": max_tokens or self.config.max_response_tokens,
                    },
                },
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise UpstreamUnavailable(f"Ollama network error: {exc}", api_name=LLM_API) from exc

        if response.status_code == 429:
            raise RateLimitExceeded("Ollama rate limited", api_name=LLM_API, status_code=429)
        if response.status_code >= 500:
            raise UpstreamUnavailable(
                f"Ollama error: {response.status_code}", api_name=LLM_API, status_code=response.status_code
            )
        if response.status_code >= 400:
            raise MalformedRequest(
                f"Invalid request: {response.text}", api_name=LLM_API, status_code=response.status_code
            )
        return str(response.json()["message"]["content"])


_THREAD_BLOCK_RE = re.compile(r"^Thread \d+:\nPermalink: (\S+)\nMessages:\n", re.MULTILINE)
_SEARCH_TOPIC_RE = re.compile(r'^Search Topic: "(.*)"$', re.MULTILINE)
_MESSAGE_LINE_RE = re.compile(r"^\S+ \([^)]*\): .+$", re.MULTILINE)


class DebugBackend:
    """Canned, well-formed answers for integration testing without quota cost."""

    def __init__(self, config: LLMConfig | None = None):
        self.config = config or LLMConfig(provider="debug", debug_mode=True)
        self.calls: list[str] = []

    def call_model(
        self,
        prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        self.calls.append(prompt)
        logger.info("Debug mode: bypassing model call")

        permalinks = _THREAD_BLOCK_RE.findall(prompt)
        if permalinks:
            topic_match = _SEARCH_TOPIC_RE.search(prompt)
            topic = topic_match.group(1) if topic_match else "this topic"
            return "\n\n".join(
                f'Summary: [DEBUG] This is a sample thread about "{topic}".\n'
                f"Link: {permalink}\n"
                f"Score: {0.9 - index * 0.2:.1f}"
                for index, permalink in enumerate(permalinks[:3])
            )

        if prompt.rstrip().endswith("Topics:"):
            return "debug-topic-1, debug-topic-2, debug-topic-3"

        sample = _MESSAGE_LINE_RE.findall(prompt)[:3]
        lines = "\n\n".join(f"- {line}" for line in sample)
        return (
            "[DEBUG] Here's a test summary:\n\n"
            + (lines + "\n\n" if lines else "")
            + "This is a debug response. Enable production mode to get real LLM summaries."
        )


def create_backend(config: LLMConfig) -> ModelBackend:
    """Factory function to create the configured model backend."""
    if config.debug_mode:
        return DebugBackend(config)

    providers: dict[str, type] = {
        "openai": OpenAIBackend,
        "anthropic": AnthropicBackend,
        "claude": AnthropicBackend,  # Alias
        "ollama": OllamaBackend,
        "debug": DebugBackend,
    }

    backend_class = providers.get(config.provider.lower())
    if not backend_class:
        raise ConfigurationError(
            f"Unsupported LLM provider: {config.provider}. Supported: {', '.join(providers.keys())}",
            details={"provider": config.provider},
        )

    return backend_class(config)  # type: ignore[no-any-return]
