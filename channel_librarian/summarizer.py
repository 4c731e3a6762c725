"""
Summarization Orchestrator
Builds model requests, enforces the context budget, retries transient
failures with exponential backoff and degrades to deterministic local text
when the model cannot be reached.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Any, Callable, Sequence, TypeVar

from .error_handler import APIError, RETRYABLE_ERRORS, ContextTooLarge, LibrarianError
from .link_validator import validate_summaries
from .llm_client import DebugBackend, LLMConfig, ModelBackend
from .logging_utils import log_event
from .models import Message, Thread, ThreadSummary
from .prompts import (
    TOPIC_EXTRACTOR_SYSTEM_PROMPT,
    PromptVariant,
    build_context_synthesis_prompt,
    build_overall_prompt,
    build_thread_summary_prompt,
    build_topic_extraction_prompt,
    format_message_line,
    get_prompt_variant,
)
from .rate_limiter import LLM_API, RateLimiter
from .response_parser import ResponseParser, local_summaries

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHARS_PER_TOKEN = 4
MAX_SEARCH_TOPICS = 3
# Failures that mean "no model answer this time" rather than a bug.
DEGRADABLE_ERRORS = (APIError, KeyError, ValueError)


class SummarizationOrchestrator:
    def __init__(
        self,
        backend: ModelBackend,
        config: LLMConfig | None = None,
        rate_limiter: RateLimiter | None = None,
        parser: ResponseParser | None = None,
        sleep: Callable[[float], None] = time.sleep,
        prompt_overrides: dict[str, Any] | None = None,
    ):
        self.backend = backend
        self.config = config or LLMConfig()
        self.rate_limiter = rate_limiter
        # The debug backend makes no provider calls to throttle.
        self.throttled = rate_limiter is not None and not (
            self.config.debug_mode or isinstance(backend, DebugBackend)
        )
        self.parser = parser or ResponseParser()
        self.sleep = sleep
        self.prompt_overrides = prompt_overrides or {}

    def resolve_variant(self, prompt_variant: PromptVariant | str | None) -> PromptVariant:
        """Named variants pick up per-variant overrides from the ``prompts`` config section."""
        if isinstance(prompt_variant, PromptVariant):
            return prompt_variant
        return get_prompt_variant(prompt_variant, {"prompts": self.prompt_overrides})

    @staticmethod
    def estimate_tokens(text: str | None) -> int:
        if not text:
            return 0
        return len(text) // CHARS_PER_TOKEN + 1

    def check_budget(self, prompt: str, system_prompt: str | None, response_tokens: int) -> int:
        estimated = self.estimate_tokens(prompt) + self.estimate_tokens(system_prompt) + response_tokens
        if estimated > self.config.max_tokens:
            raise ContextTooLarge(
                f"Request needs ~{estimated} tokens but the budget is {self.config.max_tokens}",
                estimated_tokens=estimated,
                budget=self.config.max_tokens,
            )
        return estimated

    def call_with_retries(
        self,
        prompt: str,
        system_prompt: str | None,
        max_tokens: int,
        temperature: float | None = None,
    ) -> str:
        """
        Call the backend, retrying rate limits and upstream outages.

        Attempt ``n`` (0-based) that fails with a retryable error waits
        ``retry_delay * 2**n`` before the next one; at most ``max_retries``
        retries follow the first attempt. Other errors surface immediately.
        """
        max_retries = max(0, self.config.max_retries)
        for attempt in range(max_retries + 1):
            if self.throttled and self.rate_limiter is not None:
                self.rate_limiter.acquire(LLM_API)
            try:
                return self.backend.call_model(
                    prompt,
                    system_prompt=system_prompt,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
            except RETRYABLE_ERRORS as exc:
                if attempt >= max_retries:
                    raise
                delay = self.config.retry_delay * (2**attempt)
                logger.warning(
                    "Retrying model request after %.2fs (attempt %d/%d): %s",
                    delay,
                    attempt + 1,
                    max_retries,
                    exc.message,
                )
                self.sleep(delay)
        raise AssertionError("unreachable")

    def _first_result(self, action: str, strategies: list[tuple[str, Callable[[], T]]]) -> T:
        """Try each strategy in order; the first non-empty result wins."""
        result: T | None = None
        for name, strategy in strategies:
            try:
                result = strategy()
            except DEGRADABLE_ERRORS as exc:
                log_event(
                    logger,
                    action,
                    "degraded",
                    level=logging.ERROR if isinstance(exc, APIError) and not isinstance(exc, RETRYABLE_ERRORS) else logging.WARNING,
                    strategy=name,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue
            if result:
                if name != strategies[0][0]:
                    log_event(logger, action, "fallback_used", strategy=name)
                return result
        if result is None:
            raise LibrarianError(f"No strategy produced a result for {action}")
        return result

    def summarize_threads(
        self,
        threads: Sequence[Thread],
        topic: str,
        prompt_variant: PromptVariant | str | None = None,
    ) -> list[ThreadSummary]:
        if not threads:
            return []
        variant = self.resolve_variant(prompt_variant)
        prompt = build_thread_summary_prompt(threads, topic)
        self.check_budget(prompt, variant.system_prompt, variant.max_response_tokens)

        def from_model() -> list[ThreadSummary]:
            raw = self.call_with_retries(prompt, variant.system_prompt, variant.max_response_tokens)
            logger.debug("Raw model response: %s", raw)
            return self.parser.parse(raw, threads, topic)

        summaries = self._first_result(
            "summarize_threads",
            [
                ("model", from_model),
                ("local", lambda: local_summaries(threads, topic)),
            ],
        )
        validated = validate_summaries(summaries, threads)
        return sorted(validated, key=lambda summary: summary.relevance_score, reverse=True)

    def summarize_overall(
        self,
        messages: Sequence[Message],
        topic: str,
        prompt_variant: PromptVariant | str | None = None,
    ) -> str:
        variant = self.resolve_variant(prompt_variant)
        prompt = build_overall_prompt(messages, topic, variant)
        self.check_budget(prompt, variant.system_prompt, variant.max_response_tokens)

        def from_model() -> str:
            return self.call_with_retries(prompt, variant.system_prompt, variant.max_response_tokens).strip()

        def from_messages() -> str:
            lines = "\n".join(f"- {format_message_line(message, with_time=True)}" for message in messages[:3])
            header = f'Found {len(messages)} messages about "{topic}".'
            return f"{header}\n\n{lines}" if lines else header

        return self._first_result("summarize_overall", [("model", from_model), ("local", from_messages)])

    def extract_search_topics(self, messages: Sequence[Message]) -> list[str]:
        if not messages:
            return []
        prompt = build_topic_extraction_prompt(messages)
        response_tokens = 100
        self.check_budget(prompt, TOPIC_EXTRACTOR_SYSTEM_PROMPT, response_tokens)

        def from_model() -> list[str]:
            raw = self.call_with_retries(
                prompt,
                TOPIC_EXTRACTOR_SYSTEM_PROMPT,
                response_tokens,
                temperature=self.config.topic_temperature,
            )
            return parse_topics(raw)

        return self._first_result(
            "extract_search_topics",
            [("model", from_model), ("local", lambda: frequent_terms(messages))],
        )

    def synthesize_context(self, thread_messages: Sequence[Message], related_threads: Sequence[Thread]) -> str:
        variant = self.resolve_variant("context")
        prompt = build_context_synthesis_prompt(thread_messages, related_threads)
        self.check_budget(prompt, variant.system_prompt, variant.max_response_tokens)

        def from_model() -> str:
            return self.call_with_retries(prompt, variant.system_prompt, variant.max_response_tokens).strip()

        def from_threads() -> str:
            lines = [f"Current thread has {len(thread_messages)} messages."]
            if related_threads:
                lines.append("\nRelated discussions:")
                for thread in related_threads[:3]:
                    lines.append(f"• {thread.permalink or 'unknown'} - {thread.messages[0].text[:100]}...")
            return "\n".join(lines)

        return self._first_result("synthesize_context", [("model", from_model), ("local", from_threads)])


def parse_topics(raw: str) -> list[str]:
    topics = []
    for part in raw.replace("\n", ",").split(","):
        topic = part.strip().strip("-•*\"'").strip()
        if topic:
            topics.append(topic)
    return topics[:MAX_SEARCH_TOPICS]


def frequent_terms(messages: Sequence[Message], min_length: int = 5) -> list[str]:
    counts: Counter[str] = Counter()
    for message in messages:
        for word in (message.text or "").lower().split():
            word = word.strip(".,!?:;\"'()[]<>")
            if len(word) >= min_length and word.isalpha():
                counts[word] += 1
    return [word for word, _ in counts.most_common(MAX_SEARCH_TOPICS)]
