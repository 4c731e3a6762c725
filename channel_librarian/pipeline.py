"""
Search Pipeline
Fetch → filter → aggregate → summarize → parse → validate, wrapped in a
whole-request deadline. Only access problems, oversized requests, timeouts and
total fetch failures escape; everything else degrades to local summaries.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, TypeVar

from .error_handler import PipelineTimeout
from .history_fetcher import PagedHistoryFetcher
from .llm_client import LLMConfig, ModelBackend, create_backend
from .logging_utils import log_event
from .models import ContextOutcome, Message, SearchOptions, SearchOutcome, Thread, ThreadSummary
from .prompts import PromptVariant
from .rate_limiter import RateLimiter, get_rate_limiter
from .slack_client import SlackClient
from .summarizer import SummarizationOrchestrator
from .thread_aggregator import aggregate, rank
from .topic_filter import filter_messages

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONTEXT_TIME_RANGE = "30d"
RELATED_THREADS_PER_TOPIC = 3
MAX_RELATED_THREADS = 3


class LibrarianPipeline:
    def __init__(
        self,
        fetcher: PagedHistoryFetcher,
        orchestrator: SummarizationOrchestrator,
        default_options: SearchOptions | None = None,
        timeout_seconds: float | None = 60.0,
        json_logs: bool = True,
    ):
        self.fetcher = fetcher
        self.orchestrator = orchestrator
        self.default_options = default_options or SearchOptions()
        self.timeout_seconds = timeout_seconds
        self.json_logs = json_logs

    @classmethod
    def from_config(
        cls,
        config: dict[str, Any],
        slack_client: SlackClient | None = None,
        backend: ModelBackend | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> "LibrarianPipeline":
        limiter = rate_limiter or get_rate_limiter(config)
        slack_settings = config.get("slack", {})
        search_settings = config.get("search", {})

        slack = slack_client or SlackClient(
            token=os.getenv(slack_settings.get("token_env", "SLACK_BOT_TOKEN")),
            base_url=slack_settings.get("base_url", "https://slack.com/api"),
            timeout=int(slack_settings.get("timeout_seconds", 30)),
            retry_config=slack_settings.get("retries", {}),
            rate_limiter=limiter,
        )
        fetcher = PagedHistoryFetcher(
            slack,
            page_size=int(slack_settings.get("page_size", 100)),
            fanout_workers=int(search_settings.get("fanout_workers", 5)),
        )

        llm_config = LLMConfig.from_config(config)
        orchestrator = SummarizationOrchestrator(
            backend or create_backend(llm_config),
            config=llm_config,
            rate_limiter=limiter,
            prompt_overrides=config.get("prompts") or {},
        )
        return cls(
            fetcher,
            orchestrator,
            default_options=SearchOptions.from_config(config),
            timeout_seconds=float(search_settings.get("pipeline_timeout_seconds", 60)),
            json_logs=bool(config.get("logging", {}).get("json", True)),
        )

    def _with_deadline(self, action: str, func: Callable[[], T]) -> T:
        if not self.timeout_seconds:
            return func()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=action)
        future = executor.submit(func)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            log_event(logger, action, "timeout", level=logging.ERROR, json_enabled=self.json_logs, seconds=self.timeout_seconds)
            raise PipelineTimeout(
                f"{action} exceeded {self.timeout_seconds:.0f}s",
                details={"timeout_seconds": self.timeout_seconds},
            ) from exc
        finally:
            executor.shutdown(wait=False)

    def search(self, channel_id: str, topic: str, options: SearchOptions | None = None) -> list[Message]:
        options = options or self.default_options
        raw = self.fetcher.fetch_messages(channel_id, options.time_range, options.max_messages)
        matched = filter_messages(raw, topic)

        if options.include_threads:
            seen = {message.ts for message in matched}
            roots = [message.thread_root for message in matched if message.has_thread]
            for replies in self.fetcher.expand_threads(channel_id, roots).values():
                for reply in filter_messages(replies, topic):
                    if reply.ts not in seen:
                        seen.add(reply.ts)
                        matched.append(reply)

        log_event(
            logger,
            "search",
            "matched",
            json_enabled=self.json_logs,
            channel_id=channel_id,
            fetched=len(raw),
            matched=len(matched),
            include_threads=options.include_threads,
        )
        return self.fetcher.resolve_permalinks(channel_id, matched)

    def summarize(
        self,
        threads: list[Thread],
        topic: str,
        prompt_variant: PromptVariant | str | None = "default",
    ) -> list[ThreadSummary]:
        return self.orchestrator.summarize_threads(threads, topic, prompt_variant)

    def run(
        self,
        channel_id: str,
        topic: str,
        options: SearchOptions | None = None,
        prompt_variant: PromptVariant | str | None = "default",
    ) -> SearchOutcome:
        return self._with_deadline("search_pipeline", lambda: self._run(channel_id, topic, options, prompt_variant))

    def _run(
        self,
        channel_id: str,
        topic: str,
        options: SearchOptions | None,
        prompt_variant: PromptVariant | str | None,
    ) -> SearchOutcome:
        options = options or self.default_options
        started = time.monotonic()
        messages = self.search(channel_id, topic, options)
        if not messages:
            log_event(logger, "search_pipeline", "no_results", json_enabled=self.json_logs, channel_id=channel_id, topic=topic)
            return SearchOutcome(topic=topic)

        threads = rank(aggregate(messages), options.max_threads)
        summaries = self.summarize(threads, topic, prompt_variant)
        log_event(
            logger,
            "search_pipeline",
            "completed",
            json_enabled=self.json_logs,
            channel_id=channel_id,
            messages=len(messages),
            threads=len(threads),
            summaries=len(summaries),
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return SearchOutcome(
            topic=topic,
            summaries=tuple(summaries),
            message_count=len(messages),
            thread_count=len(threads),
        )

    def run_report(
        self,
        channel_id: str,
        topic: str,
        options: SearchOptions | None = None,
        prompt_variant: PromptVariant | str | None = "report",
    ) -> SearchOutcome:
        """One holistic write-up of every matching message instead of per-thread summaries."""

        def build() -> SearchOutcome:
            messages = self.search(channel_id, topic, options)
            if not messages:
                return SearchOutcome(topic=topic)
            overview = self.orchestrator.summarize_overall(messages, topic, prompt_variant)
            thread_count = len(aggregate(messages))
            return SearchOutcome(topic=topic, message_count=len(messages), thread_count=thread_count, overview=overview)

        return self._with_deadline("report_pipeline", build)

    def related_context(self, channel_id: str, thread_ts: str) -> ContextOutcome:
        """Find earlier discussions related to a thread and explain how they connect."""
        return self._with_deadline("context_pipeline", lambda: self._related_context(channel_id, thread_ts))

    def _related_context(self, channel_id: str, thread_ts: str) -> ContextOutcome:
        thread_messages = self.fetcher.fetch_thread_replies(channel_id, thread_ts)
        if not thread_messages:
            return ContextOutcome(synthesis="")

        topics = self.orchestrator.extract_search_topics(thread_messages)
        options = SearchOptions(
            include_threads=True,
            time_range=CONTEXT_TIME_RANGE,
            max_messages=self.default_options.max_messages,
            max_threads=RELATED_THREADS_PER_TOPIC,
        )

        related: dict[str, Thread] = {}
        for topic in topics:
            messages = [message for message in self.search(channel_id, topic, options) if message.thread_root != thread_ts]
            for thread in rank(aggregate(messages), options.max_threads):
                related.setdefault(thread.permalink or thread.root_ts, thread)

        related_threads = list(related.values())[:MAX_RELATED_THREADS]
        synthesis = self.orchestrator.synthesize_context(thread_messages, related_threads)
        log_event(
            logger,
            "context_pipeline",
            "completed",
            json_enabled=self.json_logs,
            channel_id=channel_id,
            topics=topics,
            related_threads=len(related_threads),
        )
        return ContextOutcome(
            synthesis=synthesis,
            thread_messages=tuple(thread_messages),
            related_threads=tuple(related_threads),
            topics=tuple(topics),
        )
