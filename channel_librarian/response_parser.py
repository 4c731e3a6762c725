"""
Response Parser
Turns the model's loosely formatted answer back into ThreadSummary records.

The model is only asked to emit ``Summary:`` / ``Link:`` / ``Score:`` lines,
so every strategy here has to tolerate drift. Strategies run in order and the
first one that yields summaries wins; the last one only uses local data and
therefore always yields something when there are threads to describe.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Sequence

from .link_validator import GENERIC_PERMALINK
from .logging_utils import log_event
from .models import Thread, ThreadSummary

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 0.5
MAX_FALLBACK_SUMMARIES = 3

_SUMMARY_LABEL = r"\**\s*Summary\s*\**\s*:\s*\**"
_LINK_LABEL = r"\**\s*(?:Link|URL|Permalink)\s*\**\s*:\s*\**"
_SCORE_LABEL = r"\**\s*(?:Score|Relevance(?:\s+Score)?)\s*\**\s*:\s*\**"

STRUCTURED_BLOCK_RE = re.compile(
    _SUMMARY_LABEL
    + r"((?:(?!" + _SUMMARY_LABEL + r").)*?)\s*"
    + _LINK_LABEL
    + r"((?:(?!" + _SUMMARY_LABEL + r").)*?)\s*"
    + _SCORE_LABEL
    + r"([\d.]+)",
    re.IGNORECASE | re.DOTALL,
)
SUMMARY_LABEL_RE = re.compile(_SUMMARY_LABEL, re.IGNORECASE)
SUMMARY_LINE_RE = re.compile(_SUMMARY_LABEL + r"(.*?)(?:\n|$)", re.IGNORECASE)
LINK_LINE_RE = re.compile(_LINK_LABEL + r"(.*?)(?:\n|$)", re.IGNORECASE)
SCORE_LINE_RE = re.compile(_SCORE_LABEL + r"([\d.]+)", re.IGNORECASE)
BLOCK_SEPARATOR_RE = re.compile(r"\n\s*\n+|\r\n\r\n+|-{3,}|(?=^\s*\**\s*Summary\s*\**\s*:)", re.MULTILINE | re.IGNORECASE)

ParseStrategy = Callable[[str, Sequence[Thread], "str | None"], list[ThreadSummary]]


def parse_score(raw: str | None) -> float:
    if raw is None:
        return DEFAULT_SCORE
    try:
        value = float(raw.strip().rstrip("."))
    except ValueError:
        return DEFAULT_SCORE
    return min(1.0, max(0.0, value))


def clean_link(raw: str | None) -> str | None:
    if raw is None:
        return None
    link = raw.strip().strip("*`").strip()
    if link.startswith("<") and link.endswith(">"):
        link = link[1:-1]
        # Slack-style <url|label>
        link = link.split("|", 1)[0]
    return link or None


def _clean_summary(raw: str) -> str:
    return " ".join(raw.replace("*", "").split())


def _fallback_link(threads: Sequence[Thread], index: int) -> str | None:
    if not threads:
        return None
    return threads[min(index, len(threads) - 1)].permalink


class ResponseParser:
    def __init__(self) -> None:
        self.strategies: list[tuple[str, ParseStrategy]] = [
            ("structured", self._parse_structured),
            ("blocks", self._parse_blocks),
            ("local_fallback", self._fallback_summaries),
        ]

    def parse(self, raw_text: str | None, fallback_threads: Sequence[Thread], topic: str | None = None) -> list[ThreadSummary]:
        text = raw_text or ""
        for name, strategy in self.strategies:
            summaries = strategy(text, fallback_threads, topic)
            if summaries:
                if name != "structured":
                    log_event(
                        logger,
                        "response_parse",
                        "parse_degraded",
                        level=logging.WARNING,
                        strategy=name,
                        summaries=len(summaries),
                        response_chars=len(text),
                    )
                return summaries
        return []

    def _parse_structured(self, text: str, threads: Sequence[Thread], topic: str | None) -> list[ThreadSummary]:
        summaries: list[ThreadSummary] = []
        for index, match in enumerate(STRUCTURED_BLOCK_RE.finditer(text)):
            summary = _clean_summary(match.group(1))
            if not summary:
                continue
            summaries.append(
                ThreadSummary(
                    text=summary,
                    permalink=clean_link(match.group(2)) or _fallback_link(threads, index),
                    relevance_score=parse_score(match.group(3)),
                )
            )
        # A partially structured answer is handled block by block instead.
        if len(summaries) < len(SUMMARY_LABEL_RE.findall(text)):
            return []
        return summaries

    def _parse_blocks(self, text: str, threads: Sequence[Thread], topic: str | None) -> list[ThreadSummary]:
        summaries: list[ThreadSummary] = []
        for block in BLOCK_SEPARATOR_RE.split(text):
            if not block or not block.strip():
                continue
            summary_match = SUMMARY_LINE_RE.search(block)
            if not summary_match:
                continue
            summary = _clean_summary(summary_match.group(1))
            if not summary:
                continue
            link_match = LINK_LINE_RE.search(block)
            score_match = SCORE_LINE_RE.search(block)
            summaries.append(
                ThreadSummary(
                    text=summary,
                    permalink=(clean_link(link_match.group(1)) if link_match else None)
                    or _fallback_link(threads, len(summaries)),
                    relevance_score=parse_score(score_match.group(1) if score_match else None),
                )
            )
        return summaries

    def _fallback_summaries(self, text: str, threads: Sequence[Thread], topic: str | None) -> list[ThreadSummary]:
        return local_summaries(threads, topic, template='Thread with {count} messages about "{topic}"')


def local_summaries(
    threads: Sequence[Thread],
    topic: str | None,
    template: str = 'Thread about "{topic}" with {count} messages.',
) -> list[ThreadSummary]:
    """Deterministic summaries built only from message counts, scored 0.9, 0.7, 0.5."""
    summaries = []
    for index, thread in enumerate(threads[:MAX_FALLBACK_SUMMARIES]):
        if topic:
            text = template.format(count=thread.message_count, topic=topic)
        else:
            text = f"Thread with {thread.message_count} messages"
        summaries.append(
            ThreadSummary(
                text=text,
                permalink=thread.permalink or GENERIC_PERMALINK,
                relevance_score=round(0.9 - index * 0.2, 2),
            )
        )
    return summaries


_default_parser = ResponseParser()


def parse_response(raw_text: str | None, fallback_threads: Sequence[Thread], topic: str | None = None) -> list[ThreadSummary]:
    return _default_parser.parse(raw_text, fallback_threads, topic)
