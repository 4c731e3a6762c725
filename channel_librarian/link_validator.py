"""Link integrity for summaries leaving the pipeline."""

from __future__ import annotations

from typing import Any, Sequence

from .models import Thread, ThreadSummary

GENERIC_PERMALINK = "https://slack.com"


def is_valid_link(link: Any) -> bool:
    # Bracketed tokens are the model echoing a placeholder like "[permalink]".
    return (
        isinstance(link, str)
        and link.startswith(("http://", "https://"))
        and "[" not in link
        and "]" not in link
    )


def validate(link: Any, fallback_link: str | None) -> str:
    if is_valid_link(link):
        return str(link)
    if is_valid_link(fallback_link):
        return str(fallback_link)
    return GENERIC_PERMALINK


def validate_summaries(summaries: Sequence[ThreadSummary], threads: Sequence[Thread]) -> list[ThreadSummary]:
    """Replace bad links with the permalink of the thread at the same position."""
    validated = []
    for index, summary in enumerate(summaries):
        fallback = threads[min(index, len(threads) - 1)].permalink if threads else None
        link = validate(summary.permalink, fallback)
        if link != summary.permalink:
            summary = ThreadSummary(text=summary.text, permalink=link, relevance_score=summary.relevance_score)
        validated.append(summary)
    return validated
