"""Slack Block Kit payloads for search results, reports and errors."""

from __future__ import annotations

import re
from typing import Any, Sequence

from .models import ThreadSummary

MAX_SECTION_CHARS = 3000
MAX_SUMMARY_BLOCKS = 10

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")


def chunk_response(text: str, max_chunk_length: int = MAX_SECTION_CHARS) -> list[str]:
    """Split text into sentence-aligned chunks no longer than ``max_chunk_length``."""
    if len(text) <= max_chunk_length:
        return [text]

    chunks: list[str] = []
    current = ""
    for sentence in _SENTENCE_RE.findall(text) or [text]:
        # A single sentence longer than a chunk is hard-wrapped.
        while len(sentence) > max_chunk_length:
            if current:
                chunks.append(current.strip())
                current = ""
            chunks.append(sentence[:max_chunk_length].strip())
            sentence = sentence[max_chunk_length:]
        if len(current) + len(sentence) > max_chunk_length:
            if current.strip():
                chunks.append(current.strip())
            current = sentence
        else:
            current += sentence
    if current.strip():
        chunks.append(current.strip())
    return chunks


def _section(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def results_view(summaries: Sequence[ThreadSummary], message_count: int) -> dict[str, Any]:
    blocks: list[dict[str, Any]] = [
        _section(
            "Here are the most relevant discussions I found:" if summaries else "No relevant discussions found."
        ),
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": f"Found in {message_count or 0} messages"
                    + (f" across {len(summaries)} threads" if summaries else ""),
                }
            ],
        },
    ]

    if summaries:
        blocks.append({"type": "divider"})
        for summary in summaries[:MAX_SUMMARY_BLOCKS]:
            if not summary.text:
                continue
            block = _section(summary.text[:MAX_SECTION_CHARS])
            if summary.permalink:
                block["accessory"] = {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "View Thread"},
                    "url": summary.permalink,
                    "action_id": "view_thread",
                }
            blocks.append(block)

    return {"blocks": blocks}


def summary_view(text: str, topic: str, message_count: int, max_chunk_length: int = MAX_SECTION_CHARS) -> dict[str, Any]:
    blocks = [_section(f'*Summary of messages about "{topic}"*\nFound {message_count} relevant messages.')]
    blocks.extend(_section(chunk) for chunk in chunk_response(text, max_chunk_length))
    return {"blocks": blocks}


def error_view(message: str) -> dict[str, Any]:
    return {
        "blocks": [
            _section(message or "I couldn't find what you're looking for."),
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": "Try:"},
                "fields": [
                    {"type": "mrkdwn", "text": "• Using different keywords"},
                    {"type": "mrkdwn", "text": "• Expanding the time range"},
                    {"type": "mrkdwn", "text": "• Including thread messages"},
                ],
            },
            {
                "type": "actions",
                "elements": [
                    {"type": "button", "text": {"type": "plain_text", "text": "Try Again"}, "action_id": "retry_search"},
                    {"type": "button", "text": {"type": "plain_text", "text": "Help"}, "action_id": "show_help"},
                ],
            },
        ]
    }


def help_view() -> dict[str, Any]:
    return {
        "blocks": [
            _section("*Commands:*"),
            _section(
                "1. *Private Search*\n`/librarian search <topic>`\nPerforms a quick search and shows results only "
                "to you.\n_Example: `/librarian search meeting notes`_"
            ),
            _section(
                "2. *Thread Context*\n`/librarian context`\nRun inside a thread to find related earlier "
                "discussions and explain how they connect."
            ),
            _section(
                "3. *Detailed Report*\n`/librarian report <topic>`\nCreates a detailed, well-structured report "
                "with full conversation context.\n_Example: `/librarian report quarterly goals`_"
            ),
            _section(
                "Options: `--no-threads` skips thread replies, `--range 24h|7d|30d` sets how far back to look."
            ),
            _section("4. *Help*\n`/librarian help`\nDisplays this help information."),
        ]
    }
