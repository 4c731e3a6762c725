from __future__ import annotations

from collections import defaultdict
from typing import Iterable

from .models import Message, Thread


def aggregate(messages: Iterable[Message]) -> list[Thread]:
    """Group messages by thread root, keeping first-seen thread order and fetch order within a thread."""
    grouped: dict[str, list[Message]] = defaultdict(list)
    for message in messages:
        grouped[message.thread_root].append(message)

    return [_build_thread(root_ts, items) for root_ts, items in grouped.items()]


def rank(threads: Iterable[Thread], max_threads: int) -> list[Thread]:
    """Most active threads first; ties keep their input order."""
    ordered = sorted(threads, key=lambda thread: thread.message_count, reverse=True)
    return ordered[: max(0, max_threads)]


def _build_thread(root_ts: str, items: list[Message]) -> Thread:
    permalink = None
    for message in items:
        if message.ts == root_ts and message.permalink:
            permalink = message.permalink
            break
    if permalink is None:
        permalink = next((message.permalink for message in items if message.permalink), None)

    return Thread(root_ts=root_ts, messages=tuple(items), permalink=permalink)
