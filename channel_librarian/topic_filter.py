"""Exact-substring topic matching.

Every whitespace-separated term of the topic must appear somewhere in the
message text, ignoring case. A topic with no terms matches every message;
callers refuse empty topics. The prompts tell the model it only sees
messages that contain the search terms exactly.
"""

from __future__ import annotations

from typing import Iterable

from .models import Message


def topic_terms(topic: str) -> list[str]:
    return topic.lower().split()


def matches(message: Message, topic: str) -> bool:
    terms = topic_terms(topic)
    text = (message.text or "").lower()
    return all(term in text for term in terms)


def filter_messages(messages: Iterable[Message], topic: str) -> list[Message]:
    return [message for message in messages if matches(message, topic)]
