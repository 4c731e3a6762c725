from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .utils import TIME_RANGES

COMMANDS = {"search", "context", "report", "help"}


@dataclass(frozen=True)
class ParsedCommand:
    action: str
    topic: str = ""
    include_threads: Optional[bool] = None
    time_range: Optional[str] = None
    error: Optional[str] = None


def parse_command(text: str) -> ParsedCommand:
    """
    Parse slash-command text such as ``search release dates --no-threads --range 7d``.

    Unknown flags are kept as part of the topic; an unknown action yields a
    ParsedCommand with ``error`` set.
    """
    words = (text or "").split()
    if not words:
        return ParsedCommand(action="help")

    action = words[0].lower()
    if action not in COMMANDS:
        return ParsedCommand(action=action, error="Invalid command. Use /librarian help for usage information.")

    include_threads: Optional[bool] = None
    time_range: Optional[str] = None
    topic_words: list[str] = []
    index = 1
    while index < len(words):
        word = words[index]
        if word == "--no-threads":
            include_threads = False
        elif word == "--threads":
            include_threads = True
        elif word == "--range" and index + 1 < len(words):
            index += 1
            time_range = words[index].lower()
            if time_range not in TIME_RANGES:
                return ParsedCommand(
                    action=action,
                    error=f"Unknown time range '{words[index]}'. Use one of: {', '.join(TIME_RANGES)}.",
                )
        else:
            topic_words.append(word)
        index += 1

    topic = " ".join(topic_words).strip().strip("'\"")
    if action in {"search", "report"} and not topic:
        return ParsedCommand(action=action, error="Please specify a search topic")

    return ParsedCommand(action=action, topic=topic, include_threads=include_threads, time_range=time_range)
