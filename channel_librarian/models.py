from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .utils import DEFAULT_TIME_RANGE, ts_to_float


@dataclass(frozen=True)
class Message:
    ts: str
    user: str
    text: str
    thread_ts: str
    permalink: Optional[str] = None
    reply_count: int = 0

    @property
    def timestamp(self) -> float:
        return ts_to_float(self.ts)

    @property
    def thread_root(self) -> str:
        return self.thread_ts or self.ts

    @property
    def is_thread_root(self) -> bool:
        return self.thread_root == self.ts

    @property
    def has_thread(self) -> bool:
        return self.reply_count > 0 or not self.is_thread_root

    @classmethod
    def from_slack(cls, payload: dict[str, Any]) -> "Message":
        ts = str(payload.get("ts") or "")
        return cls(
            ts=ts,
            user=str(payload.get("user") or payload.get("username") or payload.get("bot_id") or "unknown"),
            text=payload.get("text") or "",
            thread_ts=str(payload.get("thread_ts") or ts),
            permalink=payload.get("permalink"),
            reply_count=int(payload.get("reply_count") or 0),
        )

    def with_permalink(self, permalink: Optional[str]) -> "Message":
        return Message(
            ts=self.ts,
            user=self.user,
            text=self.text,
            thread_ts=self.thread_ts,
            permalink=permalink,
            reply_count=self.reply_count,
        )


@dataclass(frozen=True)
class Thread:
    root_ts: str
    messages: tuple[Message, ...]
    permalink: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError(f"Thread {self.root_ts} must contain at least one message")
        for message in self.messages:
            if message.thread_root != self.root_ts:
                raise ValueError(f"Message {message.ts} does not belong to thread {self.root_ts}")

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def root(self) -> Message:
        for message in self.messages:
            if message.ts == self.root_ts:
                return message
        return self.messages[0]


@dataclass(frozen=True)
class SearchOptions:
    include_threads: bool = True
    time_range: str = DEFAULT_TIME_RANGE
    max_messages: int = 500
    max_threads: int = 5

    @classmethod
    def from_config(cls, config: dict[str, Any], **overrides: Any) -> "SearchOptions":
        search = config.get("search", {})
        values = {
            "include_threads": bool(search.get("include_threads", True)),
            "time_range": str(search.get("default_time_range", DEFAULT_TIME_RANGE)),
            "max_messages": int(search.get("max_messages", 500)),
            "max_threads": int(search.get("max_threads", 5)),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


@dataclass(frozen=True)
class ThreadSummary:
    text: str
    permalink: Optional[str]
    relevance_score: float = 0.5


@dataclass(frozen=True)
class SearchOutcome:
    topic: str
    summaries: tuple[ThreadSummary, ...] = ()
    message_count: int = 0
    thread_count: int = 0
    overview: Optional[str] = None

    @property
    def no_results(self) -> bool:
        return self.message_count == 0


@dataclass(frozen=True)
class ContextOutcome:
    synthesis: str
    thread_messages: tuple[Message, ...] = ()
    related_threads: tuple[Thread, ...] = ()
    topics: tuple[str, ...] = field(default_factory=tuple)
