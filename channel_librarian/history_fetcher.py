from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, Protocol

from .error_handler import AccessDenied, APIError, handle_errors
from .models import Message
from .utils import oldest_ts_for_range

logger = logging.getLogger(__name__)

MISSING_THREAD_ERRORS = {"thread_not_found", "message_not_found"}
DEFAULT_PAGE_SIZE = 100
DEFAULT_FANOUT_WORKERS = 5


class SlackClientProtocol(Protocol):
    def fetch_history_page(
        self,
        channel_id: str,
        oldest: str | None = None,
        latest: str | None = None,
        limit: int = 100,
        cursor: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]: ...

    def fetch_replies_page(
        self,
        channel_id: str,
        thread_ts: str,
        limit: int = 100,
        cursor: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]: ...

    def get_permalink(self, channel_id: str, message_ts: str) -> str | None: ...

    def get_channel_info(self, channel_id: str) -> dict[str, Any]: ...


class PagedHistoryFetcher:
    """Cursor-paged retrieval of channel history and thread replies."""

    def __init__(
        self,
        slack_client: SlackClientProtocol,
        page_size: int = DEFAULT_PAGE_SIZE,
        fanout_workers: int = DEFAULT_FANOUT_WORKERS,
    ):
        self.slack_client = slack_client
        self.page_size = max(1, page_size)
        self.fanout_workers = max(1, fanout_workers)

    def fetch_messages(self, channel_id: str, time_range: str, max_messages: int) -> list[Message]:
        oldest = oldest_ts_for_range(time_range)
        messages: list[Message] = []
        cursor: str | None = None
        pages = 0

        while len(messages) < max_messages:
            limit = min(self.page_size, max_messages - len(messages))
            payloads, cursor = self.slack_client.fetch_history_page(
                channel_id, oldest=oldest, limit=limit, cursor=cursor
            )
            pages += 1
            messages.extend(Message.from_slack(payload) for payload in payloads if payload.get("ts"))
            if not cursor:
                break

        logger.debug("Fetched %d messages from %s in %d pages", len(messages), channel_id, pages)
        return messages[:max_messages]

    def fetch_thread_replies(self, channel_id: str, root_ts: str) -> list[Message]:
        replies: list[Message] = []
        cursor: str | None = None
        try:
            while True:
                payloads, cursor = self.slack_client.fetch_replies_page(
                    channel_id, root_ts, limit=self.page_size, cursor=cursor
                )
                replies.extend(Message.from_slack(payload) for payload in payloads if payload.get("ts"))
                if not cursor:
                    break
        except AccessDenied:
            raise
        except APIError as exc:
            if exc.details.get("error") in MISSING_THREAD_ERRORS:
                logger.info("Thread %s in %s no longer exists", root_ts, channel_id)
                return []
            raise
        return replies

    def expand_threads(self, channel_id: str, root_ts_values: Iterable[str]) -> dict[str, list[Message]]:
        """Fetch replies for several threads with at most ``fanout_workers`` calls in flight."""
        roots = list(dict.fromkeys(root_ts_values))
        if not roots:
            return {}

        with ThreadPoolExecutor(max_workers=min(self.fanout_workers, len(roots))) as pool:
            futures = {root: pool.submit(self._replies_or_empty, channel_id, root) for root in roots}
            return {root: future.result() for root, future in futures.items()}

    def _replies_or_empty(self, channel_id: str, root_ts: str) -> list[Message]:
        try:
            return self.fetch_thread_replies(channel_id, root_ts)
        except AccessDenied:
            raise
        except APIError as exc:
            logger.warning("Skipping replies for thread %s: %s", root_ts, exc.message)
            return []

    def resolve_permalinks(self, channel_id: str, messages: list[Message]) -> list[Message]:
        pending = [message for message in messages if not message.permalink]
        if not pending:
            return list(messages)

        with ThreadPoolExecutor(max_workers=min(self.fanout_workers, len(pending))) as pool:
            resolved = dict(
                zip(
                    [message.ts for message in pending],
                    pool.map(lambda message: self._permalink_or_none(channel_id, message.ts), pending),
                )
            )
        return [message if message.permalink else message.with_permalink(resolved.get(message.ts)) for message in messages]

    @handle_errors(error_types=(APIError,), default_return=None, log_level=logging.WARNING)
    def _permalink_or_none(self, channel_id: str, message_ts: str) -> str | None:
        return self.slack_client.get_permalink(channel_id, message_ts)

    def validate_channel_access(self, channel_id: str) -> dict[str, Any]:
        """Return the channel's info; raises ``AccessDenied`` when the bot cannot read it."""
        return self.slack_client.get_channel_info(channel_id)
