import logging
import os
import random
import time
from typing import Any, cast

import requests

from .error_handler import (
    AccessDenied,
    APIError,
    ConfigurationError,
    InvalidCredentials,
    RateLimitExceeded,
    UpstreamUnavailable,
)
from .rate_limiter import SLACK_API, RateLimiter

logger = logging.getLogger(__name__)

ACCESS_ERRORS = {
    "channel_not_found",
    "not_in_channel",
    "not_allowed",
    "missing_scope",
    "access_denied",
    "is_archived",
}
AUTH_ERRORS = {"invalid_auth", "not_authed", "account_inactive", "token_revoked", "token_expired"}
RETRY_DEFAULTS: dict[str, Any] = {
    "max_attempts": 5,
    "backoff_base": 0.5,
    "backoff_max": 8.0,
    "jitter": 0.25,
    "retry_on_status": [408, 429, 500, 502, 503, 504],
    "retry_on_network_error": True,
}


def _next_cursor(data: dict[str, Any]) -> str | None:
    return data.get("response_metadata", {}).get("next_cursor") or None


class SlackClient:
    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://slack.com/api",
        timeout: int = 30,
        retry_config: dict | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self.token = token or os.getenv("SLACK_BOT_TOKEN")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.stats: dict[str, Any] = {}
        self._channel_cache: dict[str, str] = {}
        self._configure_retries(retry_config or {})
        self.reset_stats()

    def _configure_retries(self, config: dict) -> None:
        settings = {**RETRY_DEFAULTS, **config}
        self.retry_max_attempts = max(1, int(settings["max_attempts"]))
        self.retry_backoff_base = float(settings["backoff_base"])
        self.retry_backoff_max = float(settings["backoff_max"])
        self.retry_jitter = float(settings["jitter"])
        self.retry_on_status = {int(status) for status in settings["retry_on_status"]}
        self.retry_on_network_error = bool(settings["retry_on_network_error"])

    def _compute_backoff(self, attempt: int, retry_after: float | None = None) -> float:
        """Exponential delay capped at backoff_max, never shorter than Retry-After, plus jitter."""
        delay = min(self.retry_backoff_max, self.retry_backoff_base * 2 ** max(attempt - 1, 0))
        if retry_after is not None and retry_after > delay:
            delay = retry_after
        if self.retry_jitter > 0:
            delay += random.uniform(0, self.retry_jitter)
        return float(delay)

    def _parse_retry_after(self, response: requests.Response) -> float | None:
        raw = response.headers.get("Retry-After")
        try:
            return max(0.0, float(raw)) if raw is not None else None
        except (TypeError, ValueError):
            return None

    def _backoff(self, attempt: int, reason: str, path: str, retry_after: float | None = None) -> None:
        self.stats["retries"] += 1
        sleep_for = self._compute_backoff(attempt, retry_after=retry_after)
        self.stats["retry_sleep_s"] += sleep_for
        logger.warning(
            "Slack %s attempt %d/%d failed (%s). Retrying in %.2fs",
            path,
            attempt,
            self.retry_max_attempts,
            reason,
            sleep_for,
        )
        time.sleep(sleep_for)

    def _raise_for_slack_error(self, path: str, error_code: str, status_code: int | None) -> None:
        details = {"error": error_code, "method": path}
        if error_code in ACCESS_ERRORS:
            raise AccessDenied(
                f"Slack denied access for {path}: {error_code}",
                api_name=SLACK_API,
                status_code=status_code,
                details=details,
            )
        if error_code in AUTH_ERRORS:
            raise InvalidCredentials(
                f"Slack rejected the bot token: {error_code}",
                api_name=SLACK_API,
                status_code=status_code,
                details=details,
            )
        raise APIError(f"Slack API error: {error_code}", api_name=SLACK_API, status_code=status_code, details=details)

    def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json_body: dict | None = None,
    ) -> dict[str, Any]:
        if not self.token:
            raise ConfigurationError("SLACK_BOT_TOKEN is not set")

        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json; charset=utf-8",
        }

        for attempt in range(1, self.retry_max_attempts + 1):
            if self.rate_limiter is not None:
                self.rate_limiter.acquire(SLACK_API)
            try:
                self.stats["api_calls"] += 1
                response = requests.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=json_body,
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as exc:
                if not self.retry_on_network_error or attempt >= self.retry_max_attempts:
                    raise UpstreamUnavailable(
                        f"Slack API network error: {exc}", api_name=SLACK_API, details={"method": path}
                    ) from exc
                self._backoff(attempt, type(exc).__name__, path)
                continue

            try:
                data = cast(dict[str, Any], response.json())
            except ValueError as exc:
                if attempt >= self.retry_max_attempts:
                    raise UpstreamUnavailable(
                        f"Slack API error: {response.status_code} {response.text}",
                        api_name=SLACK_API,
                        status_code=response.status_code,
                    ) from exc
                self._backoff(attempt, "invalid_json", path)
                continue

            if response.status_code == 429 or data.get("error") == "ratelimited":
                retry_after = self._parse_retry_after(response)
                self.stats["rate_limit_hits"] += 1
                if attempt >= self.retry_max_attempts:
                    raise RateLimitExceeded(
                        "Slack API rate limited",
                        api_name=SLACK_API,
                        status_code=429,
                        retry_after=retry_after,
                        details={"method": path},
                    )
                self._backoff(attempt, "ratelimited", path, retry_after=retry_after)
                continue

            if response.status_code in self.retry_on_status and response.status_code >= 400:
                if attempt >= self.retry_max_attempts:
                    error = data.get("error", response.text) if isinstance(data, dict) else response.text
                    raise UpstreamUnavailable(
                        f"Slack API error: {response.status_code} {error}",
                        api_name=SLACK_API,
                        status_code=response.status_code,
                        details={"method": path},
                    )
                self._backoff(attempt, f"http_{response.status_code}", path)
                continue

            if response.status_code >= 400:
                self._raise_for_slack_error(path, str(data.get("error", response.text)), response.status_code)

            if not data.get("ok"):
                self._raise_for_slack_error(path, str(data.get("error", "unknown_error")), response.status_code)

            return data

        raise UpstreamUnavailable("Slack API request failed", api_name=SLACK_API, details={"method": path})

    def fetch_history_page(
        self,
        channel_id: str,
        oldest: str | None = None,
        latest: str | None = None,
        limit: int = 100,
        cursor: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        params: dict[str, Any] = {"channel": channel_id, "limit": limit}
        if oldest:
            params["oldest"] = oldest
        if latest:
            params["latest"] = latest
        if cursor:
            params["cursor"] = cursor
        data = self._request("GET", "conversations.history", params=params)
        return cast(list[dict[str, Any]], data.get("messages", [])), _next_cursor(data)

    def fetch_replies_page(
        self,
        channel_id: str,
        thread_ts: str,
        limit: int = 100,
        cursor: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        params: dict[str, Any] = {"channel": channel_id, "ts": thread_ts, "limit": limit}
        if cursor:
            params["cursor"] = cursor
        data = self._request("GET", "conversations.replies", params=params)
        return cast(list[dict[str, Any]], data.get("messages", [])), _next_cursor(data)

    def get_permalink(self, channel_id: str, message_ts: str) -> str | None:
        params = {"channel": channel_id, "message_ts": message_ts}
        data = self._request("GET", "chat.getPermalink", params=params)
        permalink = data.get("permalink")
        return permalink if isinstance(permalink, str) else None

    def get_channel_info(self, channel_id: str) -> dict[str, Any]:
        params = {"channel": channel_id}
        data = self._request("GET", "conversations.info", params=params)
        return cast(dict[str, Any], data.get("channel", {}))

    def find_channel_by_name(self, channel_name: str, types: str = "public_channel,private_channel") -> str | None:
        """Find a channel ID by its name (case-insensitive, leading '#' ignored)."""
        clean_name = channel_name.lstrip("#").lower()
        if clean_name in self._channel_cache:
            return self._channel_cache[clean_name]

        cursor = None
        while True:
            params: dict[str, Any] = {"types": types, "limit": 1000}
            if cursor:
                params["cursor"] = cursor

            data = self._request("GET", "conversations.list", params=params)
            for channel in data.get("channels", []):
                name = str(channel.get("name") or "").lower()
                channel_id = channel.get("id")
                if name == clean_name and isinstance(channel_id, str):
                    self._channel_cache[clean_name] = channel_id
                    return channel_id

            cursor = _next_cursor(data)
            if not cursor:
                break
        return None

    def reset_stats(self) -> None:
        self.stats = {
            "api_calls": 0,
            "retries": 0,
            "rate_limit_hits": 0,
            "retry_sleep_s": 0.0,
        }

    def get_stats(self) -> dict[str, Any]:
        return dict(self.stats)
