import unittest
from unittest import mock

import requests

from channel_librarian.error_handler import (
    AccessDenied,
    APIError,
    ConfigurationError,
    InvalidCredentials,
    RateLimitExceeded,
    UpstreamUnavailable,
)
from channel_librarian.rate_limiter import SLACK_API, RateLimiter, RateLimitPolicy
from channel_librarian.slack_client import SlackClient

NO_BACKOFF = {"max_attempts": 3, "backoff_base": 0, "backoff_max": 0, "jitter": 0}


class FakeResponse:
    def __init__(self, status_code, json_data=None, text="", headers=None):
        self.status_code = status_code
        self._json_data = json_data
        self.text = text
        self.headers = headers or {}

    def json(self):
        if isinstance(self._json_data, Exception):
            raise self._json_data
        return self._json_data


class StubSlackClient(SlackClient):
    def __init__(self, responses):
        super().__init__(token="test", base_url="https://example.com")
        self.responses = list(responses)
        self.requests = []

    def _request(self, method, path, params=None, json_body=None):
        self.requests.append({"method": method, "path": path, "params": params, "json_body": json_body})
        if not self.responses:
            raise AssertionError("No more stub responses available")
        return self.responses.pop(0)


def queued(responses):
    def fake_request(*args, **kwargs):
        response = responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    return fake_request


class SlackRetryTests(unittest.TestCase):
    def test_retries_on_429_then_succeeds(self):
        responses = [
            FakeResponse(429, {"ok": False, "error": "ratelimited"}, headers={"Retry-After": "0"}),
            FakeResponse(200, {"ok": True}),
        ]

        with mock.patch("requests.request", side_effect=queued(responses)) as req_mock, mock.patch("time.sleep"):
            client = SlackClient(token="x", retry_config=NO_BACKOFF)
            data = client._request("GET", "test")

        self.assertEqual(data.get("ok"), True)
        self.assertEqual(req_mock.call_count, 2)
        self.assertEqual(client.get_stats()["rate_limit_hits"], 1)

    def test_retry_after_header_sets_the_wait(self):
        responses = [
            FakeResponse(429, {"ok": False, "error": "ratelimited"}, headers={"Retry-After": "7"}),
            FakeResponse(200, {"ok": True}),
        ]

        with mock.patch("requests.request", side_effect=queued(responses)), mock.patch("time.sleep") as sleep_mock:
            client = SlackClient(token="x", retry_config=NO_BACKOFF)
            client._request("GET", "test")

        sleep_mock.assert_called_once_with(7.0)

    def test_exhausted_rate_limit_raises_typed_error(self):
        responses = [FakeResponse(429, {"ok": False, "error": "ratelimited"}) for _ in range(3)]

        with mock.patch("requests.request", side_effect=queued(responses)), mock.patch("time.sleep"):
            client = SlackClient(token="x", retry_config=NO_BACKOFF)
            with self.assertRaises(RateLimitExceeded) as ctx:
                client._request("GET", "conversations.history")

        self.assertEqual(ctx.exception.status_code, 429)

    def test_server_errors_become_upstream_unavailable(self):
        responses = [FakeResponse(503, {"ok": False, "error": "service_unavailable"}) for _ in range(3)]

        with mock.patch("requests.request", side_effect=queued(responses)) as req_mock, mock.patch("time.sleep"):
            client = SlackClient(token="x", retry_config=NO_BACKOFF)
            with self.assertRaises(UpstreamUnavailable):
                client._request("GET", "conversations.history")

        self.assertEqual(req_mock.call_count, 3)

    def test_network_errors_are_retried(self):
        responses = [requests.exceptions.ConnectionError("reset"), FakeResponse(200, {"ok": True, "messages": []})]

        with mock.patch("requests.request", side_effect=queued(responses)) as req_mock, mock.patch("time.sleep"):
            client = SlackClient(token="x", retry_config=NO_BACKOFF)
            client._request("GET", "conversations.history")

        self.assertEqual(req_mock.call_count, 2)

    def test_network_errors_exhausted(self):
        responses = [requests.exceptions.Timeout("slow") for _ in range(3)]

        with mock.patch("requests.request", side_effect=queued(responses)), mock.patch("time.sleep"):
            client = SlackClient(token="x", retry_config=NO_BACKOFF)
            with self.assertRaises(UpstreamUnavailable):
                client._request("GET", "conversations.history")

    def test_channel_not_found_is_access_denied_without_retry(self):
        responses = [FakeResponse(200, {"ok": False, "error": "channel_not_found"})]

        with mock.patch("requests.request", side_effect=queued(responses)) as req_mock:
            client = SlackClient(token="x", retry_config=NO_BACKOFF)
            with self.assertRaises(AccessDenied) as ctx:
                client._request("GET", "conversations.history")

        self.assertEqual(req_mock.call_count, 1)
        self.assertEqual(ctx.exception.details["error"], "channel_not_found")

    def test_invalid_auth(self):
        responses = [FakeResponse(200, {"ok": False, "error": "invalid_auth"})]

        with mock.patch("requests.request", side_effect=queued(responses)):
            client = SlackClient(token="x", retry_config=NO_BACKOFF)
            with self.assertRaises(InvalidCredentials):
                client._request("GET", "conversations.history")

    def test_other_slack_errors_keep_the_code(self):
        responses = [FakeResponse(200, {"ok": False, "error": "thread_not_found"})]

        with mock.patch("requests.request", side_effect=queued(responses)):
            client = SlackClient(token="x", retry_config=NO_BACKOFF)
            with self.assertRaises(APIError) as ctx:
                client._request("GET", "conversations.replies")

        self.assertEqual(ctx.exception.details["error"], "thread_not_found")

    def test_missing_token(self):
        client = SlackClient(token="x")
        client.token = None
        with self.assertRaises(ConfigurationError):
            client._request("GET", "conversations.history")

    def test_every_attempt_goes_through_the_rate_limiter(self):
        responses = [FakeResponse(503, {"ok": False}), FakeResponse(200, {"ok": True})]
        limiter = RateLimiter(
            policies={SLACK_API: RateLimitPolicy(max_requests_per_window=10, min_delay_seconds=0)},
            clock=lambda: 0.0,
            sleep=lambda seconds: None,
        )

        with mock.patch("requests.request", side_effect=queued(responses)), mock.patch("time.sleep"):
            client = SlackClient(token="x", retry_config=NO_BACKOFF, rate_limiter=limiter)
            client._request("GET", "conversations.history")

        self.assertEqual(limiter.snapshot(SLACK_API)["requests_in_window"], 2)


class SlackClientPaginationTests(unittest.TestCase):
    def test_fetch_history_page_returns_cursor(self):
        client = StubSlackClient(
            [{"ok": True, "messages": [{"ts": "1"}], "response_metadata": {"next_cursor": "abc"}}]
        )

        messages, cursor = client.fetch_history_page("C123", oldest="100", limit=50, cursor="prev")

        self.assertEqual([message["ts"] for message in messages], ["1"])
        self.assertEqual(cursor, "abc")
        self.assertEqual(
            client.requests[0]["params"], {"channel": "C123", "limit": 50, "oldest": "100", "cursor": "prev"}
        )

    def test_empty_cursor_means_last_page(self):
        client = StubSlackClient([{"ok": True, "messages": [], "response_metadata": {"next_cursor": ""}}])

        _, cursor = client.fetch_replies_page("C123", "1.0")

        self.assertIsNone(cursor)
        self.assertEqual(client.requests[0]["path"], "conversations.replies")

    def test_find_channel_by_name_is_cached(self):
        client = StubSlackClient([{"ok": True, "channels": [{"name": "Releases", "id": "C999"}]}])

        self.assertEqual(client.find_channel_by_name("#releases"), "C999")
        self.assertEqual(client.find_channel_by_name("releases"), "C999")
        self.assertEqual(len(client.requests), 1)

    def test_get_permalink(self):
        client = StubSlackClient([{"ok": True, "permalink": "https://x.slack.com/archives/C1/p1"}])

        self.assertEqual(client.get_permalink("C1", "1.0"), "https://x.slack.com/archives/C1/p1")


if __name__ == "__main__":
    unittest.main()
