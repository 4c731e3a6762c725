"""End-to-end pipeline tests against in-memory Slack and the debug backend."""

import pytest

from fakes import FakeBackend, FakeSlack, slack_message

from channel_librarian.config_loader import default_config
from channel_librarian.error_handler import AccessDenied, PipelineTimeout
from channel_librarian.history_fetcher import PagedHistoryFetcher
from channel_librarian.llm_client import DebugBackend
from channel_librarian.models import SearchOptions
from channel_librarian.pipeline import LibrarianPipeline
from channel_librarian.rate_limiter import RateLimiter
from channel_librarian.summarizer import SummarizationOrchestrator


def history():
    return [
        (
            [
                slack_message("100.0", "release dates for Q3", reply_count=3),
                slack_message("200.0", "lunch?"),
                slack_message("300.0", "new Release Dates announced", reply_count=1),
                slack_message("400.0", "release dates slipping again"),
                slack_message("900.0", "deploy rollback and release dates", reply_count=1),
            ],
            None,
        )
    ]


def replies():
    return {
        "100.0": [
            slack_message("100.0", "release dates for Q3", thread_ts="100.0", reply_count=3),
            slack_message("100.1", "release dates confirmed", thread_ts="100.0"),
            slack_message("100.2", "ok", thread_ts="100.0"),
            slack_message("100.3", "release dates: May 3", thread_ts="100.0"),
        ],
        "300.0": [
            slack_message("300.0", "new Release Dates announced", thread_ts="300.0", reply_count=1),
            slack_message("300.1", "ack on the release dates", thread_ts="300.0"),
        ],
        "900.0": [
            slack_message("900.0", "deploy rollback and release dates", thread_ts="900.0", reply_count=1),
            slack_message("900.1", "rollback tested", thread_ts="900.0"),
        ],
    }


def permalink(ts):
    return f"https://acme.slack.com/archives/C123/p{ts.replace('.', '')}"


def make_pipeline(slack, backend=None, timeout_seconds=5.0):
    return LibrarianPipeline(
        PagedHistoryFetcher(slack),
        SummarizationOrchestrator(backend or DebugBackend()),
        default_options=SearchOptions(max_threads=2),
        timeout_seconds=timeout_seconds,
        json_logs=False,
    )


def test_search_expands_threads_and_summarizes_top_threads():
    slack = FakeSlack(pages=history(), replies=replies())
    backend = DebugBackend()

    outcome = make_pipeline(slack, backend).run("C123", "release dates")

    # 100.0 + 2 matching replies, 300.0 + 1 reply, 400.0, 900.0
    assert outcome.message_count == 7
    assert outcome.thread_count == 2
    assert [summary.permalink for summary in outcome.summaries] == [permalink("100.0"), permalink("300.0")]
    assert [summary.relevance_score for summary in outcome.summaries] == [0.9, 0.7]
    assert sorted(slack.reply_calls) == ["100.0", "300.0", "900.0"]
    assert len(backend.calls) == 1


def test_search_without_threads_only_uses_history():
    slack = FakeSlack(pages=history(), replies=replies())

    outcome = make_pipeline(slack).run("C123", "release dates", SearchOptions(include_threads=False, max_threads=5))

    assert outcome.message_count == 4
    assert outcome.thread_count == 4
    assert slack.reply_calls == []


def test_no_matches_skips_the_model():
    slack = FakeSlack(pages=history(), replies=replies())
    backend = FakeBackend()

    outcome = make_pipeline(slack, backend).run("C123", "kubernetes")

    assert outcome.no_results
    assert outcome.summaries == ()
    assert backend.calls == []


def test_model_outage_still_returns_local_summaries():
    slack = FakeSlack(pages=history(), replies=replies())

    outcome = make_pipeline(slack, FakeBackend()).run("C123", "release dates")

    assert [summary.text for summary in outcome.summaries] == [
        'Thread about "release dates" with 3 messages.',
        'Thread about "release dates" with 2 messages.',
    ]
    assert outcome.summaries[0].permalink == permalink("100.0")


def test_access_denied_propagates():
    slack = FakeSlack(history_error=AccessDenied("not_in_channel", api_name="slack"))

    with pytest.raises(AccessDenied):
        make_pipeline(slack).run("C123", "release dates")


def test_slow_fetch_times_out():
    slack = FakeSlack(pages=history(), replies=replies(), delay=0.5)

    with pytest.raises(PipelineTimeout):
        make_pipeline(slack, timeout_seconds=0.05).run("C123", "release dates")


def test_report_builds_one_overview():
    slack = FakeSlack(pages=history(), replies=replies())
    backend = FakeBackend(["## Release dates\n- Q3 launch confirmed for May 3"])

    outcome = make_pipeline(slack, backend).run_report("C123", "release dates")

    assert outcome.overview.startswith("## Release dates")
    assert outcome.message_count == 7
    assert outcome.thread_count == 4
    assert outcome.summaries == ()
    assert backend.calls[0]["max_tokens"] == 1000


def test_related_context_excludes_current_thread():
    slack = FakeSlack(pages=history(), replies=replies())
    backend = FakeBackend(["release dates", "This thread continues the Q3 release planning."])

    context = make_pipeline(slack, backend).related_context("C123", "900.0")

    assert context.topics == ("release dates",)
    assert [message.ts for message in context.thread_messages] == ["900.0", "900.1"]
    assert [thread.root_ts for thread in context.related_threads] == ["100.0", "300.0", "400.0"]
    assert context.synthesis == "This thread continues the Q3 release planning."
    assert len(slack.history_calls) == 1
    assert slack.history_calls[0]["oldest"] is not None


def test_related_context_outside_thread_is_empty():
    slack = FakeSlack(pages=history(), replies={})
    backend = FakeBackend()

    context = make_pipeline(slack, backend).related_context("C123", "555.0")

    assert context.thread_messages == ()
    assert context.synthesis == ""
    assert backend.calls == []


def test_from_config_wires_components():
    config = default_config()
    config["search"]["max_threads"] = 3
    config["search"]["pipeline_timeout_seconds"] = 10
    config["slack"]["page_size"] = 50

    pipeline = LibrarianPipeline.from_config(
        config, slack_client=FakeSlack(), backend=DebugBackend(), rate_limiter=RateLimiter()
    )

    assert pipeline.fetcher.page_size == 50
    assert pipeline.default_options.max_threads == 3
    assert pipeline.timeout_seconds == 10.0
    assert isinstance(pipeline.orchestrator.backend, DebugBackend)
    assert pipeline.orchestrator.config.max_tokens == 4000


def test_from_config_applies_prompt_overrides():
    config = default_config()
    config["prompts"] = {"default": {"max_response_tokens": 77}}
    backend = FakeBackend(default=f"Summary: Dates moved.\nLink: {permalink('100.0')}\nScore: 0.8")
    pipeline = LibrarianPipeline.from_config(
        config, slack_client=FakeSlack(pages=history()), backend=backend, rate_limiter=RateLimiter()
    )

    pipeline.run("C123", "release dates", SearchOptions(include_threads=False, max_threads=1))

    assert backend.calls[0]["max_tokens"] == 77
