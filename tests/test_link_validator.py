from channel_librarian.link_validator import GENERIC_PERMALINK, is_valid_link, validate, validate_summaries
from channel_librarian.models import Message, Thread, ThreadSummary


def make_thread(root_ts: str, permalink: str | None) -> Thread:
    return Thread(
        root_ts=root_ts,
        messages=(Message(ts=root_ts, user="U1", text="hi", thread_ts=root_ts),),
        permalink=permalink,
    )


def test_valid_link_is_kept():
    assert validate("https://acme.slack.com/archives/C1/p1", "https://fallback") == "https://acme.slack.com/archives/C1/p1"


def test_plain_http_is_accepted():
    assert is_valid_link("http://intranet/thread") is True


def test_placeholder_uses_fallback():
    assert validate("[permalink]", "https://acme.slack.com/p2") == "https://acme.slack.com/p2"
    assert validate("https://acme.slack.com/[thread]", "https://acme.slack.com/p2") == "https://acme.slack.com/p2"


def test_missing_link_uses_fallback():
    assert validate(None, "https://acme.slack.com/p2") == "https://acme.slack.com/p2"
    assert validate("", "https://acme.slack.com/p2") == "https://acme.slack.com/p2"


def test_non_url_text_without_fallback_uses_generic():
    assert validate("see thread above", None) == GENERIC_PERMALINK
    assert validate("slack.com/p1", "[also bad]") == GENERIC_PERMALINK


def test_non_http_scheme_is_invalid():
    assert is_valid_link("ftp://x") is False
    assert is_valid_link("https://chat.example.com/archives/C1/p123") is True


def test_non_string_link_is_invalid():
    assert is_valid_link(42) is False
    assert validate(42, None) == GENERIC_PERMALINK


def test_validate_summaries_replaces_by_position():
    threads = [make_thread("1.0", "https://acme.slack.com/p1"), make_thread("2.0", "https://acme.slack.com/p2")]
    summaries = [
        ThreadSummary("ok", "https://acme.slack.com/p9", 0.9),
        ThreadSummary("placeholder", "[link]", 0.4),
        ThreadSummary("past the end", None, 0.2),
    ]

    validated = validate_summaries(summaries, threads)

    assert [s.permalink for s in validated] == [
        "https://acme.slack.com/p9",
        "https://acme.slack.com/p2",
        "https://acme.slack.com/p2",
    ]
    assert validated[0] is summaries[0]
    assert [s.relevance_score for s in validated] == [0.9, 0.4, 0.2]


def test_validate_summaries_without_threads():
    (summary,) = validate_summaries([ThreadSummary("x", "nope")], [])

    assert summary.permalink == GENERIC_PERMALINK
