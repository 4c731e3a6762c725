import unittest

from channel_librarian.models import Message, Thread
from channel_librarian.response_parser import ResponseParser, clean_link, parse_response, parse_score


def make_thread(root_ts: str, size: int, permalink: str | None = None) -> Thread:
    messages = [Message(ts=root_ts, user="U1", text="root", thread_ts=root_ts)]
    for index in range(1, size):
        messages.append(Message(ts=f"{root_ts}{index}", user="U2", text="reply", thread_ts=root_ts))
    return Thread(root_ts=root_ts, messages=tuple(messages), permalink=permalink)


class ResponseParserTests(unittest.TestCase):
    def setUp(self):
        self.threads = [
            make_thread("1.0", 4, "https://acme.slack.com/p1"),
            make_thread("2.0", 3, "https://acme.slack.com/p2"),
            make_thread("3.0", 2, "https://acme.slack.com/p3"),
            make_thread("4.0", 2, "https://acme.slack.com/p4"),
        ]
        self.parser = ResponseParser()

    def test_well_formed_blocks(self):
        raw = (
            "Summary: Launch moved to May.\nLink: https://acme.slack.com/p2\nScore: 0.8\n\n"
            "Summary: QA sign-off pending.\nLink: https://acme.slack.com/p1\nScore: 0.6"
        )

        summaries = self.parser.parse(raw, self.threads, "release dates")

        self.assertEqual(["Launch moved to May.", "QA sign-off pending."], [s.text for s in summaries])
        self.assertEqual(["https://acme.slack.com/p2", "https://acme.slack.com/p1"], [s.permalink for s in summaries])
        self.assertEqual([0.8, 0.6], [s.relevance_score for s in summaries])

    def test_block_missing_link_uses_matching_thread(self):
        raw = (
            "Summary: Launch moved to May.\nLink: https://acme.slack.com/p1\nScore: 0.9\n\n"
            "Summary: Marketing wants a later date.\nScore: 0.7"
        )

        summaries = self.parser.parse(raw, self.threads, "release dates")

        self.assertEqual(2, len(summaries))
        self.assertEqual("https://acme.slack.com/p1", summaries[0].permalink)
        self.assertEqual("https://acme.slack.com/p2", summaries[1].permalink)
        self.assertEqual(0.7, summaries[1].relevance_score)

    def test_block_missing_score_defaults(self):
        raw = "Summary: Launch moved.\nLink: https://acme.slack.com/p1"

        (summary,) = self.parser.parse(raw, self.threads, "release")

        self.assertEqual(0.5, summary.relevance_score)

    def test_markdown_labels_are_tolerated(self):
        raw = "**Summary:** Launch moved to May.\n**Link:** <https://acme.slack.com/p3>\n**Score:** 0.75"

        (summary,) = self.parser.parse(raw, self.threads, "release")

        self.assertEqual("Launch moved to May.", summary.text)
        self.assertEqual("https://acme.slack.com/p3", summary.permalink)
        self.assertEqual(0.75, summary.relevance_score)

    def test_blocks_separated_by_rules(self):
        raw = (
            "Summary: First.\nLink: https://acme.slack.com/p1\n"
            "---\n"
            "Summary: Second.\nScore: 0.4"
        )

        summaries = self.parser.parse(raw, self.threads, "release")

        self.assertEqual(["First.", "Second."], [s.text for s in summaries])
        self.assertEqual("https://acme.slack.com/p2", summaries[1].permalink)

    def test_scores_are_clamped(self):
        raw = (
            "Summary: Too high.\nLink: https://a/1\nScore: 1.7\n\n"
            "Summary: Trailing dot.\nLink: https://a/2\nScore: 0.8."
        )

        summaries = self.parser.parse(raw, self.threads, "release")

        self.assertEqual([1.0, 0.8], [s.relevance_score for s in summaries])

    def test_garbage_falls_back_to_local_summaries(self):
        summaries = self.parser.parse("I could not find anything useful.", self.threads, "release dates")

        self.assertEqual(3, len(summaries))
        self.assertEqual([0.9, 0.7, 0.5], [s.relevance_score for s in summaries])
        self.assertEqual('Thread with 4 messages about "release dates"', summaries[0].text)
        self.assertEqual(["https://acme.slack.com/p1", "https://acme.slack.com/p2", "https://acme.slack.com/p3"],
                         [s.permalink for s in summaries])

    def test_empty_response_falls_back(self):
        with self.assertLogs("channel_librarian.response_parser", level="WARNING"):
            summaries = self.parser.parse("", self.threads[:2], None)

        self.assertEqual(["Thread with 4 messages", "Thread with 3 messages"], [s.text for s in summaries])

    def test_no_threads_and_garbage_yields_nothing(self):
        self.assertEqual([], parse_response("nonsense", [], "release"))
        self.assertEqual([], parse_response(None, [], "release"))

    def test_missing_link_without_threads_stays_empty(self):
        (summary,) = parse_response("Summary: Orphan.\nScore: 0.3", [], "release")

        self.assertIsNone(summary.permalink)


class HelperTests(unittest.TestCase):
    def test_parse_score(self):
        self.assertEqual(0.5, parse_score(None))
        self.assertEqual(0.5, parse_score("..."))
        self.assertEqual(0.0, parse_score("0"))
        self.assertEqual(1.0, parse_score("3"))

    def test_clean_link(self):
        self.assertIsNone(clean_link(None))
        self.assertIsNone(clean_link("  "))
        self.assertEqual("https://a/b", clean_link(" `https://a/b` "))
        self.assertEqual("https://a/b", clean_link("<https://a/b|thread>"))


if __name__ == "__main__":
    unittest.main()
