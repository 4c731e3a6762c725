import argparse
import json
import logging
import sys
from typing import Any

from dotenv import load_dotenv

from .block_kit import error_view, help_view, results_view, summary_view
from .channel_access import ChannelAccessPolicy
from .command_parser import parse_command
from .config_loader import load_config
from .config_validation import validate_or_raise
from .error_handler import AccessDenied, LibrarianError, user_message
from .logging_utils import configure_logging, log_event
from .models import SearchOptions
from .pipeline import LibrarianPipeline

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "No messages found matching your search"


def _emit(payload: dict[str, Any], text: str, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
    else:
        print(text)


def _resolve_channel(pipeline: LibrarianPipeline, channel: str) -> str:
    if not channel.startswith("#"):
        return channel
    slack = pipeline.fetcher.slack_client
    channel_id = slack.find_channel_by_name(channel) if hasattr(slack, "find_channel_by_name") else None
    if not channel_id:
        raise AccessDenied(f'Channel "{channel}" not found', api_name="slack", details={"channel": channel})
    return str(channel_id)


def _check_access(pipeline: LibrarianPipeline, policy: ChannelAccessPolicy, channel_id: str) -> None:
    info = pipeline.fetcher.validate_channel_access(channel_id)
    if not policy.is_channel_allowed(channel_id, is_private=bool(info.get("is_private"))):
        raise AccessDenied("Channel access not allowed", api_name="slack", details={"channel": channel_id})


def _options_from_args(config: dict[str, Any], args: argparse.Namespace) -> SearchOptions:
    return SearchOptions.from_config(
        config,
        include_threads=False if getattr(args, "no_threads", False) else getattr(args, "include_threads", None),
        time_range=getattr(args, "range", None),
        max_messages=getattr(args, "max_messages", None),
        max_threads=getattr(args, "max_threads", None),
    )


def slash_args(args: argparse.Namespace) -> argparse.Namespace | str:
    """Map raw ``/librarian`` text onto the same fields the subcommands produce, or return an error."""
    parsed = parse_command(" ".join(args.text))
    if parsed.error:
        return parsed.error
    if parsed.action == "context" and not args.thread_ts:
        return "This command must be used in a thread"
    return argparse.Namespace(
        command=parsed.action,
        json=args.json,
        channel=args.channel,
        topic=parsed.topic.split(),
        include_threads=parsed.include_threads,
        range=parsed.time_range,
        thread_ts=args.thread_ts,
        variant=None,
    )


def run_command(args: argparse.Namespace, config: dict[str, Any], pipeline: LibrarianPipeline) -> int:
    if args.command == "slash":
        mapped = slash_args(args)
        if isinstance(mapped, str):
            _emit(error_view(mapped), mapped, args.json)
            return 1
        args = mapped

    if args.command == "help":
        _emit(help_view(), "Commands: search <channel> <topic>, report <channel> <topic>, context <channel> <thread_ts>", args.json)
        return 0

    channel_id = _resolve_channel(pipeline, args.channel)
    _check_access(pipeline, ChannelAccessPolicy.from_config(config), channel_id)

    if args.command == "context":
        context = pipeline.related_context(channel_id, args.thread_ts)
        if not context.thread_messages:
            _emit(error_view("This command must be used in a thread"), "This command must be used in a thread", args.json)
            return 1
        _emit(
            summary_view(context.synthesis, ", ".join(context.topics), len(context.thread_messages)),
            context.synthesis,
            args.json,
        )
        return 0

    topic = " ".join(args.topic)
    options = _options_from_args(config, args)

    if args.command == "report":
        outcome = pipeline.run_report(channel_id, topic, options, prompt_variant=args.variant or "report")
        if outcome.no_results:
            _emit(error_view(NO_RESULTS_MESSAGE), NO_RESULTS_MESSAGE, args.json)
            return 0
        max_chunk = int(config.get("llm", {}).get("max_chunk_length", 3000))
        _emit(
            summary_view(outcome.overview or "", topic, outcome.message_count, max_chunk_length=max_chunk),
            outcome.overview or "",
            args.json,
        )
        return 0

    outcome = pipeline.run(channel_id, topic, options, prompt_variant=args.variant or "default")
    if outcome.no_results:
        _emit(error_view(NO_RESULTS_MESSAGE), NO_RESULTS_MESSAGE, args.json)
        return 0
    lines = [f"Found in {outcome.message_count} messages across {len(outcome.summaries)} threads"]
    for summary in outcome.summaries:
        lines.append(f"- ({summary.relevance_score:.2f}) {summary.text}\n  {summary.permalink}")
    _emit(results_view(outcome.summaries, outcome.message_count), "\n".join(lines), args.json)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Search and summarize Slack channel history")
    parser.add_argument("--config", default="config.json", help="Path to config.json")
    parser.add_argument("--debug", action="store_true", help="Bypass the model and return canned summaries")
    parser.add_argument("--json", action="store_true", help="Print Block Kit JSON instead of text")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("search", "Summarize threads matching a topic"), ("report", "Write a detailed report on a topic")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("channel", help="Channel ID or #name")
        sub.add_argument("topic", nargs="+", help="Words that must all appear in a message")
        sub.add_argument("--no-threads", action="store_true", help="Skip thread replies")
        sub.add_argument("--range", choices=["24h", "7d", "30d"], help="How far back to look")
        sub.add_argument("--max-messages", type=int, help="Cap on fetched messages")
        sub.add_argument("--max-threads", type=int, help="Cap on summarized threads")
        sub.add_argument("--variant", choices=["default", "context", "report"], help="Prompt variant")

    context = subparsers.add_parser("context", help="Find discussions related to a thread")
    context.add_argument("channel", help="Channel ID or #name")
    context.add_argument("thread_ts", help="Timestamp of the thread's first message")

    slash = subparsers.add_parser("slash", help="Run raw slash-command text, e.g. 'search release dates --range 7d'")
    slash.add_argument("channel", help="Channel ID or #name")
    slash.add_argument("text", nargs=argparse.REMAINDER, help="Command text as typed after /librarian")
    slash.add_argument("--thread-ts", help="Thread the command was typed in")

    subparsers.add_parser("help", help="Show command help")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    config = load_config(args.config, overrides={"debug_mode": True} if args.debug else None)
    logging_settings = config.get("logging", {})
    json_logs = bool(logging_settings.get("json", True))
    configure_logging(level=str(logging_settings.get("level", "INFO")), json_enabled=json_logs)

    try:
        if config.get("validate_config_on_startup", True):
            validate_or_raise(config)
        pipeline = LibrarianPipeline.from_config(config)
        return run_command(args, config, pipeline)
    except LibrarianError as exc:
        log_event(
            logger,
            f"cli_{args.command}",
            "failed",
            level=logging.ERROR,
            json_enabled=json_logs,
            error_type=type(exc).__name__,
            error=exc.message,
        )
        message = user_message(exc)
        _emit(error_view(message), message, args.json)
        return 1


if __name__ == "__main__":
    sys.exit(main())
