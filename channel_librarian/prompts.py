"""Prompt templates and the named prompt variants."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from .models import Message, Thread
from .utils import format_ts


@dataclass(frozen=True)
class PromptVariant:
    name: str
    system_prompt: str
    instruction: str
    max_response_tokens: int


SUMMARIZER_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes Slack channel messages. You analyze the most recent "
    "messages from the channel that match the user's query. Focus on providing concise, relevant "
    "information that directly addresses the user's query. Note that you only see messages that "
    "contain the search terms exactly."
)

TOPIC_EXTRACTOR_SYSTEM_PROMPT = (
    "You are a helpful assistant that extracts key topics from text. Focus on specific, actionable "
    "topics that can be used for search queries."
)

PROMPT_VARIANTS: dict[str, PromptVariant] = {
    "default": PromptVariant(
        name="default",
        system_prompt=SUMMARIZER_SYSTEM_PROMPT,
        instruction="Please provide a concise summary of the key points that address the user's query.",
        max_response_tokens=500,
    ),
    "context": PromptVariant(
        name="context",
        system_prompt=SUMMARIZER_SYSTEM_PROMPT
        + " Give the broader context: who was involved, what was decided and what is still open.",
        instruction=(
            "Please explain the full context of this topic: how the discussion developed, the decisions "
            "made, and any open questions."
        ),
        max_response_tokens=750,
    ),
    "report": PromptVariant(
        name="report",
        system_prompt=SUMMARIZER_SYSTEM_PROMPT
        + " Write exhaustive, well-structured reports with headings and bullet points.",
        instruction=(
            "Please write a detailed, well-structured report covering every relevant point, decision, "
            "owner and date mentioned in these messages, grouped under clear headings."
        ),
        max_response_tokens=1000,
    ),
}

MESSAGE_CONTEXT_TEMPLATE = """Here are the relevant messages from the Slack channel:

{messages}

User Query: "{query}"

{instruction}"""

THREAD_SUMMARY_TEMPLATE = """Analyze these Slack threads and provide a one-sentence summary for each that captures the key point or decision. Focus on what makes each thread unique and valuable.

Search Topic: "{topic}"

{threads}

For each thread, provide:
1. A one-sentence summary that captures the key point or decision
2. The exact permalink as provided above (do not replace with placeholders)
3. A relevance score (0-1) based on how directly it addresses the search topic

Format each thread as:
Summary: [one sentence]
Link: [exact permalink from above]
Score: [0-1]

Sort threads by relevance score."""

TOPIC_EXTRACTION_TEMPLATE = """Analyze the following text and extract 2-3 main topics or themes being discussed. Return them as a comma-separated list of short phrases (2-4 words each). Focus on specific, searchable terms that are likely to appear in messages, as the search uses exact text matching.

Text:
{text}

Topics:"""

CONTEXT_SYNTHESIS_TEMPLATE = """Analyze the following thread and related discussions to provide context:

Current Thread:
{thread}

Related Discussions:
{related}

Please provide:
1. A brief summary of the current thread discussion
2. A list of the most relevant related discussions with brief descriptions
3. How these discussions connect to the current topic

Format the response in a clear, concise way that helps maintain conversation continuity."""


def get_prompt_variant(name: str | None, config: dict[str, Any] | None = None) -> PromptVariant:
    """Look up a variant by name; config may override a variant's response budget."""
    variant = PROMPT_VARIANTS.get((name or "default").lower(), PROMPT_VARIANTS["default"])
    overrides = ((config or {}).get("prompts") or {}).get(variant.name) or {}
    if not overrides:
        return variant
    return PromptVariant(
        name=variant.name,
        system_prompt=overrides.get("system_prompt", variant.system_prompt),
        instruction=overrides.get("instruction", variant.instruction),
        max_response_tokens=int(overrides.get("max_response_tokens", variant.max_response_tokens)),
    )


def format_message_line(message: Message, with_time: bool = False) -> str:
    author = message.user or "User"
    text = message.text or "No text"
    if with_time:
        return f"{author} ({format_ts(message.ts)}): {text}"
    return f"{author}: {text}"


def build_thread_summary_prompt(threads: Sequence[Thread], topic: str) -> str:
    sections = []
    for index, thread in enumerate(threads):
        permalink = thread.permalink or f"https://slack.com/thread-{index}"
        lines = "\n\n".join(format_message_line(message) for message in thread.messages)
        sections.append(f"Thread {index + 1}:\nPermalink: {permalink}\nMessages:\n{lines}")
    return THREAD_SUMMARY_TEMPLATE.format(topic=topic, threads="\n\n---\n\n".join(sections))


def build_overall_prompt(messages: Sequence[Message], topic: str, variant: PromptVariant) -> str:
    formatted = "\n\n".join(format_message_line(message, with_time=True) for message in messages)
    return MESSAGE_CONTEXT_TEMPLATE.format(messages=formatted, query=topic, instruction=variant.instruction)


def build_topic_extraction_prompt(messages: Sequence[Message]) -> str:
    text = "\n\n".join(format_message_line(message) for message in messages)
    return TOPIC_EXTRACTION_TEMPLATE.format(text=text)


def build_context_synthesis_prompt(thread_messages: Sequence[Message], related_threads: Sequence[Thread]) -> str:
    current = "\n\n".join(format_message_line(message) for message in thread_messages)
    related = "\n\n".join(
        f"Thread: {thread.permalink or 'unknown'}\n"
        + "\n\n".join(format_message_line(message) for message in thread.messages)
        for thread in related_threads
    )
    return CONTEXT_SYNTHESIS_TEMPLATE.format(thread=current, related=related or "None found.")
