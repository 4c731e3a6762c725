"""Channel Librarian: search a Slack channel's history and summarize the matching threads."""

from .error_handler import (
    AccessDenied,
    APIError,
    ConfigurationError,
    ContextTooLarge,
    LibrarianError,
    PipelineTimeout,
    RateLimitExceeded,
    UpstreamUnavailable,
    user_message,
)
from .models import ContextOutcome, Message, SearchOptions, SearchOutcome, Thread, ThreadSummary
from .pipeline import LibrarianPipeline
from .rate_limiter import RateLimiter, get_rate_limiter

__all__ = [
    "APIError",
    "AccessDenied",
    "ConfigurationError",
    "ContextOutcome",
    "ContextTooLarge",
    "LibrarianError",
    "LibrarianPipeline",
    "Message",
    "PipelineTimeout",
    "RateLimitExceeded",
    "RateLimiter",
    "SearchOptions",
    "SearchOutcome",
    "Thread",
    "ThreadSummary",
    "UpstreamUnavailable",
    "get_rate_limiter",
    "user_message",
]
