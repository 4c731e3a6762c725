"""
Centralized Error Handling Module
Typed failures raised by the search and summarization pipeline, and the
single place where they are turned into user-facing text.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class LibrarianError(Exception):
    """Base exception for all Channel Librarian errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(LibrarianError):
    """Raised when configuration is invalid or missing."""

    pass


class APIError(LibrarianError):
    """Raised when an upstream API call fails (Slack or the model provider)."""

    def __init__(
        self,
        message: str,
        api_name: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.api_name = api_name
        self.status_code = status_code


class AccessDenied(APIError):
    """The bot cannot read the channel. Never retried."""

    pass


class RateLimitExceeded(APIError):
    """Local throttling ceiling hit, or upstream 429 after all retries."""

    def __init__(
        self,
        message: str,
        api_name: str,
        status_code: int | None = None,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, api_name, status_code=status_code, details=details)
        self.retry_after = retry_after


class UpstreamUnavailable(APIError):
    """5xx, timeout or connection reset from an external API."""

    pass


class InvalidCredentials(APIError):
    """The API key or token was rejected."""

    pass


class MalformedRequest(APIError):
    """The upstream API rejected the request payload."""

    pass


class ContextTooLarge(LibrarianError):
    """The model request exceeds the configured token budget."""

    def __init__(self, message: str, estimated_tokens: int, budget: int):
        super().__init__(message, details={"estimated_tokens": estimated_tokens, "budget": budget})
        self.estimated_tokens = estimated_tokens
        self.budget = budget


class PipelineTimeout(LibrarianError):
    """The whole search took longer than the configured deadline."""

    pass


RETRYABLE_ERRORS: tuple[type[LibrarianError], ...] = (RateLimitExceeded, UpstreamUnavailable)


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, RETRYABLE_ERRORS)


def user_message(error: BaseException) -> str:
    """Map a failure that escaped the pipeline to one short actionable sentence."""
    if isinstance(error, AccessDenied):
        return "I can't read this channel. Invite me with `/invite @librarian` and try again."
    if isinstance(error, ContextTooLarge):
        return "That search matched too much history to summarize. Try a narrower topic or a shorter time range."
    if isinstance(error, RateLimitExceeded):
        return "I'm being rate limited right now. Please try again in a minute."
    if isinstance(error, PipelineTimeout):
        return "The search took too long. Try a narrower topic or a shorter time range."
    if isinstance(error, UpstreamUnavailable):
        return "Slack or the summarization service is unavailable. Please try again shortly."
    if isinstance(error, InvalidCredentials):
        return "My credentials were rejected. Please ask an admin to check the bot configuration."
    if isinstance(error, ConfigurationError):
        return "The bot is misconfigured. Please ask an admin to check the configuration."
    return "Error performing search. Please try again."


def handle_errors(
    error_types: tuple[type[Exception], ...] = (Exception,),
    default_return: Any = None,
    log_level: int = logging.ERROR,
    reraise: bool = False,
) -> Callable[[F], F]:
    """
    Decorator for handling errors in functions.

    Args:
        error_types: Tuple of exception types to catch
        default_return: Value to return on error (if not reraising)
        log_level: Logging level for errors
        reraise: Whether to reraise the exception after logging

    Example:
        @handle_errors(error_types=(APIError,), default_return=None)
        def get_permalink(channel_id, ts):
            return client.chat_get_permalink(channel_id, ts)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except error_types as e:
                logger.log(
                    log_level,
                    "Error in %s: %s",
                    func.__name__,
                    str(e),
                    exc_info=log_level >= logging.ERROR,
                    extra={"function": func.__name__, "error_type": type(e).__name__},
                )

                if reraise:
                    raise

                return default_return

        return wrapper  # type: ignore

    return decorator
