import re
from typing import Any

from jsonschema import Draft7Validator

from .error_handler import ConfigurationError
from .utils import TIME_RANGES

SLACK_CHANNEL_RE = re.compile(r"^[CG][A-Z0-9]{8,}$")
SUPPORTED_PROVIDERS = {"openai", "anthropic", "claude", "ollama", "debug"}

_POSITIVE_INT = {"type": "integer", "minimum": 1}
_NON_NEGATIVE_NUMBER = {"type": "number", "minimum": 0}
_RATE_LIMIT = {
    "type": "object",
    "properties": {
        "max_requests_per_minute": _POSITIVE_INT,
        "min_delay_seconds": _NON_NEGATIVE_NUMBER,
        "window_seconds": {"type": "number", "exclusiveMinimum": 0},
    },
}

SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "slack": {
            "type": "object",
            "properties": {
                "base_url": {"type": "string"},
                "timeout_seconds": _POSITIVE_INT,
                "page_size": {"type": "integer", "minimum": 1, "maximum": 1000},
                "retries": {"type": "object"},
            },
        },
        "search": {
            "type": "object",
            "properties": {
                "max_messages": _POSITIVE_INT,
                "max_threads": _POSITIVE_INT,
                "include_threads": {"type": "boolean"},
                "default_time_range": {"type": "string"},
                "fanout_workers": {"type": "integer", "minimum": 1, "maximum": 10},
                "pipeline_timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
            },
        },
        "llm": {
            "type": "object",
            "properties": {
                "provider": {"type": "string"},
                "model": {"type": "string"},
                "temperature": {"type": "number", "minimum": 0, "maximum": 2},
                "topic_temperature": {"type": "number", "minimum": 0, "maximum": 2},
                "max_tokens": _POSITIVE_INT,
                "max_response_tokens": _POSITIVE_INT,
                "max_retries": {"type": "integer", "minimum": 0},
                "retry_delay_seconds": _NON_NEGATIVE_NUMBER,
                "max_chunk_length": _POSITIVE_INT,
                "timeout_seconds": _POSITIVE_INT,
            },
        },
        "rate_limits": {"type": "object", "additionalProperties": _RATE_LIMIT},
        "access": {
            "type": "object",
            "properties": {
                "allowed_channels": {"type": "array", "items": {"type": "string"}},
                "allow_all_public_channels": {"type": "boolean"},
                "allow_private_channels": {"type": "boolean"},
            },
        },
        "debug_mode": {"type": "boolean"},
        "logging": {"type": "object"},
    },
    "required": ["slack", "search", "llm"],
}


def validate_config(config: dict) -> list[str]:
    errors: list[str] = []

    validator = Draft7Validator(SCHEMA)
    for error in validator.iter_errors(config):
        location = ".".join(str(part) for part in error.path)
        errors.append(f"schema: {location + ': ' if location else ''}{error.message}")

    if not isinstance(config, dict):
        return errors

    search = config.get("search", {}) if isinstance(config.get("search"), dict) else {}
    time_range = search.get("default_time_range")
    if isinstance(time_range, str) and time_range not in TIME_RANGES:
        errors.append(f"search.default_time_range must be one of {', '.join(TIME_RANGES)}: {time_range}")

    llm = config.get("llm", {}) if isinstance(config.get("llm"), dict) else {}
    provider = llm.get("provider")
    if isinstance(provider, str) and provider.lower() not in SUPPORTED_PROVIDERS:
        errors.append(f"llm.provider is not supported: {provider}")

    max_tokens = llm.get("max_tokens")
    max_response_tokens = llm.get("max_response_tokens")
    if isinstance(max_tokens, int) and isinstance(max_response_tokens, int) and max_response_tokens >= max_tokens:
        errors.append("llm.max_response_tokens must be smaller than llm.max_tokens")

    access = config.get("access", {}) if isinstance(config.get("access"), dict) else {}
    for channel_id in access.get("allowed_channels", []) or []:
        if isinstance(channel_id, str) and not SLACK_CHANNEL_RE.match(channel_id):
            errors.append(f"access.allowed_channels has invalid channel id: {channel_id}")

    return errors


def validate_or_raise(config: dict) -> None:
    errors = validate_config(config)
    if errors:
        error_text = "\n".join(errors)
        raise ConfigurationError(f"Config validation failed:\n{error_text}", details={"errors": errors})
