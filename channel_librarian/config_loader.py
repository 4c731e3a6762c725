import json
import os
import re
from typing import Any, cast

DEFAULT_CONFIG = {
    "slack": {
        "token_env": "SLACK_BOT_TOKEN",
        "base_url": "https://slack.com/api",
        "timeout_seconds": 30,
        "page_size": 100,
        "retries": {
            "max_attempts": 5,
            "backoff_base": 0.5,
            "backoff_max": 8.0,
            "jitter": 0.25,
            "retry_on_status": [408, 429, 500, 502, 503, 504],
            "retry_on_network_error": True,
        },
    },
    "search": {
        "max_messages": 500,
        "max_threads": 5,
        "include_threads": True,
        "default_time_range": "24h",
        "fanout_workers": 5,
        "pipeline_timeout_seconds": 60,
    },
    "llm": {
        "provider": "openai",
        "model": "gpt-3.5-turbo",
        "api_key_env": "LLM_API_KEY",
        "base_url": None,
        "temperature": 0.7,
        "topic_temperature": 0.3,
        "max_tokens": 4000,
        "max_response_tokens": 500,
        "max_retries": 3,
        "retry_delay_seconds": 1.0,
        "max_chunk_length": 3000,
        "timeout_seconds": 60,
    },
    "prompts": {},
    "rate_limits": {
        "slack": {"max_requests_per_minute": 100, "min_delay_seconds": 0.1, "window_seconds": 60},
        "llm": {"max_requests_per_minute": 50, "min_delay_seconds": 1.0, "window_seconds": 60},
    },
    "access": {
        "allowed_channels": [],
        "allow_all_public_channels": False,
        "allow_private_channels": True,
    },
    "debug_mode": False,
    "validate_config_on_startup": True,
    "logging": {"json": True, "level": "INFO"},
}

ENV_VAR_PATTERN = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


def _resolve_env_placeholder(value: str) -> str:
    stripped = value.strip()
    if stripped.startswith("env:"):
        var_name = stripped[4:].strip()
        return os.getenv(var_name, "") if var_name else ""
    match = ENV_VAR_PATTERN.match(stripped)
    if match:
        return os.getenv(match.group(1), "")
    return value


def _resolve_env_in_config(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _resolve_env_in_config(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve_env_in_config(item) for item in value]
    if isinstance(value, str):
        return _resolve_env_placeholder(value)
    return value


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and key in base and isinstance(base[key], dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def default_config() -> dict[str, Any]:
    return cast(dict[str, Any], json.loads(json.dumps(DEFAULT_CONFIG)))


def load_config(config_path: str | None = None, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Defaults, then the JSON file (if it exists), then explicit overrides."""
    config = default_config()

    if config_path:
        full_path = config_path
        if not os.path.isabs(full_path):
            full_path = os.path.join(os.getcwd(), config_path)
        if os.path.exists(full_path):
            with open(full_path, "r", encoding="utf-8") as handle:
                user_config = cast(dict[str, Any], json.load(handle))
            _deep_merge(config, user_config)

    if overrides:
        _deep_merge(config, overrides)

    if os.getenv("LIBRARIAN_DEBUG_MODE", "").lower() in {"1", "true", "yes"}:
        config["debug_mode"] = True

    return cast(dict[str, Any], _resolve_env_in_config(config))
