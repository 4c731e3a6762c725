from datetime import datetime, timezone
import time

TIME_RANGES = {
    "24h": 24 * 60 * 60,
    "7d": 7 * 24 * 60 * 60,
    "30d": 30 * 24 * 60 * 60,
}
DEFAULT_TIME_RANGE = "24h"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def time_range_seconds(time_range: str | None) -> int:
    """Unknown presets fall back to the last 24 hours."""
    return TIME_RANGES.get((time_range or "").lower(), TIME_RANGES[DEFAULT_TIME_RANGE])


def oldest_ts_for_range(time_range: str | None, now: float | None = None) -> str:
    current = time.time() if now is None else now
    return str(int(current) - time_range_seconds(time_range))


def ts_to_float(ts: str | float | int | None) -> float:
    try:
        return float(ts) if ts is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def format_ts(ts: str | float | None) -> str:
    value = ts_to_float(ts)
    if not value:
        return "unknown time"
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
