"""Reconnect backoff policy.

Pure arithmetic consumed by the transport layer; nothing here sleeps or
schedules anything.
"""

DEFAULT_RECONNECT_BASE_DELAY_MS = 1000
MAX_RECONNECT_ATTEMPTS = 10
MAX_RECONNECT_DELAY_MS = 30_000


def reconnect_delay_ms(
    attempt: int,
    max_delay_ms: int,
    base_delay_ms: int = DEFAULT_RECONNECT_BASE_DELAY_MS,
) -> int:
    """Exponential backoff: min(base * 2**attempt, max). Attempt 0 waits base."""
    if attempt <= 0:
        return min(base_delay_ms, max_delay_ms)
    return min(base_delay_ms * 2**attempt, max_delay_ms)


def can_schedule_reconnect(attempt: int, max_attempts: int = MAX_RECONNECT_ATTEMPTS) -> bool:
    return attempt < max_attempts


def reconnect_schedule(
    max_attempts: int = MAX_RECONNECT_ATTEMPTS,
    max_delay_ms: int = MAX_RECONNECT_DELAY_MS,
    base_delay_ms: int = DEFAULT_RECONNECT_BASE_DELAY_MS,
) -> list[int]:
    """Delays for every attempt the gate allows, in order."""
    schedule = []
    attempt = 0
    while can_schedule_reconnect(attempt, max_attempts):
        schedule.append(reconnect_delay_ms(attempt, max_delay_ms, base_delay_ms))
        attempt += 1
    return schedule
