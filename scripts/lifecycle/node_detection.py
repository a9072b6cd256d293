from __future__ import annotations

from pathlib import Path

# Floor for any polling period so a zero limit cannot spin a watcher.
MIN_POLL_SECONDS = 0.05


def termination_scheduled(status_code: int) -> bool:
    # 404 means termination is not scheduled; anything else is a notice.
    return status_code != 404


def idle_seconds(path: Path, now_ts: float) -> float:
    return now_ts - path.stat().st_mtime


def poll_period(seconds: float) -> float:
    return max(seconds, MIN_POLL_SECONDS)


def idle_poll_period(max_idle_seconds: float) -> float:
    return poll_period(max_idle_seconds / 12.0)


def idle_limit_exceeded(idle: float, max_idle_seconds: float) -> bool:
    return idle > max_idle_seconds
