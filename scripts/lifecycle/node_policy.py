from __future__ import annotations

import time
from typing import Callable, Protocol

from ..aws_backend import ClusterControlError
from ..node_common import compact_text, safe_error_text
from .node_events import EventSink


class ClusterControl(Protocol):
    def set_desired_capacity(self, group_id: str, capacity: int) -> None: ...


def drain_cluster(
    *,
    cluster: ClusterControl,
    group_id: str,
    retry_count: int,
    retry_delay_seconds: float,
    events: EventSink,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    events.emit(
        "cluster_drain_started",
        f"setting cluster capacity to 0 (group={group_id})",
        group_id=group_id,
        retry_count=retry_count,
    )
    last_error = ""
    for attempt in range(1, retry_count + 1):
        try:
            cluster.set_desired_capacity(group_id, 0)
        except ClusterControlError as exc:
            last_error = safe_error_text(exc)
            events.emit(
                "cluster_drain_attempt",
                f"setDesiredCapacity failed (attempt {attempt}/{retry_count}).",
                group_id=group_id,
                attempt=attempt,
                ok=False,
                error=compact_text(last_error, max_chars=500),
                level="warning",
            )
            if attempt < retry_count and retry_delay_seconds > 0:
                sleep(retry_delay_seconds)
            continue

        events.emit(
            "cluster_drained",
            f"cluster capacity set to 0 (attempt {attempt}/{retry_count}).",
            group_id=group_id,
            attempt=attempt,
            ok=True,
        )
        return True

    events.emit(
        "cluster_drain_failed",
        (
            f"setDesiredCapacity failed after {retry_count} attempts; "
            "continuing node shutdown without cluster scale-in."
        ),
        group_id=group_id,
        attempts=retry_count,
        error=compact_text(last_error, max_chars=500),
        level="fatal",
    )
    return False
