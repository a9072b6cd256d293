from __future__ import annotations

from typing import Optional

import requests

from ..node_common import safe_error_text
from .node_events import EventSink


def update_ddns(url: str, *, events: EventSink, timeout_seconds: float = 10.0) -> Optional[int]:
    if not url:
        return None
    events.emit("ddns_update", "issuing DDNS update query", url=url)
    try:
        resp = requests.get(url, timeout=timeout_seconds)
    except requests.RequestException as exc:
        # DNS is a convenience for players; the node runs without it.
        events.emit(
            "ddns_update_failed",
            f"DDNS update query failed: {exc}",
            url=url,
            error=safe_error_text(exc),
            level="warning",
        )
        return None
    events.emit(
        "ddns_update_result",
        f"DDNS update query result: {resp.status_code} {resp.reason}",
        url=url,
        status_code=resp.status_code,
    )
    return resp.status_code
