from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ..node_common import compact_text

OUTCOME_EVENTS = {
    "cluster_drained": "cluster drain",
    "cluster_drain_failed": "cluster drain",
    "cluster_drain_skipped": "cluster drain",
    "snapshot_saved": "snapshot",
    "snapshot_failed": "snapshot",
    "kill_instance_noop": "retire",
    "kill_instance_issued": "retire",
    "kill_instance_failed": "retire",
}


def load_event_rows(events_path: Path) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for line in events_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            rows.append(payload)
    return rows


def render_events_report(events_path: Path) -> str:
    if not events_path.exists():
        return f"events file not found: {events_path}"

    rows = load_event_rows(events_path)
    # Report the latest run only; every run begins with a "start" row.
    starts = [idx for idx, row in enumerate(rows) if row.get("event") == "start"]
    if starts:
        rows = rows[starts[-1] :]

    started_at = rows[0].get("time", "unknown") if rows else "unknown"
    final_state = "running"
    transitions: list[str] = []
    triggers: list[str] = []
    outcomes: dict[str, str] = {}
    errors: list[str] = []
    for row in rows:
        event = str(row.get("event", ""))
        message = compact_text(str(row.get("message", "")))
        if event == "state_transition":
            final_state = str(row.get("to_state", final_state))
            transitions.append(f"- {row.get('time', '?')} {message}")
        elif event == "event_received":
            triggers.append(f"- {row.get('time', '?')} {message}")
        if event in OUTCOME_EVENTS:
            outcomes[OUTCOME_EVENTS[event]] = f"{event}: {message}"
        if row.get("level") in {"warning", "fatal"}:
            errors.append(f"- [{row.get('level')}] {event}: {message}")

    lines: list[str] = []
    lines.append(f"events: {events_path}")
    lines.append(f"started_at: {started_at}")
    lines.append(f"final_state: {final_state}")
    lines.append("")
    lines.append("triggers:")
    lines.extend(triggers or ["- none"])
    lines.append("")
    lines.append("state transitions:")
    lines.extend(transitions or ["- none"])
    lines.append("")
    lines.append("outcomes:")
    for name in ("cluster drain", "snapshot", "retire"):
        lines.append(f"- {name}: {outcomes.get(name, 'not reached')}")
    lines.append("")
    lines.append("latest errors:")
    if errors:
        lines.extend(errors[-20:])
        if len(errors) > 20:
            lines.append(f"- ... {len(errors) - 20} earlier")
    else:
        lines.append("- none")
    return "\n".join(lines)
