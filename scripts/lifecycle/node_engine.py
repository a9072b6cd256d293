from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Sequence

from ..aws_backend import AutoScalingControl, S3BlobStore
from ..bootstrap_initscript import BootstrapError, render_initscript
from ..node_common import safe_error_text
from .models import CoordinatorState, Event
from .node_args import parse_args, validate_args
from .node_config import ConfigError, load_config
from .node_coordinator import Coordinator
from .node_ddns import update_ddns
from .node_events import EventSink, ensure_events_file
from .node_persistence import Persistence, PersistenceError
from .node_process import ServerProcess, build_server_command, kill_instance
from .node_report import render_events_report
from .node_watchers import TerminationSignalListener, start_watchers


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        validate_args(args)
    except ValueError as exc:
        print(f"argument error: {exc}", file=sys.stderr)
        return 2

    if args.initscript:
        try:
            sys.stdout.write(render_initscript())
        except BootstrapError as exc:
            print(f"initscript error: {exc}", file=sys.stderr)
            return 2
        return 0

    if args.report:
        try:
            events_path = ensure_events_file(args.runtime_dir, args.events_file)
            print(render_events_report(events_path))
            return 0 if events_path.exists() else 1
        except OSError as exc:
            print(f"report error: {safe_error_text(exc)}", file=sys.stderr)
            return 2

    try:
        config = load_config(Path(args.config))
        events_file = ensure_events_file(args.runtime_dir, args.events_file)
    except (ConfigError, OSError) as exc:
        print(f"startup error: {safe_error_text(exc)}", file=sys.stderr)
        return 2
    events = EventSink(events_file)
    events.emit(
        "start",
        (
            f"spot node starting (max_uptime={config.max_uptime_seconds:.0f}s, "
            f"max_idle={config.max_idle_seconds:.0f}s, "
            f"cluster={config.cluster_group_id or 'none'}, kill_mode={config.kill_mode.value})."
        ),
        config=str(Path(args.config).resolve()),
    )

    update_ddns(config.ddns_update_url, events=events)

    persistence = Persistence(
        blob_store=S3BlobStore(region=config.aws_region, endpoint_url=config.s3_endpoint_url),
        data_url=config.data_url,
        seed_url=config.eula_url,
        events=events,
        work_root=config.work_root,
    )
    try:
        jar_path = persistence.fetch_server_jar(config.server_jar_url)
        events.emit("restore_started", "retrieving data directory")
        work_dir = persistence.restore()
    except PersistenceError as exc:
        events.emit("startup_failed", str(exc), error=safe_error_text(exc), level="fatal")
        return 2
    events.emit("work_dir_ready", f"data directory: {work_dir}", path=str(work_dir))

    cluster = AutoScalingControl(region=config.aws_region) if config.cluster_drain_enabled else None
    coordinator_ref: list[Coordinator] = []

    # Handlers go in before the server starts so an early SIGTERM is not lost.
    # The listener thread only forwards once the coordinator exists.
    def send(event: Event) -> None:
        coordinator_ref[0].send(event)

    listener = TerminationSignalListener(send=send, events=events)
    listener.install()

    command = build_server_command(
        java_path=config.java_path,
        java_args=config.java_args,
        jar_path=jar_path,
    )
    try:
        server = ServerProcess.start(
            command,
            cwd=work_dir,
            events=events,
            stop_timeout_seconds=config.server_stop_timeout_seconds,
        )
    except OSError as exc:
        events.emit(
            "startup_failed",
            f"game server did not start: {exc}",
            error=safe_error_text(exc),
            level="fatal",
        )
        return 2

    coordinator = Coordinator(
        config=config,
        work_dir=work_dir,
        persistence=persistence,
        server=server,
        cluster=cluster,
        retire_node=lambda: kill_instance(config=config, events=events),
        events=events,
    )
    coordinator_ref.append(coordinator)

    stop = threading.Event()
    start_watchers(
        config=config,
        work_dir=work_dir,
        server=server,
        listener=listener,
        send=coordinator.send,
        events=events,
        stop=stop,
    )
    try:
        summary = coordinator.run()
    finally:
        stop.set()

    events.emit(
        "finish",
        (
            f"node lifecycle finished: state={summary.final_state.value}, "
            f"trigger={summary.trigger}, snapshot_ok={summary.snapshot_ok}, "
            f"retire_ok={summary.retire_ok}."
        ),
        trigger=summary.trigger,
        cluster_drained=summary.cluster_drained,
        snapshot_ok=summary.snapshot_ok,
        retire_ok=summary.retire_ok,
        work_dir=str(work_dir),
    )
    if summary.final_state is not CoordinatorState.TERMINATED:
        return 1
    return 0 if summary.snapshot_ok and summary.retire_ok else 1
