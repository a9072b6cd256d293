from __future__ import annotations

import signal
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol

import requests

from ..node_common import safe_error_text
from .models import (
    ChildProcessExited,
    Event,
    ExternalTerminationRequested,
    IdleTimeoutReached,
    NodeConfig,
    PreemptionNoticed,
    UptimeExceeded,
)
from .node_detection import (
    idle_limit_exceeded,
    idle_poll_period,
    idle_seconds,
    poll_period,
    termination_scheduled,
)
from .node_events import EventSink
from .node_process import describe_exit

PREEMPTION_POLL_SECONDS = 10.0
PREEMPTION_REQUEST_TIMEOUT_SECONDS = 2.0
SIGNAL_LISTEN_TICK_SECONDS = 0.5

Send = Callable[[Event], None]


class WaitableProcess(Protocol):
    def wait(self) -> int: ...


def watch_idle(
    *,
    config: NodeConfig,
    work_dir: Path,
    send: Send,
    events: EventSink,
    stop: threading.Event,
    now: Callable[[], float] = time.time,
) -> bool:
    grace = config.idle_watch_grace_seconds
    events.emit(
        "idle_watch_grace",
        f"idle watcher starts after {grace / 60:.2f} mins",
        grace_seconds=grace,
    )
    if stop.wait(grace):
        return False

    full_path = work_dir / config.idle_watch_path
    limit = config.max_idle_seconds
    period = idle_poll_period(limit)
    events.emit(
        "idle_watch_start",
        f"idle watcher starting on {full_path} (period={period:.1f}s)",
        path=str(full_path),
        period_seconds=period,
    )
    while not stop.wait(period):
        try:
            idle = idle_seconds(full_path, now())
        except OSError as exc:
            events.emit(
                "idle_sample_skipped",
                f"stat failed ({full_path}): {exc}",
                path=str(full_path),
                error=safe_error_text(exc),
                level="warning",
            )
            continue
        events.emit(
            "idle_sample",
            f"idle for {idle / 60:.2f} minutes ({full_path})",
            idle_seconds=idle,
        )
        if idle_limit_exceeded(idle, limit):
            events.emit(
                "idle_timeout",
                "idle time exceeded limit, shutdown the cluster",
                idle_seconds=idle,
                max_idle_seconds=limit,
            )
            send(IdleTimeoutReached(idle_seconds=idle))
            return True
    return False


def watch_uptime(
    *,
    config: NodeConfig,
    send: Send,
    events: EventSink,
    stop: threading.Event,
) -> bool:
    limit = config.max_uptime_seconds
    if stop.wait(limit):
        return False
    events.emit(
        "uptime_exceeded",
        "uptime exceeded limit, shutdown the cluster",
        max_uptime_seconds=limit,
    )
    send(UptimeExceeded(uptime_seconds=limit))
    return True


def poll_termination_notice(url: str, *, timeout_seconds: float) -> int:
    resp = requests.get(url, timeout=timeout_seconds)
    resp.close()
    return resp.status_code


def watch_preemption(
    *,
    url: str,
    send: Send,
    events: EventSink,
    stop: threading.Event,
    poll_seconds: float = PREEMPTION_POLL_SECONDS,
    timeout_seconds: float = PREEMPTION_REQUEST_TIMEOUT_SECONDS,
) -> bool:
    period = poll_period(poll_seconds)
    while not stop.wait(period):
        try:
            status_code = poll_termination_notice(url, timeout_seconds=timeout_seconds)
        except requests.RequestException as exc:
            events.emit(
                "preemption_poll_failed",
                f"termination time url unreachable: {exc}",
                url=url,
                error=safe_error_text(exc),
                level="warning",
            )
            continue
        if not termination_scheduled(status_code):
            continue
        events.emit(
            "preemption_noticed",
            f"termination time url: {status_code}; spot termination scheduled",
            url=url,
            status_code=status_code,
            level="warning",
        )
        send(PreemptionNoticed(status_code=status_code))
        return True
    return False


def wait_for_exit(
    *,
    server: WaitableProcess,
    send: Send,
    events: EventSink,
) -> bool:
    returncode = server.wait()
    events.emit(
        "server_exited",
        f"game server process exited ({describe_exit(returncode)})",
        exit_code=returncode,
    )
    send(ChildProcessExited(exit_code=returncode))
    return True


class TerminationSignalListener:
    def __init__(
        self,
        *,
        send: Send,
        events: EventSink,
        signals: Iterable[signal.Signals] = (signal.SIGTERM, signal.SIGINT),
    ) -> None:
        self.send = send
        self.events = events
        self.signals = tuple(signals)
        self._received = threading.Event()
        self._signal_name: Optional[str] = None

    def install(self) -> None:
        # signal.signal must be called from the main thread.
        for sig in self.signals:
            signal.signal(sig, self._handle)

    def _handle(self, signum: int, frame: object) -> None:
        if self._signal_name is None:
            self._signal_name = signal.Signals(signum).name
        self._received.set()

    def listen(self, stop: threading.Event) -> bool:
        while not stop.is_set():
            if not self._received.wait(SIGNAL_LISTEN_TICK_SECONDS):
                continue
            signal_name = self._signal_name or "unknown"
            self.events.emit(
                "termination_signal",
                f"received {signal_name}; requesting game server shutdown",
                signal=signal_name,
            )
            self.send(ExternalTerminationRequested(signal_name=signal_name))
            return True
        return False


def start_watchers(
    *,
    config: NodeConfig,
    work_dir: Path,
    server: WaitableProcess,
    listener: TerminationSignalListener,
    send: Send,
    events: EventSink,
    stop: threading.Event,
) -> list[threading.Thread]:
    targets: list[tuple[str, Callable[[], bool]]] = [
        (
            "idle-watcher",
            lambda: watch_idle(
                config=config, work_dir=work_dir, send=send, events=events, stop=stop
            ),
        ),
        (
            "uptime-watcher",
            lambda: watch_uptime(config=config, send=send, events=events, stop=stop),
        ),
        (
            "preemption-watcher",
            lambda: watch_preemption(
                url=config.preemption_url,
                send=send,
                events=events,
                stop=stop,
                poll_seconds=config.preemption_poll_seconds,
            ),
        ),
        (
            "exit-watcher",
            lambda: wait_for_exit(server=server, send=send, events=events),
        ),
        ("signal-listener", lambda: listener.listen(stop)),
    ]
    threads: list[threading.Thread] = []
    for name, target in targets:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        threads.append(thread)
    events.emit(
        "watchers_started",
        f"started {len(threads)} watchers",
        watchers=[t.name for t in threads],
    )
    return threads
