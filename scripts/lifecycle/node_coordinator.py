"""Single-consumer control loop that turns watcher events into one shutdown.

Watchers run on their own threads and only ever call ``send``. The coordinator
reads the queue on one thread, handles each event to completion, and walks
the state machine:

    running -> [cluster_draining ->] child_terminating -> finalizing -> terminated

``ChildProcessExited`` jumps straight to finalizing from any state that has
not already finalized. Any other trigger seen after ``running`` is ignored.
"""

from __future__ import annotations

import queue
import time
from pathlib import Path
from typing import Callable, Optional, Protocol

from ..node_common import safe_error_text
from .models import (
    ChildProcessExited,
    CoordinatorState,
    Event,
    ExternalTerminationRequested,
    IdleTimeoutReached,
    NodeConfig,
    PreemptionNoticed,
    ShutdownSummary,
    UptimeExceeded,
)
from .node_events import EventSink
from .node_persistence import PersistenceError
from .node_policy import ClusterControl, drain_cluster
from .node_process import KillInstanceError


class Snapshotter(Protocol):
    def snapshot(self, work_dir: Path) -> None: ...


class KillableProcess(Protocol):
    def kill(self) -> str: ...


class Coordinator:
    def __init__(
        self,
        *,
        config: NodeConfig,
        work_dir: Path,
        persistence: Snapshotter,
        server: KillableProcess,
        cluster: Optional[ClusterControl],
        retire_node: Callable[[], None],
        events: EventSink,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.work_dir = work_dir
        self.persistence = persistence
        self.server = server
        self.cluster = cluster
        self.retire_node = retire_node
        self.events = events
        self.sleep = sleep
        self.state = CoordinatorState.RUNNING
        self.summary = ShutdownSummary(final_state=self.state)
        self._queue: queue.Queue[Event] = queue.Queue()

    def send(self, event: Event) -> None:
        self._queue.put(event)

    def run(self) -> ShutdownSummary:
        self.events.emit("coordinator_started", "waiting for shutdown triggers.")
        while self.state is not CoordinatorState.TERMINATED:
            self.handle(self._queue.get())
        return self.summary

    def handle(self, event: Event) -> None:
        self.events.emit(
            "event_received",
            f"{type(event).__name__} from {event.source} (state={self.state.value})",
            source=event.source,
            event_class=type(event).__name__,
            state=self.state.value,
        )
        if isinstance(event, ChildProcessExited):
            self._on_child_exited(event)
        elif isinstance(event, (PreemptionNoticed, ExternalTerminationRequested)):
            if self._accept_trigger(event):
                self._terminate_child(reason=type(event).__name__)
        elif isinstance(event, (IdleTimeoutReached, UptimeExceeded)):
            if self._accept_trigger(event):
                self._shutdown_cluster(reason=type(event).__name__)
        else:
            raise TypeError(f"unhandled coordinator event: {event!r}")

    def _accept_trigger(self, event: Event) -> bool:
        if self.state is CoordinatorState.RUNNING:
            self.summary.trigger = type(event).__name__
            return True
        self.events.emit(
            "event_ignored",
            f"{type(event).__name__} ignored; shutdown already in progress (state={self.state.value})",
            source=event.source,
            state=self.state.value,
        )
        return False

    def _transition(self, new_state: CoordinatorState, reason: str) -> None:
        old_state = self.state
        self.state = new_state
        self.summary.final_state = new_state
        self.events.emit(
            "state_transition",
            f"{old_state.value} -> {new_state.value} ({reason})",
            from_state=old_state.value,
            to_state=new_state.value,
            reason=reason,
        )

    def _shutdown_cluster(self, *, reason: str) -> None:
        if self.config.cluster_drain_enabled and self.cluster is not None:
            self._transition(CoordinatorState.CLUSTER_DRAINING, reason)
            self.summary.cluster_drained = drain_cluster(
                cluster=self.cluster,
                group_id=self.config.cluster_group_id,
                retry_count=self.config.retry_count,
                retry_delay_seconds=self.config.retry_delay_seconds,
                events=self.events,
                sleep=self.sleep,
            )
            reason = "cluster drain finished"
        else:
            self.events.emit(
                "cluster_drain_skipped",
                "no autoscaling group configured; skipping cluster drain.",
            )
        self._terminate_child(reason=reason)

    def _terminate_child(self, *, reason: str) -> None:
        self._transition(CoordinatorState.CHILD_TERMINATING, reason)
        self.events.emit("server_kill", "killing the game server")
        try:
            outcome = self.server.kill()
        except OSError as exc:
            self.events.emit(
                "server_kill_failed",
                f"could not stop the game server: {safe_error_text(exc)}",
                error=safe_error_text(exc),
                level="warning",
            )
            return
        self.events.emit(
            "server_kill_sent",
            f"game server stop requested ({outcome}); waiting for exit.",
            outcome=outcome,
        )

    def _on_child_exited(self, event: ChildProcessExited) -> None:
        if self.state in (CoordinatorState.FINALIZING, CoordinatorState.TERMINATED):
            self.events.emit(
                "event_ignored",
                "ChildProcessExited ignored; node already finalizing.",
                source=event.source,
                state=self.state.value,
            )
            return
        if self.summary.trigger is None:
            self.summary.trigger = type(event).__name__
        self._transition(CoordinatorState.FINALIZING, f"game server exited (code={event.exit_code})")

        try:
            self.persistence.snapshot(self.work_dir)
            self.summary.snapshot_ok = True
        except PersistenceError as exc:
            self.summary.snapshot_error = safe_error_text(exc)
            self.events.emit(
                "snapshot_failed",
                f"saving data failed: {exc}",
                error=self.summary.snapshot_error,
                work_dir=str(self.work_dir),
                level="fatal",
            )

        try:
            self.retire_node()
            self.summary.retire_ok = True
        except KillInstanceError as exc:
            self.summary.retire_error = safe_error_text(exc)
            self.events.emit(
                "kill_instance_failed",
                f"KillInstance failed: {exc}",
                error=self.summary.retire_error,
                level="fatal",
            )

        self._transition(CoordinatorState.TERMINATED, "node finalized")
