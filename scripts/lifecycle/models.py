from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import ClassVar, Optional, Union

TERMINATION_TIME_URL = "http://169.254.169.254/latest/meta-data/spot/termination-time"


class KillMode(str, enum.Enum):
    NOOP = "noop"
    SHUTDOWN_COMMAND = "shutdown_command"


class CoordinatorState(str, enum.Enum):
    RUNNING = "running"
    CLUSTER_DRAINING = "cluster_draining"
    CHILD_TERMINATING = "child_terminating"
    FINALIZING = "finalizing"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class NodeConfig:
    server_jar_url: str
    eula_url: str
    data_url: str
    java_path: str
    java_args: str = ""
    max_uptime_seconds: float = 43200.0
    max_idle_seconds: float = 14400.0
    idle_watch_grace_seconds: float = 600.0
    idle_watch_path: str = "world/playerdata"
    kill_mode: KillMode = KillMode.NOOP
    shutdown_command: str = "/sbin/shutdown -h now"
    cluster_group_id: str = ""
    retry_count: int = 3
    retry_delay_seconds: float = 1.0
    aws_region: str = "ap-northeast-1"
    s3_endpoint_url: str = ""
    ddns_update_url: str = ""
    preemption_url: str = TERMINATION_TIME_URL
    preemption_poll_seconds: float = 10.0
    server_stop_timeout_seconds: float = 30.0
    work_root: str = ""

    @property
    def cluster_drain_enabled(self) -> bool:
        return bool(self.cluster_group_id.strip())


@dataclass(frozen=True)
class IdleTimeoutReached:
    idle_seconds: float
    source: ClassVar[str] = "idle_watcher"


@dataclass(frozen=True)
class UptimeExceeded:
    uptime_seconds: float
    source: ClassVar[str] = "uptime_watcher"


@dataclass(frozen=True)
class PreemptionNoticed:
    status_code: int
    source: ClassVar[str] = "preemption_watcher"


@dataclass(frozen=True)
class ExternalTerminationRequested:
    signal_name: str
    source: ClassVar[str] = "signal_listener"


@dataclass(frozen=True)
class ChildProcessExited:
    exit_code: Optional[int]
    source: ClassVar[str] = "process_exit_watcher"


Event = Union[
    IdleTimeoutReached,
    UptimeExceeded,
    PreemptionNoticed,
    ExternalTerminationRequested,
    ChildProcessExited,
]


@dataclass
class ShutdownSummary:
    final_state: CoordinatorState
    trigger: Optional[str] = None
    cluster_drained: Optional[bool] = None
    snapshot_ok: bool = False
    retire_ok: bool = False
    snapshot_error: Optional[str] = None
    retire_error: Optional[str] = None
