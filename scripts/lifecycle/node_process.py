from __future__ import annotations

import shlex
import signal
import subprocess
from pathlib import Path
from typing import Optional

from .models import KillMode, NodeConfig
from .node_events import EventSink

SHUTDOWN_COMMAND_TIMEOUT_SECONDS = 120.0


class KillInstanceError(RuntimeError):
    """Raised when the configured shutdown command fails."""


def run_cmd(cmd: list[str], *, timeout_seconds: Optional[float] = None) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        timeout=timeout_seconds,
        check=False,
    )


def build_server_command(*, java_path: str, java_args: str, jar_path: Path) -> list[str]:
    args = [java_path]
    if java_args.strip():
        args.extend(java_args.split())
    args.extend(["-jar", str(jar_path), "nogui"])
    return args


def describe_exit(returncode: Optional[int]) -> str:
    if returncode is None:
        return "unknown"
    if returncode < 0:
        try:
            return f"signal {signal.Signals(-returncode).name}"
        except ValueError:
            return f"signal {-returncode}"
    return f"exit code {returncode}"


def terminate_process(proc: subprocess.Popen[bytes], timeout_seconds: float = 5.0) -> str:
    if proc.poll() is not None:
        return "already_exited"
    proc.terminate()
    try:
        proc.wait(timeout=timeout_seconds)
        return "terminated"
    except subprocess.TimeoutExpired:
        proc.kill()
        return "killed"


class ServerProcess:
    def __init__(self, proc: subprocess.Popen[bytes], *, stop_timeout_seconds: float) -> None:
        self.proc = proc
        self.stop_timeout_seconds = stop_timeout_seconds

    @classmethod
    def start(
        cls,
        command: list[str],
        *,
        cwd: Path,
        events: EventSink,
        stop_timeout_seconds: float = 30.0,
    ) -> "ServerProcess":
        events.emit(
            "server_starting",
            f"starting game server: {' '.join(command)}",
            command=command,
            cwd=str(cwd),
        )
        # stdout/stderr are inherited so server output lands in the node log.
        proc = subprocess.Popen(command, cwd=cwd)
        events.emit(
            "server_started",
            f"game server started (pid={proc.pid}).",
            pid=proc.pid,
        )
        return cls(proc, stop_timeout_seconds=stop_timeout_seconds)

    @property
    def pid(self) -> int:
        return self.proc.pid

    def wait(self) -> int:
        return self.proc.wait()

    def kill(self) -> str:
        return terminate_process(self.proc, timeout_seconds=self.stop_timeout_seconds)


def kill_instance(*, config: NodeConfig, events: EventSink) -> None:
    events.emit("kill_instance", f"KillInstance invoked (mode={config.kill_mode.value}).")
    if config.kill_mode is KillMode.NOOP:
        events.emit("kill_instance_noop", "kill mode is noop; leaving the instance running.")
        return

    cmd = shlex.split(config.shutdown_command)
    if not cmd:
        raise KillInstanceError("shutdown command is empty")
    try:
        proc = run_cmd(cmd, timeout_seconds=SHUTDOWN_COMMAND_TIMEOUT_SECONDS)
    except OSError as exc:
        raise KillInstanceError(f"shutdown command could not start: {exc}") from exc
    except subprocess.TimeoutExpired as exc:
        raise KillInstanceError(
            f"shutdown command timed out after {exc.timeout}s: {config.shutdown_command}"
        ) from exc
    if proc.returncode != 0:
        output = ((proc.stdout or "") + (proc.stderr or "")).strip()
        raise KillInstanceError(
            f"shutdown command failed ({proc.returncode}): {config.shutdown_command}\n{output}"
        )
    events.emit(
        "kill_instance_issued",
        f"shutdown command issued: {config.shutdown_command}",
        command=cmd,
    )
