from __future__ import annotations

import math
import os
from pathlib import Path
from typing import Any, Mapping, Optional

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from ..node_common import to_float, to_int
from .models import TERMINATION_TIME_URL, KillMode, NodeConfig

DEFAULT_CONFIG_PATH = Path("config/spot_node.toml")

DEFAULTS: dict[str, dict[str, Any]] = {
    "server": {
        "jar_url": "",
        "eula_url": "",
        "java_path": "",
        "java_args": "",
        "stop_timeout_seconds": 30,
    },
    "storage": {
        "data_url": "",
        "work_root": "",
        "s3_endpoint_url": "",
    },
    "watch": {
        "max_uptime_seconds": 43200,
        "max_idle_seconds": 14400,
        "idle_grace_seconds": 600,
        "idle_path": "world/playerdata",
        "preemption_url": TERMINATION_TIME_URL,
        "preemption_poll_seconds": 10,
    },
    "cluster": {
        "group_id": "",
        "retry_count": 3,
        "retry_delay_seconds": 1,
    },
    "shutdown": {
        "kill_mode": "noop",
        "command": "/sbin/shutdown -h now",
    },
    "aws": {
        "region": "ap-northeast-1",
    },
    "ddns": {
        "update_url": "",
    },
}

ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "SPOTNODE_SERVER_JAR_URL": ("server", "jar_url"),
    "SPOTNODE_SERVER_EULA_URL": ("server", "eula_url"),
    "SPOTNODE_JAVA_PATH": ("server", "java_path"),
    "SPOTNODE_JAVA_ARGS": ("server", "java_args"),
    "SPOTNODE_DATA_URL": ("storage", "data_url"),
    "SPOTNODE_WORK_ROOT": ("storage", "work_root"),
    "SPOTNODE_MAX_UPTIME": ("watch", "max_uptime_seconds"),
    "SPOTNODE_MAX_IDLE_TIME": ("watch", "max_idle_seconds"),
    "SPOTNODE_IDLE_WATCH_GRACE_TIME": ("watch", "idle_grace_seconds"),
    "SPOTNODE_IDLE_WATCH_PATH": ("watch", "idle_path"),
    "SPOTNODE_AUTOSCALING_GROUP": ("cluster", "group_id"),
    "SPOTNODE_AWS_RETRY": ("cluster", "retry_count"),
    "SPOTNODE_KILL_MODE": ("shutdown", "kill_mode"),
    "SPOTNODE_SHUTDOWN_COMMAND": ("shutdown", "command"),
    "SPOTNODE_AWS_REGION": ("aws", "region"),
    "SPOTNODE_DDNS_UPDATE_URL": ("ddns", "update_url"),
}

REQUIRED: list[tuple[str, str, str]] = [
    ("server", "jar_url", "SPOTNODE_SERVER_JAR_URL"),
    ("server", "eula_url", "SPOTNODE_SERVER_EULA_URL"),
    ("storage", "data_url", "SPOTNODE_DATA_URL"),
    ("server", "java_path", "SPOTNODE_JAVA_PATH"),
]


class ConfigError(ValueError):
    """Raised when the node configuration is missing or invalid."""


def load_raw_config(path: Path) -> dict[str, Any]:
    merged: dict[str, Any] = {key: dict(section) for key, section in DEFAULTS.items()}
    if not path.exists():
        return merged

    try:
        with path.open("rb") as fh:
            payload = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid config file {path}: {exc}") from exc
    for key, value in payload.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            section = dict(merged[key])
            section.update(value)
            merged[key] = section
        else:
            merged[key] = value
    return merged


def apply_env_overrides(raw: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in raw.items()}
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name, "")
        if value == "":
            continue
        merged.setdefault(section, {})[key] = value
    return merged


def normalize_kill_mode(value: str) -> KillMode:
    raw = str(value).strip().lower()
    alias_map = {
        "no-op": "noop",
        "no_op": "noop",
        "none": "noop",
        "shutdown": "shutdown_command",
        "shutdown-command": "shutdown_command",
        "command": "shutdown_command",
    }
    normalized = alias_map.get(raw, raw)
    try:
        return KillMode(normalized)
    except ValueError as exc:
        raise ConfigError(
            f"Invalid kill mode '{value}'. Expected one of: noop, shutdown_command."
        ) from exc


def build_config(raw: Mapping[str, Any]) -> NodeConfig:
    def section(name: str) -> dict[str, Any]:
        value = raw.get(name, {})
        return dict(value) if isinstance(value, dict) else {}

    server = section("server")
    storage = section("storage")
    watch = section("watch")
    cluster = section("cluster")
    shutdown = section("shutdown")
    aws = section("aws")
    ddns = section("ddns")

    missing = [
        f"{name}.{key} ({env_name})"
        for name, key, env_name in REQUIRED
        if not str(section(name).get(key) or "").strip()
    ]
    if missing:
        raise ConfigError("missing required configuration: " + ", ".join(missing))

    watch_defaults = DEFAULTS["watch"]
    config = NodeConfig(
        server_jar_url=str(server["jar_url"]).strip(),
        eula_url=str(server["eula_url"]).strip(),
        data_url=str(storage["data_url"]).strip(),
        java_path=str(server["java_path"]).strip(),
        java_args=str(server.get("java_args") or ""),
        max_uptime_seconds=to_float(
            watch.get("max_uptime_seconds"), watch_defaults["max_uptime_seconds"]
        ),
        max_idle_seconds=to_float(
            watch.get("max_idle_seconds"), watch_defaults["max_idle_seconds"]
        ),
        idle_watch_grace_seconds=to_float(
            watch.get("idle_grace_seconds"), watch_defaults["idle_grace_seconds"]
        ),
        idle_watch_path=str(watch.get("idle_path") or watch_defaults["idle_path"]),
        kill_mode=normalize_kill_mode(shutdown.get("kill_mode") or "noop"),
        shutdown_command=str(shutdown.get("command") or ""),
        cluster_group_id=str(cluster.get("group_id") or "").strip(),
        retry_count=to_int(cluster.get("retry_count"), DEFAULTS["cluster"]["retry_count"]),
        retry_delay_seconds=to_float(
            cluster.get("retry_delay_seconds"), DEFAULTS["cluster"]["retry_delay_seconds"]
        ),
        aws_region=str(aws.get("region") or DEFAULTS["aws"]["region"]),
        s3_endpoint_url=str(storage.get("s3_endpoint_url") or ""),
        ddns_update_url=str(ddns.get("update_url") or "").strip(),
        preemption_url=str(watch.get("preemption_url") or TERMINATION_TIME_URL),
        preemption_poll_seconds=to_float(
            watch.get("preemption_poll_seconds"), watch_defaults["preemption_poll_seconds"]
        ),
        server_stop_timeout_seconds=to_float(
            server.get("stop_timeout_seconds"), DEFAULTS["server"]["stop_timeout_seconds"]
        ),
        work_root=str(storage.get("work_root") or ""),
    )
    validate_config(config)
    return config


def validate_config(config: NodeConfig) -> None:
    durations = {
        "watch.max_uptime_seconds": config.max_uptime_seconds,
        "watch.max_idle_seconds": config.max_idle_seconds,
        "watch.idle_grace_seconds": config.idle_watch_grace_seconds,
        "watch.preemption_poll_seconds": config.preemption_poll_seconds,
        "cluster.retry_delay_seconds": config.retry_delay_seconds,
        "server.stop_timeout_seconds": config.server_stop_timeout_seconds,
    }
    for name, value in durations.items():
        if not math.isfinite(value):
            raise ConfigError(f"{name} must be a finite number.")
        if value < 0:
            raise ConfigError(f"{name} must be >= 0.")
    if config.retry_count < 1:
        raise ConfigError("cluster.retry_count must be at least 1.")
    if config.kill_mode is KillMode.SHUTDOWN_COMMAND and not config.shutdown_command.strip():
        raise ConfigError("shutdown.command is required when kill_mode is shutdown_command.")


def load_config(path: Path, environ: Optional[Mapping[str, str]] = None) -> NodeConfig:
    raw = load_raw_config(path)
    raw = apply_env_overrides(raw, os.environ if environ is None else environ)
    return build_config(raw)
