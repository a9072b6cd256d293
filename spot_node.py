#!/usr/bin/env python3
"""Entrypoint for the spot node lifecycle coordinator."""

from __future__ import annotations

import sys

import scripts.lifecycle.models as _models
import scripts.lifecycle.node_args as _args
import scripts.lifecycle.node_config as _config
import scripts.lifecycle.node_coordinator as _coordinator
import scripts.lifecycle.node_engine as _engine
import scripts.lifecycle.node_process as _process
import scripts.lifecycle.node_report as _report


main = _engine.main
parse_args = _args.parse_args
validate_args = _args.validate_args

ConfigError = _config.ConfigError
load_config = _config.load_config

NodeConfig = _models.NodeConfig
KillMode = _models.KillMode
CoordinatorState = _models.CoordinatorState
ShutdownSummary = _models.ShutdownSummary
IdleTimeoutReached = _models.IdleTimeoutReached
UptimeExceeded = _models.UptimeExceeded
PreemptionNoticed = _models.PreemptionNoticed
ExternalTerminationRequested = _models.ExternalTerminationRequested
ChildProcessExited = _models.ChildProcessExited

Coordinator = _coordinator.Coordinator
kill_instance = _process.kill_instance
render_events_report = _report.render_events_report


__all__ = [
    "ChildProcessExited",
    "ConfigError",
    "Coordinator",
    "CoordinatorState",
    "ExternalTerminationRequested",
    "IdleTimeoutReached",
    "KillMode",
    "NodeConfig",
    "PreemptionNoticed",
    "ShutdownSummary",
    "UptimeExceeded",
    "kill_instance",
    "load_config",
    "main",
    "parse_args",
    "render_events_report",
    "validate_args",
]


if __name__ == "__main__":
    sys.exit(main())
