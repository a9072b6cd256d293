from __future__ import annotations

import argparse
from typing import Sequence

from .node_config import DEFAULT_CONFIG_PATH


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Run a game server on a spot instance and shut the node down on idle, "
            "uptime limit, spot termination notice, server exit, or SIGTERM."
        )
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help=(
            "Path to node config TOML. Missing file means defaults plus "
            "SPOTNODE_* environment variables."
        ),
    )
    parser.add_argument(
        "--runtime-dir",
        default="tmp/spot_node",
        help="Directory for the structured events log.",
    )
    parser.add_argument(
        "--events-file",
        default=None,
        help="Optional path override for events.jsonl (default: <runtime-dir>/events.jsonl).",
    )
    parser.add_argument(
        "--initscript",
        action="store_true",
        help="Print the SysV stopper initscript and exit.",
    )
    parser.add_argument(
        "--report",
        action="store_true",
        help="Print a compact report of the latest run from the events file and exit.",
    )
    return parser.parse_args(argv)


def validate_args(args: argparse.Namespace) -> None:
    if args.initscript and args.report:
        raise ValueError("--initscript and --report are mutually exclusive.")
    if not str(args.runtime_dir).strip():
        raise ValueError("--runtime-dir must not be empty.")
