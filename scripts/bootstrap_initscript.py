#!/usr/bin/env python3
"""Render the SysV initscript that stops the spot node on OS shutdown.

The script does nothing at boot. On ``stop`` it sends SIGTERM to the node
process and waits, so the node can stop the game server and snapshot its data
before the instance powers off.
"""

from __future__ import annotations

import argparse
import os
import re
import sys
from pathlib import Path
from typing import Sequence

TEMPLATE_TOKEN_RE = re.compile(r"\{\{([A-Z0-9_]+)\}\}")
INITSCRIPT_TEMPLATE = "initscript.sh.tmpl"
DEFAULT_SERVICE_NAME = "spot-node-stopper"
DEFAULT_PROCESS_NAME = "spot-node"
DEFAULT_STOP_WAIT_SECONDS = 30


class BootstrapError(RuntimeError):
    """Raised when initscript validation or rendering fails."""


def templates_dir() -> Path:
    return Path(__file__).resolve().parent / "templates"


def log(message: str) -> None:
    print(f"[initscript] {message}", file=sys.stderr)


def load_template(name: str) -> str:
    path = templates_dir() / name
    if not path.is_file():
        raise BootstrapError(f"template not found: {path}")
    return path.read_text(encoding="utf-8")


def render_template(name: str, values: dict[str, str]) -> str:
    template = load_template(name)
    missing: set[str] = set()

    def replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            missing.add(key)
            return match.group(0)
        return values[key]

    rendered = TEMPLATE_TOKEN_RE.sub(replace, template)
    if missing:
        missing_tokens = ", ".join(sorted(missing))
        raise BootstrapError(f"template {name} missing values for: {missing_tokens}")

    unresolved = sorted(set(TEMPLATE_TOKEN_RE.findall(rendered)))
    if unresolved:
        unresolved_tokens = ", ".join(unresolved)
        raise BootstrapError(f"template {name} has unresolved placeholders: {unresolved_tokens}")
    return rendered


def render_initscript(
    *,
    service_name: str = DEFAULT_SERVICE_NAME,
    process_name: str = DEFAULT_PROCESS_NAME,
    stop_wait_seconds: int = DEFAULT_STOP_WAIT_SECONDS,
) -> str:
    if not re.fullmatch(r"[A-Za-z0-9._-]+", service_name):
        raise BootstrapError("service name contains invalid characters.")
    if not re.fullmatch(r"[A-Za-z0-9._-]+", process_name):
        raise BootstrapError("process name contains invalid characters.")
    if stop_wait_seconds < 0:
        raise BootstrapError("stop wait must be >= 0.")
    return render_template(
        INITSCRIPT_TEMPLATE,
        {
            "SERVICE_NAME": service_name,
            "PROCESS_NAME": process_name,
            "STOP_WAIT_SECONDS": str(stop_wait_seconds),
        },
    )


def write_file(path: Path, content: str, *, overwrite: bool, mode: int = 0o755) -> bool:
    if path.exists() and not overwrite:
        log(f"skip existing {path} (use --overwrite to replace)")
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    os.chmod(path, mode)
    log(f"wrote {path}")
    return True


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render the spot node stopper initscript.")
    parser.add_argument(
        "--service-name",
        default=DEFAULT_SERVICE_NAME,
        help=f"Service and lock file name. Default: {DEFAULT_SERVICE_NAME}",
    )
    parser.add_argument(
        "--process-name",
        default=DEFAULT_PROCESS_NAME,
        help=f"Process name passed to killall. Default: {DEFAULT_PROCESS_NAME}",
    )
    parser.add_argument(
        "--stop-wait-seconds",
        default=DEFAULT_STOP_WAIT_SECONDS,
        type=int,
        help=f"Seconds to wait after signalling the node. Default: {DEFAULT_STOP_WAIT_SECONDS}",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Write the script to this path (mode 0755) instead of stdout.",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite an existing --output file.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    try:
        args = parse_args(argv)
        script = render_initscript(
            service_name=args.service_name,
            process_name=args.process_name,
            stop_wait_seconds=args.stop_wait_seconds,
        )
        if args.output:
            write_file(Path(args.output).expanduser(), script, overwrite=args.overwrite)
        else:
            sys.stdout.write(script)
        return 0
    except BootstrapError as exc:
        print(f"[initscript] error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
