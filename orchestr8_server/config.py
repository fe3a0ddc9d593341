"""
Server configuration.
=====================
Resolves the workspace root, the agent directory and the log level.

Precedence, highest first: command-line flag, process environment,
``<root>/.env``, built-in default. The root itself comes from the flag,
the process environment or the current directory, since ``.env`` lives
inside it.
"""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from dotenv import dotenv_values

SERVER_NAME = "orchestr8-mcp-server"
SERVER_VERSION = "0.1.0"

ENV_ROOT = "ORCHESTR8_ROOT"
ENV_AGENT_DIR = "ORCHESTR8_AGENT_DIR"
ENV_LOG_LEVEL = "ORCHESTR8_LOG_LEVEL"

DEFAULT_AGENT_SUBDIR = "agents"
DEFAULT_LOG_LEVEL = "WARNING"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class ServerConfig:
    root: Path
    agent_dir: Path
    log_level: str = DEFAULT_LOG_LEVEL


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=SERVER_NAME,
        description="Serve orchestr8 agent discovery over JSON-RPC on stdin/stdout.",
    )
    parser.add_argument("--root", help=f"workspace root (env {ENV_ROOT}, default: current directory)")
    parser.add_argument(
        "--agent-dir",
        help=f"agent definitions directory (env {ENV_AGENT_DIR}, default: <root>/{DEFAULT_AGENT_SUBDIR})",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        type=str.upper,
        help=f"stderr log level (env {ENV_LOG_LEVEL}, default: {DEFAULT_LOG_LEVEL})",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {SERVER_VERSION}")
    return parser


def resolve_config(
    root: Optional[str] = None,
    agent_dir: Optional[str] = None,
    log_level: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """Merges explicit values with the environment and ``<root>/.env``."""
    environ = os.environ if environ is None else environ

    root_path = Path(root or environ.get(ENV_ROOT) or Path.cwd()).expanduser().resolve()

    dotenv_path = root_path / ".env"
    file_values = dotenv_values(dotenv_path) if dotenv_path.is_file() else {}

    def lookup(flag_value: Optional[str], key: str) -> Optional[str]:
        return flag_value or environ.get(key) or file_values.get(key)

    agent_value = lookup(agent_dir, ENV_AGENT_DIR)
    agent_path = Path(agent_value).expanduser() if agent_value else Path(DEFAULT_AGENT_SUBDIR)
    if not agent_path.is_absolute():
        agent_path = root_path / agent_path

    level = (lookup(log_level, ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL).upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"unknown log level: {level}")

    return ServerConfig(root=root_path, agent_dir=agent_path.resolve(), log_level=level)


def config_from_argv(argv: Optional[Sequence[str]] = None) -> ServerConfig:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        return resolve_config(root=args.root, agent_dir=args.agent_dir, log_level=args.log_level)
    except ValueError as exc:
        parser.error(str(exc))
