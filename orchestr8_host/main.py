"""
orchestr8 Host: Interactive Agent Finder
========================================
A small command-line host that starts the orchestr8 MCP server over stdio
and lets the user look up agents by context.

Commands at the prompt:
    <text>    rank agents relevant to <text>
    :list     list every loaded agent
    :health   show server health
    :reload   re-read the agent directory
    :quit     leave (also 'exit', 'q', Ctrl-D)
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Optional, Sequence

from orchestr8_host.client import StdioClient, server_command
from orchestr8_shared.mcp_types import MCPResponse

HOST_LABEL = "[orchestr8]"
DEFAULT_LIMIT = 5


def _print_agents(agents: list[dict[str, Any]]) -> None:
    if not agents:
        print("  (no matching agents)")
        return
    for position, agent in enumerate(agents, start=1):
        tags = ", ".join(agent.get("contextTags", []))
        print(f"  {position}. {agent['name']}  [{tags}]")
        if agent.get("description"):
            print(f"     {agent['description']}")


def _report(response: MCPResponse) -> Optional[dict[str, Any]]:
    if response.error:
        print(f"{HOST_LABEL} Error {response.error['code']}: {response.error['message']}")
        return None
    return response.result


def _run_command(client: StdioClient, command: str, limit: int) -> None:
    if command == ":list":
        result = _report(client.call("agents/list"))
        if result is not None:
            _print_agents(result["agents"])
    elif command == ":health":
        result = _report(client.health())
        if result is not None:
            print(f"  status={result['status']} uptime={result['uptime_ms']}ms memory={result['memory_mb']:.1f}MB")
    elif command == ":reload":
        result = _report(client.call("agents/reload"))
        if result is not None:
            print(f"  {result['count']} agent(s) loaded")
    else:
        result = _report(client.query_agents(command, limit))
        if result is not None:
            _print_agents(result["agents"])


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="orchestr8-host", description=__doc__.splitlines()[1])
    parser.add_argument("--root", help="workspace root passed to the server")
    parser.add_argument("--agent-dir", help="agent directory passed to the server")
    parser.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help="agents shown per query")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Runs the interactive CLI loop."""
    args = build_arg_parser().parse_args(argv)

    print("=" * 65)
    print("  orchestr8: agent discovery over MCP / JSON-RPC 2.0 (stdio)")
    print("=" * 65)
    print()

    client = StdioClient(server_command(args.root, args.agent_dir), stderr=None)
    client.start()
    try:
        result = _report(client.initialize())
        if result is None:
            return 1
        info = result["serverInfo"]
        print(f"{HOST_LABEL} Connected to {info['name']} {info['version']}")
        print("Type a context to find agents (':list', ':health', ':reload', ':quit').")
        print()

        while True:
            try:
                user_input = input("context > ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break

            if not user_input:
                continue
            if user_input.lower() in {":quit", "quit", "exit", "q"}:
                break
            _run_command(client, user_input, args.limit)
            print()
    finally:
        exit_code = client.close()
        if exit_code:
            print(f"{HOST_LABEL} Server exited with code {exit_code}")
    print("Bye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
