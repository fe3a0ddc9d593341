"""
Test: orchestr8 MCP server over real stdio pipes
================================================
Starts the server as a subprocess (``python -m orchestr8_server.server``)
and drives it line by line, the way an MCP host does:
  1. initialize returns serverInfo.name == "orchestr8-mcp-server"
  2. agents/query with limit 5 returns at most 5 ranked agents
  3. health reports healthy with numeric uptime and memory
  4. an unknown method gets -32601 with the request id
  5. an unparsable line gets -32700 with id null and the server keeps going

Also covers write-ahead (several requests before reading), hot reload,
fatal startup on a missing agent directory and a clean exit at EOF.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Iterator

import pytest

from orchestr8_host.client import TRANSPORT_ERROR, StdioClient, server_command

_project_root = Path(__file__).resolve().parents[1]

# ---------------------------------------------------------------------------
# Agent definitions written to a temporary agent directory
# ---------------------------------------------------------------------------
AGENT_FILES = {
    "react-specialist.md": "---\nname: react-specialist\ndescription: React hooks and components\ntags: [react, frontend]\n---\n",
    "nextjs-developer.md": "---\nname: nextjs-developer\ndescription: Next.js apps\ntags: [react, nextjs]\n---\n",
    "vue-developer.md": "---\nname: vue-developer\ndescription: Vue single-file components\ntags: [vue, frontend]\n---\n",
    "python-developer.md": "---\nname: python-developer\ndescription: Python services\ntags: [python]\n---\n",
}


# ---------------------------------------------------------------------------
# Helpers: start / stop the server
# ---------------------------------------------------------------------------

def _server_env() -> dict[str, str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("ORCHESTR8_")}
    env["PYTHONUNBUFFERED"] = "1"
    return env


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    agent_dir = tmp_path / "agents"
    agent_dir.mkdir()
    for filename, text in AGENT_FILES.items():
        (agent_dir / filename).write_text(text, encoding="utf-8")
    return tmp_path


@pytest.fixture
def client(workspace: Path) -> Iterator[StdioClient]:
    with StdioClient(server_command(root=workspace), cwd=_project_root, env=_server_env()) as running:
        yield running


# ======================================================================== #
#  Example scenarios
# ======================================================================== #

def test_initialize(client: StdioClient) -> None:
    response = client.call("initialize", {}, request_id=1)
    assert response.error is None
    assert response.id == 1
    assert response.result["serverInfo"]["name"] == "orchestr8-mcp-server"


def test_agent_query(client: StdioClient) -> None:
    response = client.call("agents/query", {"context": "react", "limit": 5}, request_id=2)
    assert response.id == 2
    agents = response.result["agents"]
    assert isinstance(agents, list)
    assert len(agents) <= 5
    assert [agent["name"] for agent in agents] == ["react-specialist", "nextjs-developer"]


def test_health(client: StdioClient) -> None:
    response = client.call("health", {}, request_id=3)
    assert response.id == 3
    assert response.result["status"] == "healthy"
    assert response.result["uptime_ms"] >= 0
    assert response.result["memory_mb"] >= 0

    later = client.health()
    assert later.result["uptime_ms"] >= response.result["uptime_ms"]


def test_unknown_method(client: StdioClient) -> None:
    response = client.call("bogus", request_id=4)
    assert response.id == 4
    assert response.error["code"] == -32601


def test_parse_error_then_still_responsive(client: StdioClient) -> None:
    client.send_line("not json")
    response = client.read_response()
    assert response.id is None
    assert response.error["code"] == -32700

    follow_up = client.call("health", {}, request_id=6)
    assert follow_up.id == 6
    assert follow_up.result["status"] == "healthy"


# ======================================================================== #
#  Protocol behaviour
# ======================================================================== #

def test_write_ahead_requests_are_answered_in_order(client: StdioClient) -> None:
    for request_id, method in enumerate(["ping", "health", "initialize", "agents/list"], start=10):
        client.send_line(json.dumps({"jsonrpc": "2.0", "method": method, "id": request_id}))
    # a message without an id is still answered, with id null
    client.send_line('{"jsonrpc":"2.0","method":"ping"}')
    client.send_line(json.dumps({"jsonrpc": "2.0", "method": "ping", "id": "last"}))

    ids = [client.read_response().id for _ in range(6)]
    assert ids == [10, 11, 12, 13, None, "last"]


def test_query_with_no_matching_context(client: StdioClient) -> None:
    assert client.query_agents("cobol").result == {"agents": []}


def test_reload_sees_new_files(client: StdioClient, workspace: Path) -> None:
    (workspace / "agents" / "react-native.md").write_text(
        "---\nname: react-native\ndescription: Mobile apps\ntags: [react, mobile]\n---\n", encoding="utf-8"
    )
    assert client.call("agents/reload").result == {"count": len(AGENT_FILES) + 1}
    names = [agent["name"] for agent in client.query_agents("react").result["agents"]]
    assert "react-native" in names


def test_stdin_eof_exits_cleanly(workspace: Path) -> None:
    proc = subprocess.run(
        server_command(root=workspace),
        input='{"jsonrpc":"2.0","method":"initialize","id":1}\n',
        capture_output=True,
        text=True,
        cwd=_project_root,
        env=_server_env(),
        timeout=30,
    )
    assert proc.returncode == 0
    lines = proc.stdout.splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["result"]["serverInfo"]["name"] == "orchestr8-mcp-server"


def test_missing_agent_dir_is_fatal(tmp_path: Path) -> None:
    proc = subprocess.run(
        server_command(root=tmp_path, agent_dir=tmp_path / "nowhere"),
        input="",
        capture_output=True,
        text=True,
        cwd=_project_root,
        env=_server_env(),
        timeout=30,
    )
    assert proc.returncode == 1
    assert proc.stdout == ""
    assert "Agent directory not found" in proc.stderr


def test_client_reports_dead_server(tmp_path: Path) -> None:
    command = server_command(root=tmp_path, agent_dir=tmp_path / "nowhere")
    with StdioClient(command, cwd=_project_root, env=_server_env()) as dead:
        response = dead.call("initialize")
    assert response.error["code"] == TRANSPORT_ERROR


# Answers each request with its position in the stream; the first answer is late.
SLOW_FIRST_REPLY_SERVER = """
import json, sys, time
for count, line in enumerate(sys.stdin):
    request = json.loads(line)
    if count == 0:
        time.sleep(1.0)
    print(json.dumps({"jsonrpc": "2.0", "id": request["id"], "result": {"n": count}}), flush=True)
"""


def test_late_reply_is_not_handed_to_the_next_call(tmp_path: Path) -> None:
    script = tmp_path / "slow_server.py"
    script.write_text(SLOW_FIRST_REPLY_SERVER, encoding="utf-8")

    with StdioClient([sys.executable, str(script)], env=_server_env(), timeout=0.3) as slow:
        first = slow.call("ping", request_id=1)
        assert first.id == 1
        assert first.error["code"] == TRANSPORT_ERROR

        slow.timeout = 10.0
        second = slow.call("ping", request_id=2)
        assert second.id == 2
        assert second.result == {"n": 1}

        third = slow.call("ping", request_id=3)
        assert (third.id, third.result) == (3, {"n": 2})


# ======================================================================== #
#  Host CLI
# ======================================================================== #

def test_host_cli_session(workspace: Path) -> None:
    proc = subprocess.run(
        [sys.executable, "-m", "orchestr8_host.main", "--root", str(workspace), "--limit", "1"],
        input="react\n:health\n:list\n:quit\n",
        capture_output=True,
        text=True,
        cwd=_project_root,
        env=_server_env(),
        timeout=60,
    )
    assert proc.returncode == 0, proc.stderr
    assert "Connected to orchestr8-mcp-server" in proc.stdout
    assert "1. react-specialist" in proc.stdout
    assert "status=healthy" in proc.stdout
    assert "4. vue-developer" in proc.stdout
