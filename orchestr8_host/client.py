"""
Stdio Client
============
Spawns an orchestr8 MCP server as a subprocess and exchanges JSON-RPC 2.0
messages with it, one line per message, over the child's stdin/stdout.

Architecture notes:
    Turn-taking: ``call`` writes one request and waits for the response
    carrying its id. Late replies to earlier, timed-out calls are dropped,
    so a slow answer never shifts later calls out of step.

    Transport failures (server exited, no answer in time, garbage on the
    wire) come back as an ``MCPResponse`` carrying ``TRANSPORT_ERROR``
    instead of raising, so callers handle every outcome the same way.
"""

from __future__ import annotations

import json
import logging
import queue
import subprocess
import sys
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from orchestr8_shared.mcp_types import MCPRequest, MCPResponse

logger = logging.getLogger(__name__)

# Server-defined JSON-RPC code reserved for client-side transport failures.
TRANSPORT_ERROR = -32000

DEFAULT_TIMEOUT = 10.0

_EOF = object()


def server_command(root: str | Path | None = None, agent_dir: str | Path | None = None) -> list[str]:
    """Command line that runs the server with the current interpreter."""
    command = [sys.executable, "-m", "orchestr8_server.server"]
    if root is not None:
        command += ["--root", str(root)]
    if agent_dir is not None:
        command += ["--agent-dir", str(agent_dir)]
    return command


class StdioClient:
    """JSON-RPC client bound to one server subprocess."""

    def __init__(
        self,
        command: Sequence[str] | None = None,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        stderr: Any = subprocess.DEVNULL,
    ) -> None:
        self.command = list(command) if command is not None else server_command()
        self.cwd = cwd
        self.env = env
        self.timeout = timeout
        self.stderr = stderr
        self.process: Optional[subprocess.Popen] = None
        self._lines: "queue.Queue[Any]" = queue.Queue()

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------

    def start(self) -> "StdioClient":
        self.process = subprocess.Popen(
            self.command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=self.stderr,
            cwd=str(self.cwd) if self.cwd is not None else None,
            env=self.env,
            text=True,
            encoding="utf-8",
            bufsize=1,
        )
        reader = threading.Thread(target=self._pump_stdout, name="orchestr8-client-reader", daemon=True)
        reader.start()
        return self

    def _pump_stdout(self) -> None:
        assert self.process is not None and self.process.stdout is not None
        for line in self.process.stdout:
            self._lines.put(line)
        self._lines.put(_EOF)

    def close(self, timeout: float = 5.0) -> Optional[int]:
        """Closes the server's stdin and waits for it to exit (killing it if needed)."""
        if self.process is None:
            return None
        if self.process.stdin and not self.process.stdin.closed:
            try:
                self.process.stdin.close()
            except BrokenPipeError:
                pass
        try:
            return self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.process.kill()
            return self.process.wait(timeout=timeout)

    def __enter__(self) -> "StdioClient":
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Wire helpers
    # ------------------------------------------------------------------

    def send_line(self, line: str) -> None:
        """Writes one raw line; used for requests and for malformed input alike."""
        if self.process is None or self.process.stdin is None:
            raise RuntimeError("client is not started")
        self.process.stdin.write(line + "\n")
        self.process.stdin.flush()

    def read_response(self, request_id: Any = None) -> MCPResponse:
        """
        Waits for the response to ``request_id`` and parses it.

        Responses carrying any other id are discarded. With ``request_id``
        None the next response is returned whatever its id.
        """
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            try:
                line = self._lines.get(timeout=max(remaining, 0))
            except queue.Empty:
                return self._transport_error(request_id, f"No response within {self.timeout}s")
            if line is _EOF:
                self._lines.put(_EOF)
                return self._transport_error(request_id, "Server closed the connection")
            try:
                response = MCPResponse.model_validate(json.loads(line))
            except (ValueError, ValidationError) as exc:
                return self._transport_error(request_id, f"Malformed response from server: {exc}")
            if request_id is None or response.id == request_id:
                return response
            logger.warning("Discarding response for id %r while waiting for %r", response.id, request_id)

    @staticmethod
    def _transport_error(request_id: Any, message: str) -> MCPResponse:
        return MCPResponse(id=request_id, error={"code": TRANSPORT_ERROR, "message": message})

    # ------------------------------------------------------------------
    # JSON-RPC calls
    # ------------------------------------------------------------------

    def call(self, method: str, params: dict[str, Any] | None = None, request_id: Any = None) -> MCPResponse:
        """
        Sends one request and returns the matching response.

        Args:
            method:     JSON-RPC method name.
            params:     Named parameters; omitted when None.
            request_id: Explicit id; a fresh UUID string by default.
        """
        mcp_request = MCPRequest(
            id=request_id if request_id is not None else str(uuid.uuid4()),
            method=method,
            params=params or {},
        )
        try:
            self.send_line(mcp_request.to_json())
        except (BrokenPipeError, OSError) as exc:
            return self._transport_error(mcp_request.id, f"Cannot write to server: {exc}")
        return self.read_response(mcp_request.id)

    def initialize(self) -> MCPResponse:
        return self.call("initialize", {})

    def health(self) -> MCPResponse:
        return self.call("health", {})

    def query_agents(self, context: str, limit: int | None = None) -> MCPResponse:
        params: dict[str, Any] = {"context": context}
        if limit is not None:
            params["limit"] = limit
        return self.call("agents/query", params)
