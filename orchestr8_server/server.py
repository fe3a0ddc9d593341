"""
orchestr8 MCP Server
====================
JSON-RPC 2.0 dispatcher served over standard input/output. Each input line
is one request; each response is written as one line before the next input
line is read.

Architecture notes:
    Closed method set: routing goes through the ``Method`` enumeration, so a
    method string that is not a member is rejected before any handler runs.

    No initialization gate: ``health`` and ``agents/query`` answer before
    ``initialize`` has been called. ``initialize`` is idempotent.

    Snapshot reads: every handler takes ``catalog.snapshot`` once, so a
    concurrent ``agents/reload`` can never show it a half-built registry.
"""

from __future__ import annotations

import json
import logging
import sys
from enum import Enum
from functools import partial
from typing import Any, Callable, Optional, Sequence

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError

from orchestr8_server.config import SERVER_NAME, SERVER_VERSION, config_from_argv
from orchestr8_server.health import HealthMonitor
from orchestr8_server.transport import StdioTransport
from orchestr8_shared.agents import DEFAULT_QUERY_LIMIT, AgentCatalog
from orchestr8_shared.loader import AgentLoadError, load_agent_records
from orchestr8_shared.mcp_types import (
    AgentNotFound,
    InternalError,
    InvalidParams,
    InvalidRequest,
    MCPError,
    MCPRequest,
    MCPResponse,
    MethodNotFound,
    ParseError,
    ReloadFailed,
    describe_validation_error,
    recover_id,
)

logger = logging.getLogger(__name__)


class Method(str, Enum):
    INITIALIZE = "initialize"
    PING = "ping"
    HEALTH = "health"
    AGENTS_QUERY = "agents/query"
    AGENTS_LIST = "agents/list"
    AGENTS_GET = "agents/get"
    AGENTS_RELOAD = "agents/reload"


# ---------------------------------------------------------------------------
# Parameter shapes, one per method
# ---------------------------------------------------------------------------

class NoParams(BaseModel):
    """Methods that take no parameters ignore whatever keys they receive."""

    model_config = ConfigDict(extra="ignore")


class QueryParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    context: StrictStr
    limit: Optional[StrictInt] = None


class GetParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: StrictStr


class ServerInfo(BaseModel):
    name: str = SERVER_NAME
    version: str = SERVER_VERSION


Handler = Callable[[Any], dict[str, Any]]


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are not JSON
    raise ValueError(f"non-standard JSON constant: {name}")


class MCPServer:
    """Routes JSON-RPC requests to the agent catalog and the health monitor."""

    def __init__(
        self,
        catalog: AgentCatalog,
        health: HealthMonitor | None = None,
        server_info: ServerInfo | None = None,
    ) -> None:
        self.catalog = catalog
        self.health = health or HealthMonitor()
        self.server_info = server_info or ServerInfo()
        self.initialized = False

        self._routes: dict[Method, tuple[type[BaseModel], Handler]] = {
            Method.INITIALIZE: (NoParams, self._handle_initialize),
            Method.PING: (NoParams, self._handle_ping),
            Method.HEALTH: (NoParams, self._handle_health),
            Method.AGENTS_QUERY: (QueryParams, self._handle_agents_query),
            Method.AGENTS_LIST: (NoParams, self._handle_agents_list),
            Method.AGENTS_GET: (GetParams, self._handle_agents_get),
            Method.AGENTS_RELOAD: (NoParams, self._handle_agents_reload),
        }
        unrouted = set(Method) - set(self._routes)
        if unrouted:
            raise RuntimeError(f"methods without a handler: {sorted(m.value for m in unrouted)}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_initialize(self, _params: NoParams) -> dict[str, Any]:
        if not self.initialized:
            logger.info("Client initialized session")
        self.initialized = True
        return {
            "serverInfo": self.server_info.model_dump(),
            "capabilities": {"agents": {"query": True, "reload": True}},
        }

    def _handle_ping(self, _params: NoParams) -> dict[str, Any]:
        return {}

    def _handle_health(self, _params: NoParams) -> dict[str, Any]:
        return self.health.check().model_dump()

    def _handle_agents_query(self, params: QueryParams) -> dict[str, Any]:
        limit = DEFAULT_QUERY_LIMIT if params.limit is None else params.limit
        agents = self.catalog.snapshot.query(params.context, limit)
        logger.debug("agents/query context=%r limit=%d -> %d match(es)", params.context, limit, len(agents))
        return {"agents": [agent.to_wire() for agent in agents]}

    def _handle_agents_list(self, _params: NoParams) -> dict[str, Any]:
        return {"agents": [agent.to_wire() for agent in self.catalog.snapshot.agents]}

    def _handle_agents_get(self, params: GetParams) -> dict[str, Any]:
        agent = self.catalog.snapshot.get(params.name)
        if agent is None:
            raise AgentNotFound(f"Agent not found: {params.name}")
        return {"agent": agent.to_wire()}

    def _handle_agents_reload(self, _params: NoParams) -> dict[str, Any]:
        try:
            registry = self.catalog.reload()
        except (AgentLoadError, OSError) as exc:
            logger.error("Agent reload failed, keeping previous snapshot: %s", exc)
            self.health.mark_degraded("agent reload failed")
            raise ReloadFailed() from exc
        self.health.clear_degraded()
        return {"count": len(registry)}

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, request: MCPRequest) -> dict[str, Any]:
        """
        Runs the handler for ``request`` and returns its result.

        Raises:
            MethodNotFound: if the method is not a ``Method`` member.
            InvalidParams: if the params do not fit the handler's shape.
        """
        try:
            method = Method(request.method)
        except ValueError:
            raise MethodNotFound(f"Method not found: {request.method}") from None

        params_model, handler = self._routes[method]
        if not isinstance(request.params, dict):
            raise InvalidParams("Invalid params: expected an object")
        try:
            params = params_model.model_validate(request.params)
        except ValidationError as exc:
            raise InvalidParams(f"Invalid params: {describe_validation_error(exc)}") from exc
        return handler(params)

    def handle_payload(self, payload: Any) -> MCPResponse:
        """Handles one decoded message. Every message gets exactly one response."""
        try:
            request = MCPRequest.from_payload(payload)
        except InvalidRequest as exc:
            logger.warning("Rejected message: %s", exc.message)
            return MCPResponse.from_error(recover_id(payload), exc)

        try:
            result = self.dispatch(request)
        except MCPError as exc:
            logger.info("%s failed with %d: %s", request.method, exc.code, exc.message)
            return MCPResponse.from_error(request.id, exc)
        except Exception:
            logger.exception("Unhandled error while serving %s", request.method)
            return MCPResponse.from_error(request.id, InternalError())
        return MCPResponse(id=request.id, result=result)

    def handle_line(self, line: str) -> MCPResponse:
        try:
            payload = json.loads(line, parse_constant=_reject_constant)
        except (ValueError, RecursionError):
            logger.warning("Unparsable message: %.80r", line)
            return MCPResponse.from_error(None, ParseError())
        return self.handle_payload(payload)

    def serve(self, transport: StdioTransport) -> None:
        """Serves requests strictly one at a time until the input closes."""
        logger.info("Serving %d agent(s) on stdio", len(self.catalog.snapshot))
        while True:
            line = transport.receive()
            if line is None:
                logger.info("Input closed, shutting down")
                return
            response = self.handle_line(line)
            try:
                encoded = response.to_json()
            except (TypeError, ValueError):
                logger.exception("Cannot encode response for id %r", response.id)
                encoded = MCPResponse.from_error(response.id, InternalError()).to_json()
            transport.send(encoded)


# ---------------------------------------------------------------------------
# Process entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[Sequence[str]] = None) -> int:
    config = config_from_argv(argv)
    logging.basicConfig(
        stream=sys.stderr,
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    catalog = AgentCatalog(partial(load_agent_records, config.agent_dir))
    try:
        catalog.reload()
    except (AgentLoadError, OSError) as exc:
        logger.error("Cannot start %s: %s", SERVER_NAME, exc)
        return 1

    sys.stdin.reconfigure(encoding="utf-8", errors="replace")
    sys.stdout.reconfigure(encoding="utf-8")

    server = MCPServer(catalog)
    try:
        server.serve(StdioTransport(sys.stdin, sys.stdout))
    except KeyboardInterrupt:
        return 130
    except BrokenPipeError:
        logger.info("Peer closed the output stream")
    return 0


if __name__ == "__main__":
    sys.exit(main())
