"""
MCP JSON-RPC Type Definitions
=============================
Standard message types for the Model Context Protocol (MCP) communication
layer between a host (client) and the orchestr8 agent server, carried one
message per line over standard input/output.

Architecture note:
    Stable boundary: every failure that crosses the wire is an ``MCPError``
    reduced to ``{code, message}``. Tracebacks and internal details stay in
    the server log on stderr.
"""

from __future__ import annotations

import json
import math
from enum import IntEnum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AllowInfNan,
    BaseModel,
    Field,
    Strict,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

JSONRPC_VERSION = "2.0"

# JSON-RPC ids are opaque: a string, a finite number, or null. Booleans are not ids.
FiniteFloat = Annotated[float, Strict(), AllowInfNan(False)]
RequestId = Optional[Union[StrictInt, FiniteFloat, StrictStr]]


class ErrorCode(IntEnum):
    """Standard JSON-RPC 2.0 codes plus the server-defined range."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    AGENT_NOT_FOUND = -32001
    RELOAD_FAILED = -32002


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

class MCPError(Exception):
    """Base class for every error that is reported back to the peer."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": int(self.code), "message": self.message}


class ParseError(MCPError):
    code = ErrorCode.PARSE_ERROR
    default_message = "Parse error"


class InvalidRequest(MCPError):
    code = ErrorCode.INVALID_REQUEST
    default_message = "Invalid Request"


class MethodNotFound(MCPError):
    code = ErrorCode.METHOD_NOT_FOUND
    default_message = "Method not found"


class InvalidParams(MCPError):
    code = ErrorCode.INVALID_PARAMS
    default_message = "Invalid params"


class InternalError(MCPError):
    code = ErrorCode.INTERNAL_ERROR
    default_message = "Internal error"


class AgentNotFound(MCPError):
    code = ErrorCode.AGENT_NOT_FOUND
    default_message = "Agent not found"


class ReloadFailed(MCPError):
    code = ErrorCode.RELOAD_FAILED
    default_message = "Agent reload failed"


def describe_validation_error(exc: ValidationError) -> str:
    """Flattens a pydantic error into one line without echoing input values."""
    parts = []
    for err in exc.errors():
        location = ".".join(str(item) for item in err["loc"]) or "params"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


def recover_id(payload: Any) -> RequestId:
    """Returns the payload's id when it is usable, otherwise None."""
    if not isinstance(payload, dict):
        return None
    candidate = payload.get("id")
    if isinstance(candidate, bool):
        return None
    if isinstance(candidate, float) and not math.isfinite(candidate):
        return None
    if isinstance(candidate, (int, float, str)):
        return candidate
    return None


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

class MCPRequest(BaseModel):
    """
    JSON-RPC 2.0 request envelope sent by the host to invoke a method on the
    orchestr8 server. Every request is answered; one sent without an ``id``
    is answered with ``id: null``.
    """

    jsonrpc: Literal["2.0"] = Field(default=JSONRPC_VERSION, description="JSON-RPC protocol version")
    id: RequestId = Field(default=None, description="Opaque request identifier, echoed verbatim")
    method: StrictStr = Field(
        ...,
        description="Method to invoke (e.g. 'initialize', 'agents/query')",
    )
    params: Union[dict[str, Any], list[Any]] = Field(
        default_factory=dict,
        description="Method-specific parameters",
    )

    @field_validator("params", mode="before")
    @classmethod
    def _null_params_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @classmethod
    def from_payload(cls, payload: Any) -> "MCPRequest":
        """
        Validates a decoded JSON value as a request envelope.

        Raises:
            InvalidRequest: if the value is not a single well-formed request.
        """
        if not isinstance(payload, dict):
            raise InvalidRequest("Invalid Request: expected a JSON object")
        if payload.get("jsonrpc") != JSONRPC_VERSION:
            raise InvalidRequest("Invalid Request: 'jsonrpc' must be \"2.0\"")
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise InvalidRequest(f"Invalid Request: {describe_validation_error(exc)}") from exc

    def to_json(self) -> str:
        return json.dumps(self.model_dump(), ensure_ascii=False, allow_nan=False, separators=(",", ":"))


class MCPResponse(BaseModel):
    """
    JSON-RPC 2.0 response envelope returned by the server.
    Exactly one of `result` or `error` is present.
    """

    jsonrpc: Literal["2.0"] = Field(default=JSONRPC_VERSION, description="JSON-RPC protocol version")
    id: RequestId = Field(default=None, description="Must match the request id")
    result: Optional[Any] = Field(
        default=None,
        description="Successful result payload",
    )
    error: Optional[dict[str, Any]] = Field(
        default=None,
        description="Error object with code and message",
    )

    @model_validator(mode="after")
    def _result_xor_error(self) -> "MCPResponse":
        if (self.result is None) == (self.error is None):
            raise ValueError("exactly one of 'result' or 'error' must be set")
        return self

    @classmethod
    def from_error(cls, request_id: RequestId, exc: MCPError) -> "MCPResponse":
        return cls(id=request_id, error=exc.to_dict())

    def to_wire(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            message["error"] = self.error
        else:
            message["result"] = self.result
        return message

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False, allow_nan=False, separators=(",", ":"))
