"""JSON-RPC 2.0 wire models for talking to the MCP peer."""

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"


class RpcRequest(BaseModel):
    """Outgoing request that expects a response."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: int
    method: str
    params: dict[str, Any] | None = None


class RpcNotification(BaseModel):
    """Message without id; never answered."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: str
    params: dict[str, Any] | None = None


class RpcErrorObject(BaseModel):
    """Error member of a response."""

    code: int
    message: str
    data: Any = None


class RpcResponse(BaseModel):
    """Response to one of our requests, carrying exactly one of result/error."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: int
    result: Any = None
    error: RpcErrorObject | None = None

    @model_validator(mode="before")
    @classmethod
    def _result_xor_error(cls, data: Any) -> Any:
        if isinstance(data, dict) and ("result" in data) == ("error" in data):
            raise ValueError("response must carry exactly one of result or error")
        return data


class RpcPeerRequest(BaseModel):
    """Request initiated by the peer (for example a ping)."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: int | str
    method: str
    params: Any = None


class UnknownMessage(BaseModel):
    """Anything the peer sent that matches none of the known shapes."""

    raw: Any
    reason: str = ""
    id: int | None = None


IncomingMessage = Union[RpcResponse, RpcNotification, RpcPeerRequest, UnknownMessage]


def parse_message(payload: Any) -> IncomingMessage:
    """Classify a decoded JSON value coming from the peer.

    Shapes that carry a numeric id but fail validation are returned as
    UnknownMessage with the id set, so the waiting caller can be failed
    with a ProtocolError instead of hanging.
    """
    if not isinstance(payload, dict):
        return UnknownMessage(raw=payload, reason="not a JSON object")

    has_id = "id" in payload and payload["id"] is not None
    has_method = "method" in payload

    try:
        if has_method and has_id:
            return RpcPeerRequest.model_validate(payload)
        if has_method:
            return RpcNotification.model_validate(payload)
        if has_id:
            return RpcResponse.model_validate(payload)
    except ValidationError as e:
        raw_id = payload.get("id")
        msg_id = raw_id if isinstance(raw_id, int) and not isinstance(raw_id, bool) else None
        return UnknownMessage(raw=payload, reason=str(e), id=msg_id)

    return UnknownMessage(raw=payload, reason="neither id nor method present")


class ToolDescriptor(BaseModel):
    """A tool advertised by the peer through tools/list."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")


class ToolListResult(BaseModel):
    tools: list[ToolDescriptor]


class ServerInfo(BaseModel):
    name: str = ""
    version: str = ""


class InitializeResult(BaseModel):
    """Result of the initialize handshake."""

    model_config = ConfigDict(populate_by_name=True)

    protocol_version: str = Field(alias="protocolVersion")
    capabilities: dict[str, Any] = Field(default_factory=dict)
    server_info: ServerInfo = Field(default_factory=ServerInfo, alias="serverInfo")


class ToolCallResult(BaseModel):
    """Result of tools/call."""

    model_config = ConfigDict(populate_by_name=True)

    content: list[dict[str, Any]] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    def texts(self) -> list[str]:
        """Text parts of the content, in order."""
        return [
            str(item.get("text", ""))
            for item in self.content
            if item.get("type", "text") == "text"
        ]
