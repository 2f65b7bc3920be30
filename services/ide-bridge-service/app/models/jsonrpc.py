# services/ide-bridge-service/app/models/jsonrpc.py
from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from app.mcp_host.errors import InvalidRequest

JsonRpcId = Optional[Union[StrictInt, StrictStr]]


# ─────────────────────────────────────────────────────────────
# Message variants
# ─────────────────────────────────────────────────────────────

class _JsonRpcBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: Literal["2.0"] = "2.0"


class JsonRpcRequest(_JsonRpcBase):
    id: JsonRpcId
    method: str = Field(min_length=1)
    params: Optional[Union[Dict[str, Any], list]] = None

    def to_wire(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id, "method": self.method}
        if self.params is not None:
            body["params"] = self.params
        return body


class JsonRpcNotification(_JsonRpcBase):
    method: str = Field(min_length=1)
    params: Optional[Union[Dict[str, Any], list]] = None


class JsonRpcErrorObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Optional[Any] = None

    def to_wire(self) -> Dict[str, Any]:
        err: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            err["data"] = self.data
        return err


class JsonRpcSuccess(_JsonRpcBase):
    id: JsonRpcId = None
    result: Any

    def to_wire(self) -> Dict[str, Any]:
        return {"jsonrpc": self.jsonrpc, "id": self.id, "result": self.result}


class JsonRpcError(_JsonRpcBase):
    id: JsonRpcId = None
    error: JsonRpcErrorObject

    def to_wire(self) -> Dict[str, Any]:
        return {
            "jsonrpc": self.jsonrpc,
            "id": self.id,
            "error": self.error.to_wire(),
        }


JsonRpcResponse = Union[JsonRpcSuccess, JsonRpcError]
JsonRpcMessage = Union[JsonRpcRequest, JsonRpcNotification, JsonRpcSuccess, JsonRpcError]


# ─────────────────────────────────────────────────────────────
# Boundary parsing
# ─────────────────────────────────────────────────────────────

def is_response_shaped(obj: Any) -> bool:
    return isinstance(obj, dict) and ("result" in obj or "error" in obj)


def parse_message(obj: Any) -> JsonRpcMessage:
    """
    Classify a decoded JSON value into one of the four JSON-RPC variants.
    A message with a method and no "id" member is a notification.
    Raises InvalidRequest when required fields are missing or malformed.
    """
    if not isinstance(obj, dict):
        raise InvalidRequest("Invalid Request: expected a JSON object")

    try:
        if "method" in obj:
            if "id" in obj:
                return JsonRpcRequest.model_validate(obj)
            return JsonRpcNotification.model_validate(obj)
        if "error" in obj:
            return JsonRpcError.model_validate(obj)
        if "result" in obj:
            return JsonRpcSuccess.model_validate(obj)
    except ValidationError as e:
        raise InvalidRequest(f"Invalid Request: {e.errors()[0].get('msg', 'malformed message')}") from e

    raise InvalidRequest("Invalid Request: no method, result or error member")


def parse_response(obj: Any) -> Optional[JsonRpcResponse]:
    """
    Lenient variant for replies coming off the local process stream:
    returns None for anything that is not a well-formed response.
    """
    if not is_response_shaped(obj):
        return None
    try:
        if "error" in obj:
            return JsonRpcError.model_validate(obj)
        return JsonRpcSuccess.model_validate(obj)
    except ValidationError:
        return None


def success(id_: Any, result: Any) -> Dict[str, Any]:
    return JsonRpcSuccess(id=id_, result=result).to_wire()


def failure(id_: Any, code: int, message: str, data: Optional[Any] = None) -> Dict[str, Any]:
    error = JsonRpcErrorObject(code=code, message=message, data=data)
    return JsonRpcError(id=id_, error=error).to_wire()
