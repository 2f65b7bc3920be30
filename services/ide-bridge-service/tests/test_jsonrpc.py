from __future__ import annotations

import pytest

from app.mcp_host.errors import InvalidRequest
from app.models.jsonrpc import (
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcSuccess,
    failure,
    parse_message,
    parse_response,
    success,
)


class TestBuilders:
    def test_success(self) -> None:
        assert success("a", {"tools": []}) == {"jsonrpc": "2.0", "id": "a", "result": {"tools": []}}

    def test_failure_omits_missing_data(self) -> None:
        assert failure(None, -32601, "Method not found") == {
            "jsonrpc": "2.0",
            "id": None,
            "error": {"code": -32601, "message": "Method not found"},
        }

    def test_failure_keeps_data_untouched(self) -> None:
        data = {"detail": None, "n": 1}
        assert failure(3, -32000, "x", data)["error"]["data"] == {"detail": None, "n": 1}


class TestParsing:
    def test_variants(self) -> None:
        assert isinstance(parse_message({"jsonrpc": "2.0", "id": 1, "method": "ping"}), JsonRpcRequest)
        assert isinstance(parse_message({"jsonrpc": "2.0", "method": "notifications/initialized"}), JsonRpcNotification)
        assert isinstance(parse_message({"id": 1, "result": {}}), JsonRpcSuccess)
        assert isinstance(parse_message({"id": 1, "error": {"code": 1, "message": "m"}}), JsonRpcError)

    @pytest.mark.parametrize(
        "obj",
        [[], {"jsonrpc": "2.0", "id": 1}, {"id": 1, "method": ""}, {"id": True, "method": "ping"}, {"jsonrpc": "1.0", "method": "x"}],
    )
    def test_invalid(self, obj) -> None:
        with pytest.raises(InvalidRequest):
            parse_message(obj)

    def test_lenient_response_parsing(self) -> None:
        assert parse_response({"method": "x"}) is None
        assert parse_response({"error": "not an object"}) is None
        error = parse_response({"id": 1, "error": {"code": -1, "message": "m", "data": [1]}})
        assert isinstance(error, JsonRpcError)
        assert error.to_wire()["error"] == {"code": -1, "message": "m", "data": [1]}
