"""JSON-RPC 2.0 dispatcher for the MCP surface.

Accepts a decoded request object or batch array and returns the response
object, the response array, or None when nothing needs to be sent back.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Union

from mcp.types import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    Implementation,
)

from core import normalize
from core.errors import NotFoundError, ProtocolError, ValidationError
from core.metrics import metrics
from mcp_server.catalog import prompts_payload, resources_payload, tools_payload
from mcp_server.config import MCPSettings, mcp_settings
from mcp_server.memory_resources import get_prompt, read_resource
from mcp_server.memory_tools import MemoryTools

logger = logging.getLogger(__name__)

SERVER_ERROR = -32000

CAPABILITIES = {
    "tools": {"listChanged": False},
    "resources": {"subscribe": False, "listChanged": False},
    "prompts": {"listChanged": False},
}

Response = Dict[str, Any]


def error_response(request_id: Any, code: int, message: str) -> Response:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _result(request_id: Any, result: Any) -> Response:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


class McpDispatcher:
    """Routes JSON-RPC methods to the catalog and the tool handlers."""

    def __init__(self, tools: MemoryTools, settings: Optional[MCPSettings] = None) -> None:
        self.tools = tools
        self.settings = settings or mcp_settings
        self._methods = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
            "resources/list": self._resources_list,
            "resources/read": self._resources_read,
            "prompts/list": self._prompts_list,
            "prompts/get": self._prompts_get,
        }

    async def handle_payload(self, payload: Any) -> Union[Response, List[Response], None]:
        if isinstance(payload, list):
            if not payload:
                return error_response(None, INVALID_REQUEST, "Invalid Request")
            responses = await asyncio.gather(*(self.handle_request(item) for item in payload))
            out = [r for r in responses if r is not None]
            return out or None
        return await self.handle_request(payload)

    async def handle_request(self, request: Any) -> Optional[Response]:
        """Handle one envelope. Returns None for notifications."""
        if (
            not isinstance(request, dict)
            or request.get("jsonrpc") != "2.0"
            or not isinstance(request.get("method"), str)
            or not request["method"]
        ):
            request_id = request.get("id") if isinstance(request, dict) else None
            metrics.increment(f"rpc.error_code.{INVALID_REQUEST}")
            return error_response(request_id, INVALID_REQUEST, "Invalid Request")

        method = request["method"]
        is_notification = "id" not in request
        request_id = request.get("id")

        if method.startswith("notifications/"):
            return None

        started = time.perf_counter()
        error_code: Optional[int] = None
        try:
            handler = self._methods.get(method)
            if handler is None:
                raise ProtocolError(METHOD_NOT_FOUND, "Method not found")
            response = _result(request_id, await handler(request.get("params")))
        except (ValidationError, NotFoundError) as e:
            error_code = INVALID_PARAMS
            response = error_response(request_id, error_code, str(e))
        except ProtocolError as e:
            error_code = e.code
            response = error_response(request_id, error_code, str(e))
        except Exception as e:
            error_code = SERVER_ERROR
            logger.exception("unhandled error in %s", method)
            response = error_response(request_id, error_code, str(e) or "Internal error")
        finally:
            # Unknown method names all land in one bucket.
            metric_name = method if method in self._methods else "unknown"
            metrics.record_call(
                "rpc", metric_name, (time.perf_counter() - started) * 1000.0, error_code
            )

        return None if is_notification else response

    # --- Methods --------------------------------------------------------

    async def _initialize(self, params: Any) -> Dict[str, Any]:
        server_info = Implementation(
            name=self.settings.server_name,
            version=self.settings.server_version,
        )
        return {
            "protocolVersion": self.settings.protocol_version,
            "capabilities": CAPABILITIES,
            "serverInfo": server_info.model_dump(exclude_none=True),
        }

    async def _ping(self, params: Any) -> Dict[str, Any]:
        return {}

    async def _tools_list(self, params: Any) -> Dict[str, Any]:
        return {"tools": tools_payload()}

    async def _tools_call(self, params: Any) -> Dict[str, Any]:
        params = normalize.as_object(params, "params")
        name = normalize.required_string(params.get("name"), "name", 120)
        arguments = params.get("arguments")
        return await self.tools.call(name, {} if arguments is None else arguments)

    async def _resources_list(self, params: Any) -> Dict[str, Any]:
        return {"resources": resources_payload()}

    async def _resources_read(self, params: Any) -> Dict[str, Any]:
        params = normalize.as_object(params, "params")
        return read_resource(normalize.required_string(params.get("uri"), "uri", 200))

    async def _prompts_list(self, params: Any) -> Dict[str, Any]:
        return {"prompts": prompts_payload()}

    async def _prompts_get(self, params: Any) -> Dict[str, Any]:
        params = normalize.as_object(params, "params")
        return get_prompt(normalize.required_string(params.get("name"), "name", 120))
