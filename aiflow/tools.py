"""Tool invocation: registry lookup, auth headers, HTTP request building.

Only ``http`` tools are invocable. Every failure while running an agent's tools
is recorded as ``{"ok": False, "error": ...}`` under
``context["__tools"][agent_id][tool_name]``; nothing escapes to abort the run.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlencode

import requests
from loguru import logger
from pydantic import TypeAdapter, ValidationError as SchemaError

from .coercion import to_text
from .errors import InvalidToolDefinition, ToolInvocationError, ToolNotFound, UnsupportedToolType
from .schemas import (
    ApiKeyAuth,
    BearerAuth,
    BuiltinTool,
    HttpTool,
    NoAuth,
    OAuth2Auth,
    PythonTool,
    ToolAuth,
    ToolDefinition,
)

DEFAULT_API_KEY_HEADER = "X-API-Key"
TOOLS_KEY = "__tools"

_tool_adapter = TypeAdapter(ToolDefinition)
_auth_adapter = TypeAdapter(ToolAuth)


@dataclass
class ToolInvocation:
    input: Dict[str, Any] = field(default_factory=dict)
    operation: Optional[str] = None
    global_api_key: Optional[str] = None


@dataclass
class HttpRequest:
    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None


@dataclass
class ToolRunResult:
    context: Dict[str, Any]
    results: Dict[str, Dict[str, Any]]


KNOWN_TOOL_TYPES = ("http", "builtin", "python")


def tool_type(raw: Any) -> str:
    """Declared ``type`` of a registry entry, parsed or not."""
    if isinstance(raw, Mapping):
        return str(raw.get("type") or "unknown")
    return str(getattr(raw, "type", None) or type(raw).__name__)


def parse_tool(name: str, raw: Any) -> ToolDefinition:
    """Parse a registry entry.

    Raises:
        UnsupportedToolType: the entry declares a type the invoker does not know.
        InvalidToolDefinition: a known type with a malformed body (e.g. bad ``auth``).
    """
    if isinstance(raw, (HttpTool, BuiltinTool, PythonTool)):
        return raw
    declared = tool_type(raw)
    if declared not in KNOWN_TOOL_TYPES:
        raise UnsupportedToolType(declared)
    try:
        return _tool_adapter.validate_python(raw)
    except SchemaError as e:
        raise InvalidToolDefinition(name, str(e).splitlines()[0]) from e


def resolve_tool(name: str, registry: Optional[Mapping[str, Any]]) -> Optional[ToolDefinition]:
    """Look ``name`` up in ``registry``; ``None`` when absent or unusable. Never raises."""
    if not registry or name not in registry:
        return None
    try:
        return parse_tool(name, registry[name])
    except (UnsupportedToolType, InvalidToolDefinition) as e:
        logger.warning("Tool '{}' cannot be used: {}", name, e)
        return None


def _bearer(token: Optional[str]) -> Dict[str, str]:
    if not token:
        return {}
    token = token.strip()
    if not token.lower().startswith("bearer "):
        token = f"Bearer {token}"
    return {"Authorization": token}


def build_auth_headers(auth: Any, global_api_key: Optional[str] = None) -> Dict[str, str]:
    if auth is None:
        return {}
    if isinstance(auth, Mapping):
        auth = _auth_adapter.validate_python(dict(auth))
    match auth:
        case NoAuth():
            return {}
        case ApiKeyAuth(key=key, header_key=header_key):
            value = key or global_api_key
            if not value:
                return {}
            return {header_key or DEFAULT_API_KEY_HEADER: value}
        case BearerAuth(token=token) | OAuth2Auth(token=token):
            return _bearer(token)
    raise TypeError(f"Unknown auth variant: {auth!r}")


def _join_operation(endpoint: str, operation: Optional[str]) -> str:
    if not operation:
        return endpoint
    return endpoint.rstrip("/") + "/" + operation.lstrip("/")


def build_http_request(definition: ToolDefinition, invocation: Optional[ToolInvocation] = None) -> HttpRequest:
    """Build the outbound request for an ``http`` tool.

    GET and HEAD put the input in the query string (input key order); other
    verbs send it as a JSON body. Raises UnsupportedToolType for non-http tools.
    """
    if not isinstance(definition, HttpTool):
        raise UnsupportedToolType(getattr(definition, "type", type(definition).__name__))
    invocation = invocation or ToolInvocation()
    method = definition.method or "GET"
    url = _join_operation(definition.endpoint, invocation.operation)
    headers: Dict[str, str] = {}
    body: Optional[str] = None

    if method in ("GET", "HEAD"):
        pairs = [(k, to_text(v)) for k, v in invocation.input.items() if v is not None]
        if pairs:
            url += ("&" if "?" in url else "?") + urlencode(pairs)
    else:
        headers["Content-Type"] = "application/json"
        body = json.dumps(invocation.input, separators=(",", ":"), ensure_ascii=False)

    headers.update(build_auth_headers(definition.auth, invocation.global_api_key))
    return HttpRequest(url=url, method=method, headers=headers, body=body)


class HttpTransport:
    """Sends a built request and returns the decoded response payload."""

    def send(self, request: HttpRequest, timeout_s: float = 30.0) -> Any:  # pragma: no cover - abstract
        raise NotImplementedError

    def close(self) -> None:
        pass


class RequestsTransport(HttpTransport):
    def __init__(self, session: Optional[requests.Session] = None):
        # a caller-supplied session stays open; ours is closed by close()
        self._owns_session = session is None
        self.session = session or requests.Session()

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def send(self, request: HttpRequest, timeout_s: float = 30.0) -> Any:
        try:
            r = self.session.request(
                request.method,
                request.url,
                headers=request.headers,
                data=request.body.encode("utf-8") if request.body is not None else None,
                timeout=timeout_s,
            )
            r.raise_for_status()
        except requests.RequestException as e:
            raise ToolInvocationError(str(e)) from e
        if "json" in r.headers.get("Content-Type", ""):
            try:
                return r.json()
            except ValueError:
                return r.text
        return r.text


def invoke_tool(
    name: str,
    registry: Optional[Mapping[str, Any]],
    invocation: ToolInvocation,
    transport: HttpTransport,
    timeout_s: float = 30.0,
) -> Any:
    if not registry or name not in registry:
        raise ToolNotFound(name)
    definition = parse_tool(name, registry[name])
    request = build_http_request(definition, invocation)
    logger.debug("Tool '{}' -> {} {}", name, request.method, request.url)
    return transport.send(request, timeout_s=timeout_s)


def run_tools_for_agent(
    agent_id: str,
    tool_names: Sequence[str],
    registry: Optional[Mapping[str, Any]],
    context: Dict[str, Any],
    tool_input: Optional[Dict[str, Any]] = None,
    transport: Optional[HttpTransport] = None,
    global_api_key: Optional[str] = None,
    timeout_s: float = 30.0,
) -> ToolRunResult:
    """Run each requested tool in order and merge the outcomes into ``context``."""
    results: Dict[str, Dict[str, Any]] = {}
    if not tool_names:
        return ToolRunResult(context, results)

    owned = transport is None
    transport = transport or RequestsTransport()
    invocation = ToolInvocation(input=dict(tool_input or {}), global_api_key=global_api_key)
    try:
        for name in tool_names:
            try:
                data = invoke_tool(name, registry, invocation, transport, timeout_s)
                results[name] = {"ok": True, "data": data}
            except (ToolNotFound, UnsupportedToolType, InvalidToolDefinition) as e:
                results[name] = {"ok": False, "error": str(e)}
            except ToolInvocationError as e:
                results[name] = {"ok": False, "error": f"Tool '{name}' failed: {e}"}
            except Exception as e:  # custom transports may raise anything
                results[name] = {"ok": False, "error": f"Tool '{name}' failed: {type(e).__name__}: {e}"}
            if not results[name]["ok"]:
                logger.warning("[tools] {}.{}: {}", agent_id, name, results[name]["error"])
    finally:
        if owned:
            transport.close()

    tools_ctx = context.get(TOOLS_KEY)
    if not isinstance(tools_ctx, dict):
        tools_ctx = context[TOOLS_KEY] = {}
    agent_ctx = tools_ctx.get(agent_id)
    if not isinstance(agent_ctx, dict):
        agent_ctx = tools_ctx[agent_id] = {}
    agent_ctx.update(results)
    return ToolRunResult(context, results)
