"""JSON-line request parsing and response envelopes for the result channel."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field

MethodHandler = Callable[[dict[str, object]], dict[str, object]]


@dataclass(slots=True, frozen=True)
class Request:
    """Normalized incoming request."""

    request_id: str
    method: str
    params: dict[str, object]


@dataclass(slots=True, frozen=True)
class MethodDispatchError(Exception):
    """Represents deterministic method dispatch failures."""

    code: str
    message: str


@dataclass(slots=True)
class MethodRegistry:
    """In-memory method table preserving deterministic insertion order."""

    _handlers: dict[str, MethodHandler] = field(default_factory=dict)

    def register(self, name: str, handler: MethodHandler) -> None:
        self._handlers[name] = handler

    def names(self) -> tuple[str, ...]:
        return tuple(self._handlers.keys())

    def dispatch(self, name: str, params: dict[str, object]) -> dict[str, object]:
        handler = self._handlers.get(name)
        if handler is None:
            raise MethodDispatchError(code="UNKNOWN_METHOD", message=f"Unknown method: {name}")
        return handler(params)


def encode_request(request_id: int | str, method: str, params: dict[str, object]) -> str:
    """Serialize one request as a single JSON line."""
    payload = {"id": request_id, "method": method, "params": params}
    return f"{json.dumps(payload, sort_keys=True)}\n"


def encode_response(response: dict[str, object]) -> str:
    return f"{json.dumps(response, sort_keys=True)}\n"


def parse_request(payload: object, fallback_id: str) -> Request | dict[str, object]:
    """Validate request payload and return normalized Request or an error envelope."""
    if not isinstance(payload, dict):
        return error_response(
            request_id=fallback_id,
            code="INVALID_REQUEST",
            message="Request must be an object.",
        )

    request_id = extract_request_id(payload.get("id"), fallback_id)
    method = payload.get("method")
    params = payload.get("params", {})

    if not isinstance(method, str) or not method:
        return error_response(
            request_id=request_id,
            code="INVALID_REQUEST",
            message="Request method must be a non-empty string.",
        )
    if not isinstance(params, dict):
        return error_response(
            request_id=request_id,
            code="INVALID_PARAMS",
            message="Request params must be an object.",
        )
    return Request(request_id=request_id, method=method, params=params)


def extract_request_id(request_id: object, fallback_id: str) -> str:
    """Extract request ID from payload or use the caller's fallback."""
    if isinstance(request_id, str) and request_id:
        return request_id
    if isinstance(request_id, int) and not isinstance(request_id, bool):
        return str(request_id)
    return fallback_id


def success_response(request_id: str, result: dict[str, object]) -> dict[str, object]:
    """Build success envelope."""
    return {
        "request_id": request_id,
        "ok": True,
        "result": result,
    }


def error_response(request_id: str, code: str, message: str) -> dict[str, object]:
    """Build explicit error envelope."""
    return {
        "request_id": request_id,
        "ok": False,
        "result": {},
        "error": {"code": code, "message": message},
    }


def require_string(params: dict[str, object], name: str, *, allow_empty: bool = False) -> str:
    """Return params[name] or raise INVALID_PARAMS."""
    value = params.get(name)
    if not isinstance(value, str) or (not allow_empty and not value):
        raise MethodDispatchError(
            code="INVALID_PARAMS",
            message=f"params.{name} must be a {'' if allow_empty else 'non-empty '}string.",
        )
    return value


def require_int(params: dict[str, object], name: str) -> int:
    value = params.get(name)
    if not isinstance(value, int) or isinstance(value, bool):
        raise MethodDispatchError(
            code="INVALID_PARAMS", message=f"params.{name} must be an integer."
        )
    return value
