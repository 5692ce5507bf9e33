from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

_SUCCESS_CODES = {200: "ok", 201: "created", 202: "accepted"}
_SKIPPED_HEADERS = {"content-length", "content-type"}


def _success_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Success"


def success_envelope(data: Any, status_code: int = 200) -> dict[str, Any]:
    return {
        "code": _SUCCESS_CODES.get(status_code, "ok"),
        "message": _success_message(status_code),
        "data": data,
        "details": {},
    }


def _is_enveloped(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and "code" in payload
        and "message" in payload
        and ("data" in payload or "details" in payload)
    )


def _copy_headers(source: Response, target: Response) -> Response:
    for key, value in source.headers.items():
        if key.lower() not in _SKIPPED_HEADERS:
            target.headers[key] = value
    return target


class ResponseEnvelopeMiddleware(BaseHTTPMiddleware):
    """Wrap successful JSON bodies as ``{code, message, data, details}``."""

    async def dispatch(self, request, call_next) -> Response:
        response = await call_next(request)
        if not 200 <= response.status_code < 300:
            return response

        if response.status_code == 204:
            return _copy_headers(
                response, JSONResponse(status_code=200, content=success_envelope(None, 200))
            )

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("application/json"):
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        try:
            payload = json.loads(body) if body else None
        except (UnicodeDecodeError, json.JSONDecodeError):
            return _copy_headers(
                response,
                Response(content=body, status_code=response.status_code, media_type=content_type),
            )

        if not _is_enveloped(payload):
            payload = success_envelope(payload, response.status_code)
        return _copy_headers(
            response, JSONResponse(status_code=response.status_code, content=payload)
        )


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
