# Overview: JSON response envelope and error-to-HTTP mapping for the Flask app.

from __future__ import annotations

import uuid
from typing import Any

from flask import Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from .errors import DomainError, internal_problem
from .time_utils import to_utc_z, utcnow


CORRELATION_HEADER = "X-Correlation-Id"


def api_success(data: Any = None, message: str = "Success", status: int = 200):
    return jsonify({"success": True, "message": message, "data": data}), status


def api_error(problem: dict):
    """Error envelope: same shape as success plus the problem body."""
    body = {
        "success": False,
        "message": problem.get("userFriendlyMessage") or problem.get("title"),
        "data": None,
        "error": problem,
    }
    response = jsonify(body)
    response.status_code = problem["status"]
    if problem.get("traceId"):
        response.headers[CORRELATION_HEADER] = problem["traceId"]
    return response


def _request_context() -> dict:
    return {
        "instance": request.path,
        "trace_id": request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex,
        "timestamp": to_utc_z(utcnow()),
        "method": request.method,
    }


def register_error_handlers(app: Flask) -> None:
    """
    Map exceptions to problem responses.

    - DomainError subclasses: their own status and user message, logged as warnings
    - HTTPException (404 routes, 405 methods): status preserved
    - anything else: 500 with the internal message hidden, logged with traceback
    """

    @app.errorhandler(DomainError)
    def handle_domain_error(exc: DomainError):
        ctx = _request_context()
        current_app.logger.warning(
            "%s [%s] %s %s: %s",
            exc.error_code,
            ctx["trace_id"],
            ctx["method"],
            ctx["instance"],
            exc.message,
        )
        return api_error(exc.to_problem(**ctx))

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        ctx = _request_context()
        return api_error(
            internal_problem(
                detail=exc.description or exc.name,
                status=exc.code or 500,
                title=exc.name,
                **ctx,
            )
        )

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        ctx = _request_context()
        current_app.logger.exception("Unhandled error [%s] %s %s", ctx["trace_id"], ctx["method"], ctx["instance"])
        return api_error(internal_problem(**ctx))
