"""RFC 7807 responses for everything the API can fail with.

Every body carries the request id, and the problem ``type`` is derived from the
error class so clients can branch on it without parsing ``detail``.
"""

import logging
import uuid
from http import HTTPStatus
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cleanbook.domain.errors import DomainError

logger = logging.getLogger(__name__)

PROBLEM_BASE_URI = "https://cleanbook.dev/problems/"

# Problems raised by the HTTP layer itself rather than the domain.
HTTP_PROBLEMS = {
    401: "missing-actor",
    403: "forbidden",
    404: "not-found",
    405: "method-not-allowed",
    422: "request-validation-error",
}


def problem_type(slug: str) -> str:
    return f"{PROBLEM_BASE_URI}{slug}"


def resolve_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    if not request_id:
        request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id


def problem_details(
    request: Request,
    *,
    status: int,
    slug: str,
    detail: str,
    title: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    request_id = resolve_request_id(request)
    content = {
        "type": type_ or problem_type(slug),
        "title": title or HTTPStatus(status).phrase,
        "status": status,
        "detail": detail,
        "request_id": request_id,
        "errors": errors or [],
    }
    response = JSONResponse(
        status_code=status,
        content=content,
        headers=headers,
        media_type="application/problem+json",
    )
    response.headers.setdefault("X-Request-ID", request_id)
    return response


def domain_problem(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        # Settings faults are operator problems, not client ones.
        logger.error(
            "domain_server_error",
            exc_info=exc,
            extra={
                "extra": {
                    "error_type": type(exc).__name__,
                    "detail": exc.detail,
                    "fields": [error.get("field") for error in exc.errors or []],
                }
            },
        )
    return problem_details(
        request,
        status=exc.status_code,
        slug=exc.problem,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
        type_=exc.type,
    )


def request_validation_problem(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field = ".".join(str(part) for part in loc if part not in {"body", "query", "path", "header"}) or "body"
        errors.append({"field": field, "message": error.get("msg", "Invalid value")})
    return problem_details(
        request,
        status=422,
        slug=HTTP_PROBLEMS[422],
        title="Validation Error",
        detail="Request validation failed",
        errors=errors,
    )


def http_problem(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    slug = HTTP_PROBLEMS.get(exc.status_code, "server-error" if exc.status_code >= 500 else "http-error")
    return problem_details(
        request,
        status=exc.status_code,
        slug=slug,
        title=detail,
        detail=detail,
        headers=exc.headers,
    )


def server_problem(request: Request) -> JSONResponse:
    return problem_details(
        request,
        status=500,
        slug="server-error",
        title="Internal Server Error",
        detail="Unexpected error",
    )
