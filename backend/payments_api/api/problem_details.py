"""RFC 7807 problem responses shared by every exception handler."""

import uuid
from dataclasses import asdict, dataclass, field
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

PROBLEM_MEDIA_TYPE = "application/problem+json"
PROBLEM_BASE_URI = "https://example.com/problems/"


def problem_type(slug: str) -> str:
    return f"{PROBLEM_BASE_URI}{slug}"


PROBLEM_TYPE_VALIDATION = problem_type("validation-error")
PROBLEM_TYPE_DOMAIN = problem_type("domain-error")
PROBLEM_TYPE_RATE_LIMIT = problem_type("rate-limit")
PROBLEM_TYPE_SERVER = problem_type("server-error")
PROBLEM_TYPE_UPSTREAM = problem_type("upstream-gateway")

# Used when a handler does not pass an explicit type.
_TYPES_BY_STATUS = {
    400: PROBLEM_TYPE_VALIDATION,
    401: problem_type("unauthorized"),
    404: problem_type("not-found"),
    429: PROBLEM_TYPE_RATE_LIMIT,
    502: PROBLEM_TYPE_UPSTREAM,
}
_PHRASES = {member.value: member.phrase for member in HTTPStatus}


@dataclass(frozen=True)
class Problem:
    type: str
    title: str
    status: int
    detail: str
    request_id: str
    errors: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def for_status(
        cls,
        status: int,
        *,
        detail: str,
        request_id: str,
        title: str | None = None,
        type_: str | None = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> "Problem":
        default_type = PROBLEM_TYPE_SERVER if status >= 500 else PROBLEM_TYPE_DOMAIN
        return cls(
            type=type_ or _TYPES_BY_STATUS.get(status, default_type),
            title=title or _PHRASES.get(status, "Error"),
            status=status,
            detail=detail,
            request_id=request_id,
            errors=list(errors or []),
        )


def request_id_for(request: Request) -> str:
    """Reuse the id assigned by the request middleware, falling back to the inbound header."""
    state = request.state
    if not getattr(state, "request_id", None):
        state.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    return state.request_id


def problem_details(
    request: Request,
    *,
    status: int,
    title: str | None,
    detail: str,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    problem = Problem.for_status(
        status,
        detail=detail,
        request_id=request_id_for(request),
        title=title,
        type_=type_,
        errors=errors,
    )
    response = JSONResponse(asdict(problem), status_code=status, headers=headers, media_type=PROBLEM_MEDIA_TYPE)
    response.headers.setdefault("X-Request-ID", problem.request_id)
    return response
