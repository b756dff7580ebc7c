"""
salesflow.api.errors

Exception handlers that turn domain and validation failures into JSON responses.

Responsibilities:
- Render request-body validation errors as `{"message", "errors": {field: [...]}}` (422).
- Render `ValidationFailed` the same way, and other domain errors like `HTTPException`.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from salesflow.errors import DomainError, ValidationFailed
from salesflow.observability.logging import get_logger

log = get_logger(__name__)

_LOCATIONS = frozenset({"body", "query", "path", "form", "header"})


def field_errors(errors: Sequence[Any]) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for err in errors:
        loc = [str(p) for p in err.get("loc", ())]
        if loc and loc[0] in _LOCATIONS:
            loc = loc[1:]
        out.setdefault(".".join(loc) or "body", []).append(str(err.get("msg", "Invalid value.")))
    return out


def validation_response(errors: dict[str, list[str]], message: str | None = None) -> JSONResponse:
    first = next(iter(errors.values()), ["The given data was invalid."])
    return JSONResponse(
        status_code=ValidationFailed.status_code,
        content={"message": message or first[0], "errors": errors},
    )


async def _request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return validation_response(field_errors(exc.errors()))


async def _domain_error(request: Request, exc: DomainError) -> JSONResponse:
    if isinstance(exc, ValidationFailed):
        return validation_response(exc.errors, exc.message)
    if exc.status_code >= 500:
        log.error("domain_error", error=exc.message, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, _request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(DomainError, _domain_error)  # type: ignore[arg-type]
