"""
salesflow.errors

Domain exceptions raised by the service layer.

Responsibilities:
- Give services a small vocabulary of failures that the API maps to HTTP codes:
  NotFound (404), Forbidden (403), Conflict (409), ValidationFailed (422),
  PaymentGatewayError (502).
"""

from __future__ import annotations


class DomainError(Exception):
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(DomainError):
    status_code = 404


class Forbidden(DomainError):
    status_code = 403


class Conflict(DomainError):
    status_code = 409


class ValidationFailed(DomainError):
    """
    Field-level validation failure.

    `errors` maps a dotted field name to its messages, matching the shape
    produced for request-body validation errors.
    """

    status_code = 422

    def __init__(self, errors: dict[str, list[str]], message: str | None = None) -> None:
        first = next(iter(errors.values()), ["The given data was invalid."])
        super().__init__(message or first[0])
        self.errors = errors

    @classmethod
    def field(cls, name: str, message: str) -> ValidationFailed:
        return cls({name: [message]})


class PaymentGatewayError(DomainError):
    status_code = 502


# --- Module Notes -----------------------------------------------------------
# Exception handlers live in `api.errors`; services never import FastAPI.
