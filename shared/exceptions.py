"""
shared/exceptions.py
Domain error taxonomy. Services raise these; main.py maps them to HTTP.
"""

from typing import Dict, Optional

from fastapi import status
from pydantic.alias_generators import to_camel


class DomainError(Exception):
    """Base for every error a service operation surfaces to its caller."""

    kind: str = "error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None, **extra):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.kind, "errors": self.errors}
        body.update({to_camel(k): v for k, v in self.extra.items()})
        return body


class ValidationError(DomainError):
    """Missing or out-of-range input. `errors` maps field name → message."""
    kind = "validation"
    status_code = 422


class ForbiddenError(DomainError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(DomainError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(DomainError):
    """State-machine precondition violated."""
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class UnavailableError(DomainError):
    kind = "unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class AuthenticationError(DomainError):
    """Bad credentials or an unusable token."""
    kind = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
