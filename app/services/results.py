"""
Service result descriptors.

Business-rule outcomes (validation, permission, state conflicts) are
returned as a Failure instead of raised, so callers can branch on `code`.
The API layer turns them into HTTP errors with raise_for_failure().
"""
from dataclasses import dataclass, field
from typing import Any, Dict, TypeVar, Union

from fastapi import status

T = TypeVar("T")


@dataclass(frozen=True)
class Failure:
    """A rejected operation: machine code, human message, HTTP status, extra context."""
    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_detail(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, **self.details}


Result = Union[T, Failure]


def forbidden(message: str = "You are not allowed to perform this action") -> Failure:
    return Failure("FORBIDDEN", message, status.HTTP_403_FORBIDDEN)


def not_found(code: str, message: str) -> Failure:
    return Failure(code, message, status.HTTP_404_NOT_FOUND)


def invalid_status(current: str, expected: str = "PENDING") -> Failure:
    return Failure(
        "INVALID_STATUS",
        f"Request is {current}; only {expected} requests can be changed",
        details={"current_status": current},
    )
