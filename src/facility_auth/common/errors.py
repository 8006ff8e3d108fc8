"""Error payloads returned to API clients."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, status
from pydantic import BaseModel, Field

GENERAL_ERRORS_FIELD = "generalErrors"


@dataclass(frozen=True)
class ValidationMessage:
    """A single error attached to a request field.

    :param field: The request field the error belongs to
    :param message: Human-readable message
    :param error_code: Machine-readable code the UI translates, e.g.
        ``"error.organizationIdIsRequired"``
    """

    field: str
    message: str
    error_code: str


class ErrorMessage(BaseModel):
    message: str
    error_code: str


class ErrorResponse(BaseModel):
    """Body of every 4xx response raised by this package.

    ``fatal_error`` tells the UI the request cannot succeed by correcting
    input, e.g. the resource does not exist for this user.
    """

    status_code: int
    fatal_error: bool = False
    error_messages: dict[str, list[ErrorMessage]] = Field(default_factory=dict)

    @classmethod
    def from_messages(
        cls,
        status_code: int,
        messages: list[ValidationMessage],
        *,
        fatal: bool = False,
    ) -> ErrorResponse:
        error_messages: dict[str, list[ErrorMessage]] = {}
        for message in messages:
            error_messages.setdefault(message.field, []).append(
                ErrorMessage(message=message.message, error_code=message.error_code),
            )
        return cls(
            status_code=status_code,
            fatal_error=fatal,
            error_messages=error_messages,
        )


def error_exception(
    messages: list[ValidationMessage],
    *,
    fatal: bool = False,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> HTTPException:
    """Build an HTTPException whose detail is an :class:`ErrorResponse`."""
    body = ErrorResponse.from_messages(status_code, messages, fatal=fatal)
    return HTTPException(status_code=status_code, detail=body.model_dump())
