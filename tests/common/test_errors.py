from fastapi import status

from facility_auth.common import (
    GENERAL_ERRORS_FIELD,
    ErrorResponse,
    ValidationMessage,
    error_exception,
)


def test_error_response_groups_messages_by_field() -> None:
    """Test that messages for the same field are collected together."""
    response = ErrorResponse.from_messages(
        status.HTTP_400_BAD_REQUEST,
        [
            ValidationMessage("email", "Email is required.", "error.emailIsRequired"),
            ValidationMessage("email", "Email is too long.", "error.emailLength"),
            ValidationMessage(GENERAL_ERRORS_FIELD, "Nope.", "error.nope"),
        ],
    )

    assert response.fatal_error is False
    assert [m.error_code for m in response.error_messages["email"]] == [
        "error.emailIsRequired",
        "error.emailLength",
    ]
    assert len(response.error_messages[GENERAL_ERRORS_FIELD]) == 1


def test_error_exception_detail() -> None:
    """Test that the raised exception carries a serialized error response."""
    exc = error_exception(
        [ValidationMessage(GENERAL_ERRORS_FIELD, "Denied.", "error.denied")],
        fatal=True,
        status_code=status.HTTP_403_FORBIDDEN,
    )

    assert exc.status_code == status.HTTP_403_FORBIDDEN
    assert exc.detail == {
        "status_code": 403,
        "fatal_error": True,
        "error_messages": {
            GENERAL_ERRORS_FIELD: [{"message": "Denied.", "error_code": "error.denied"}],
        },
    }
