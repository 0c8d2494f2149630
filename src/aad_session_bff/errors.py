"""Error kinds raised by the BFF.

Every error carries its HTTP status. The exception handler registered in
``main`` is the only place that turns them into responses.
"""

from typing import Any, Dict, Optional

from fastapi import status
from pydantic import BaseModel

EQUERY = "The '%s' is a required query parameter."
EABSURI = "The '%s' must be an absolute URI."
ESESSION = "The '%s' is a required session value."
EINVAL = "The '%s' is invalid."


class ErrorResponse(BaseModel):
    """Body returned for every handled error."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class AuthBffError(Exception):
    """Base exception for the BFF."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(code=self.code, message=self.message, details=self.details)


class ValidationError(AuthBffError):
    """Missing or malformed query parameter."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, parameter: str):
        super().__init__("EQUERY", message, {"parameter": parameter})
        self.parameter = parameter

    @classmethod
    def missing(cls, parameter: str) -> "ValidationError":
        return cls(EQUERY % parameter, parameter)

    @classmethod
    def not_absolute(cls, parameter: str) -> "ValidationError":
        return cls(EABSURI % parameter, parameter)


class CsrfError(AuthBffError):
    """The reply ``state`` does not belong to this session."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self):
        super().__init__("EINVAL", EINVAL % "state")


class SessionStateError(AuthBffError):
    """A session value required by the operation is absent."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, name: str, message: Optional[str] = None):
        super().__init__("ESESSION", message or ESESSION % name, {"name": name})
        self.name = name


class UnauthenticatedError(SessionStateError):
    """The session has never completed a login."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, name: str):
        super().__init__(name, f"No {name} property in session.")
        self.code = "EUNAUTH"


class ProviderReplyError(AuthBffError):
    """The identity provider reported an error on the reply URI."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, error: str, description: Optional[str] = None):
        details = {"error": error}
        if description:
            details["error_description"] = description
        super().__init__("EPROVIDER", f"The identity provider returned '{error}'.", details)
        self.error = error


class UpstreamExchangeError(AuthBffError):
    """Token exchange with the identity provider failed."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, reason: str, provider_status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(
            "EEXCHANGE",
            f"Token exchange failed: {reason}",
            {"status": provider_status, "body": body},
        )
        self.provider_status = provider_status
        self.body = body


class UpstreamServiceError(AuthBffError):
    """The proxied API could not be reached."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str):
        super().__init__("EUPSTREAM", message)


class ClaimsDecodeError(AuthBffError):
    """The access token payload is not base64url-encoded JSON."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, reason: str):
        super().__init__("EDECODE", f"Unable to decode access token claims: {reason}")
