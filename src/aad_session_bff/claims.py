# src/aad_session_bff/claims.py

import json
from typing import Any, Dict, Optional

from jose.utils import base64url_decode
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ClaimsDecodeError

NO_FIRST_NAME = "(no first name)"
NO_LAST_NAME = "(no last name)"
NO_DISPLAY_NAME = "(no display name)"


class UserClaims(BaseModel):
    """Identity attributes taken from the access token payload."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    principal_name: Optional[str] = Field(default=None, alias="principalName")
    first_name: str = Field(default=NO_FIRST_NAME, alias="firstName")
    last_name: str = Field(default=NO_LAST_NAME, alias="lastName")
    display_name: str = Field(default=NO_DISPLAY_NAME, alias="displayName")

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def decode_payload(access_token: str) -> Dict[str, Any]:
    """Returns the JSON object in the middle segment of a JWT, unverified."""
    segments = access_token.split(".")
    if len(segments) < 2 or not segments[1]:
        raise ClaimsDecodeError("token has no payload segment")
    try:
        payload = json.loads(base64url_decode(segments[1].encode("ascii")).decode("utf-8"))
    except (ValueError, TypeError) as e:
        raise ClaimsDecodeError(str(e)) from e
    if not isinstance(payload, dict):
        raise ClaimsDecodeError("payload is not a JSON object")
    return payload


def decode_claims(access_token: Optional[str]) -> Optional[UserClaims]:
    """
    Decodes the user claims from an access token.
    Returns None when there is no token, which callers treat as "not logged in".
    """
    if not access_token:
        return None
    claims = decode_payload(access_token)
    try:
        return UserClaims(
            user_id=claims.get("oid"),
            principal_name=claims.get("upn") or claims.get("unique_name"),
            first_name=claims.get("given_name") or NO_FIRST_NAME,
            last_name=claims.get("family_name") or NO_LAST_NAME,
            display_name=claims.get("name") or NO_DISPLAY_NAME,
        )
    except PydanticValidationError as e:
        raise ClaimsDecodeError(f"unexpected claim type: {e}") from e
