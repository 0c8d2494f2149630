# src/aad_session_bff/token_client.py
"""
Token endpoint client for the identity provider.

Provides the authorization-code and refresh-token grants. Both post a
form-encoded body to ``https://{host}/{tenant}/oauth2/token`` and normalize
the provider's JSON answer into a ``TokenExchangeResult``.
"""

import time
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field

from .claims import UserClaims, decode_claims
from .errors import UpstreamExchangeError
from .logging_config import get_logger, preview

logger = get_logger("token_client")

# Tokens are treated as expired this many seconds before the provider says so.
EXPIRY_SKEW_SECONDS = 5 * 60
DEFAULT_IDENTITY_HOST = "login.microsoftonline.com"


class TokenExchangeResult(BaseModel):
    """Fresh token set; replaces the session's token fields wholesale."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    user_claims: Optional[UserClaims] = Field(default=None, alias="userClaims")
    expires_at: int = Field(alias="expiresAt")


class TokenExchangeClient:
    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        resource_uri: str,
        identity_host: str = DEFAULT_IDENTITY_HOST,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.resource_uri = resource_uri
        self.identity_host = identity_host
        self._clock = clock
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings, http_client: Optional[httpx.AsyncClient] = None) -> "TokenExchangeClient":
        return cls(
            tenant_id=settings.AZURE_TENANT_ID,
            client_id=settings.AZURE_CLIENT_ID,
            client_secret=settings.AZURE_CLIENT_SECRET,
            resource_uri=settings.AZURE_RESOURCE_URI,
            identity_host=settings.IDENTITY_HOST,
            timeout=settings.TOKEN_EXCHANGE_TIMEOUT_SECONDS,
            http_client=http_client,
        )

    # --- Identity provider URIs ---

    def endpoint_uri(self, endpoint: str, query: Optional[Dict[str, str]] = None) -> str:
        """E.g. ``endpoint_uri("authorize")`` -> ``https://{host}/{tenant}/oauth2/authorize``."""
        uri = f"https://{self.identity_host}/{self.tenant_id}/oauth2/{endpoint}"
        if query:
            uri += "?" + urlencode(query)
        return uri

    # --- Grants ---

    async def exchange_authorization_code(self, code: str, reply_uri: str) -> TokenExchangeResult:
        body = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": reply_uri,
            "grant_type": "authorization_code",
            "resource": self.resource_uri,
        }
        logger.info("Exchanging authorization code. Reply URI: %s", reply_uri)
        return self._process_response(*await self._post_token(body))

    async def exchange_refresh_token(self, refresh_token: Optional[str]) -> TokenExchangeResult:
        body = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token or "",
            "resource": self.resource_uri,
        }
        logger.info("Renewing access token with refresh token %s", preview(refresh_token))
        return self._process_response(*await self._post_token(body))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    # --- Private ---

    async def _post_token(self, body: Dict[str, str]) -> Tuple[httpx.Response, Dict[str, Any]]:
        url = self.endpoint_uri("token")
        try:
            response = await self._http_client.post(
                url,
                data=body,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.error("Token endpoint unreachable (%s): %s", type(e).__name__, e)
            raise UpstreamExchangeError(f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            logger.warning("Token endpoint returned %d: %s", response.status_code, response.text)
            raise UpstreamExchangeError(
                f"identity provider returned {response.status_code}",
                provider_status=response.status_code,
                body=response.text,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamExchangeError(
                "response body is not JSON", provider_status=response.status_code, body=response.text
            ) from e
        if not isinstance(data, dict):
            raise UpstreamExchangeError(
                "response body is not a JSON object", provider_status=response.status_code, body=response.text
            )
        for field in ("access_token", "expires_in"):
            if data.get(field) in (None, ""):
                raise UpstreamExchangeError(
                    f"response has no '{field}'", provider_status=response.status_code, body=response.text
                )
        return response, data

    def _process_response(self, response: httpx.Response, data: Dict[str, Any]) -> TokenExchangeResult:
        try:
            expires_in = int(data["expires_in"])
        except (TypeError, ValueError) as e:
            raise UpstreamExchangeError(
                f"invalid 'expires_in': {data['expires_in']!r}",
                provider_status=response.status_code,
                body=response.text,
            ) from e
        access_token = data["access_token"]
        expires_at = int(self._clock() * 1000) + (expires_in - EXPIRY_SKEW_SECONDS) * 1000
        result = TokenExchangeResult(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            user_claims=decode_claims(access_token),
            expires_at=expires_at,
        )
        logger.info(
            "Token acquired. Principal: %s, expires in %ss",
            result.user_claims.principal_name if result.user_claims else None,
            expires_in,
        )
        return result
