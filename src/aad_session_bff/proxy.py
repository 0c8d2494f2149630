# src/aad_session_bff/proxy.py

import httpx
from fastapi import APIRouter, Depends, Request, Response

from .auth import get_token_client
from .errors import UpstreamServiceError
from .guard import append_bearer_token
from .logging_config import get_logger
from .middleware import get_session
from .session import Session
from .token_client import TokenExchangeClient

logger = get_logger("proxy")

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
# Never forwarded upstream: the session cookie and our own host/credentials.
DROPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | {"host", "cookie", "authorization", "content-length"}
DROPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding", "set-cookie"}


def upstream_url(remote_api_base: str, path: str) -> str:
    return f"{remote_api_base}/{path.lstrip('/')}"


def create_proxy_router(local_api_path: str, remote_api_base: str) -> APIRouter:
    """Forwards ``{local_api_path}/{path}`` to ``{remote_api_base}/{path}`` with the user's bearer token."""
    router = APIRouter(tags=["proxy"])

    @router.api_route(f"{local_api_path}/{{path:path}}", methods=PROXY_METHODS, include_in_schema=False)
    async def forward(
        path: str,
        request: Request,
        session: Session = Depends(get_session),
        token_client: TokenExchangeClient = Depends(get_token_client),
    ):
        auth_headers = await append_bearer_token(request, session, token_client)

        headers = {k: v for k, v in request.headers.items() if k.lower() not in DROPPED_REQUEST_HEADERS}
        headers.update(auth_headers)
        url = upstream_url(remote_api_base, path)
        client: httpx.AsyncClient = request.app.state.proxy_client

        try:
            upstream = await client.request(
                request.method,
                url,
                params=request.query_params.multi_items(),
                headers=headers,
                content=await request.body(),
            )
        except httpx.HTTPError as e:
            logger.error("PROXY: %s %s failed: %s", request.method, url, e)
            raise UpstreamServiceError(f"Could not reach the remote API: {type(e).__name__}") from e

        logger.debug("PROXY: %s %s -> %d", request.method, url, upstream.status_code)
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            headers={k: v for k, v in upstream.headers.items() if k.lower() not in DROPPED_RESPONSE_HEADERS},
        )

    return router
