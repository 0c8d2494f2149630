# src/aad_session_bff/auth.py
"""
User authorization endpoints.

    /.auth/login  - Starts the OAuth2 authorization code flow.
    /.auth/reply  - Redirect URI the identity provider sends the code to.
    /.auth/claims - Returns the user claims decoded from the access token.
    /.auth/logout - Destroys the session and signs the user out.
"""

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from .errors import CsrfError, ProviderReplyError, SessionStateError, ValidationError
from .logging_config import get_logger
from .middleware import destroy_session, get_session, save_session
from .session import Session
from .token_client import TokenExchangeClient

logger = get_logger("auth")

POST_LOGIN_REDIRECT_URI = "post_login_redirect_uri"
POST_LOGOUT_REDIRECT_URI = "post_logout_redirect_uri"
REPLY_PATH = "/.auth/reply"

router = APIRouter(prefix="/.auth", tags=["auth"])


def get_token_client(request: Request) -> TokenExchangeClient:
    return request.app.state.token_client


# --- Helpers ---

def is_absolute(uri: str) -> bool:
    return "://" in uri


def require_absolute_uri(request: Request, name: str) -> str:
    uri = request.query_params.get(name)
    if not uri:
        raise ValidationError.missing(name)
    if not is_absolute(uri):
        raise ValidationError.not_absolute(name)
    return uri


def make_reply_uri(request: Request) -> str:
    host = request.headers.get("host", "")  # includes port
    scheme = "http" if host.startswith("localhost") else "https"
    return f"{scheme}://{host}{REPLY_PATH}"


def make_login_uri(request: Request, session: Session, token_client: TokenExchangeClient) -> str:
    return token_client.endpoint_uri(
        "authorize",
        {
            "state": session.session_id,
            "client_id": token_client.client_id,
            "domain_hint": token_client.tenant_id,
            "prompt": "login",
            "redirect_uri": make_reply_uri(request),
            "resource": token_client.resource_uri,
            "response_type": "code",
        },
    )


def make_logout_uri(token_client: TokenExchangeClient, redirect_uri: str) -> str:
    return token_client.endpoint_uri("logout", {POST_LOGOUT_REDIRECT_URI: redirect_uri})


# --- Routes ---

@router.get("/login")
async def login(
    request: Request,
    session: Session = Depends(get_session),
    token_client: TokenExchangeClient = Depends(get_token_client),
):
    post_login_redirect_uri = require_absolute_uri(request, POST_LOGIN_REDIRECT_URI)
    session.pending_login_redirect = post_login_redirect_uri
    # The reply may be served by another instance, so the session must be stored first.
    await save_session(request)
    logger.info("AUTH: /login - Session %s... pending redirect to %s", session.session_id[:8], post_login_redirect_uri)
    return RedirectResponse(url=make_login_uri(request, session, token_client), status_code=status.HTTP_302_FOUND)


@router.get("/reply")
async def reply(
    request: Request,
    session: Session = Depends(get_session),
    token_client: TokenExchangeClient = Depends(get_token_client),
):
    params = request.query_params
    error = params.get("error")
    if error:
        logger.warning("AUTH: /reply - Identity provider error: %s", error)
        raise ProviderReplyError(error, params.get("error_description"))

    code = params.get("code")
    if not code:
        raise ValidationError.missing("code")

    state = params.get("state")
    if not state:
        raise ValidationError.missing("state")
    if state != session.session_id:
        logger.warning("AUTH: /reply - State does not match session %s...", session.session_id[:8])
        raise CsrfError()

    redirect_uri = session.pending_login_redirect
    if not redirect_uri:
        raise SessionStateError(POST_LOGIN_REDIRECT_URI)
    session.pop_pending_login_redirect()

    result = await token_client.exchange_authorization_code(code, make_reply_uri(request))
    session.apply_exchange(result)
    await save_session(request)
    logger.info("AUTH: /reply - Session %s... authenticated, redirecting to %s", session.session_id[:8], redirect_uri)
    return RedirectResponse(url=redirect_uri, status_code=status.HTTP_302_FOUND)


@router.get("/claims")
async def claims(session: Session = Depends(get_session)):
    user_claims = session.user_claims
    if user_claims is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return JSONResponse(user_claims.to_json())


@router.get("/logout")
async def logout(
    request: Request,
    session: Session = Depends(get_session),
    token_client: TokenExchangeClient = Depends(get_token_client),
):
    redirect_uri = require_absolute_uri(request, POST_LOGOUT_REDIRECT_URI)
    logger.info("AUTH: /logout - Destroying session %s...", session.session_id[:8])
    await destroy_session(request)
    response = RedirectResponse(url=make_logout_uri(token_client, redirect_uri), status_code=status.HTTP_302_FOUND)
    response.delete_cookie(request.state.session_cookie_name, path="/")
    return response
