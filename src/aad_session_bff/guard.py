# src/aad_session_bff/guard.py

import time
from typing import Callable, Dict

from fastapi import Request

from .errors import UnauthenticatedError
from .logging_config import get_logger
from .session import Session
from .token_client import TokenExchangeClient

logger = get_logger("guard")


async def ensure_valid_token(
    session: Session,
    token_client: TokenExchangeClient,
    clock: Callable[[], float] = time.time,
) -> None:
    """
    Makes sure the session holds an unexpired access token, renewing it first if needed.

    A session whose token is still valid is neither changed nor written back.
    A renewed session is marked as changed so the store persists it. If the
    renewal fails the error propagates and the session is left as it was.
    """
    expires_at = session.expires_at
    if expires_at is None:
        raise UnauthenticatedError("expiresAt")

    if int(clock() * 1000) < expires_at:
        return

    logger.info("GUARD: Access token expired for session %s..., renewing.", session.session_id[:8])
    result = await token_client.exchange_refresh_token(session.refresh_token)
    session.apply_exchange(result)
    session.mark_changed()


async def append_bearer_token(
    request: Request,
    session: Session,
    token_client: TokenExchangeClient,
) -> Dict[str, str]:
    """Returns the Authorization header for the upstream call and flags the request as authenticated."""
    await ensure_valid_token(session, token_client)
    access_token = session.access_token
    if not isinstance(access_token, str) or not access_token:
        raise UnauthenticatedError("accessToken")
    request.state.is_authenticated = True
    return {"Authorization": f"Bearer {access_token}"}
