# src/aad_session_bff/middleware.py

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from .logging_config import get_logger
from .session import (
    Session,
    SessionStore,
    generate_session_id,
    sign_session_id,
    unsign_session_id,
)

logger = get_logger("middleware")


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Loads the session named by the signed cookie into ``request.state.session``.

    New sessions are not stored until something is put in them, and existing
    sessions are only written back when a handler changed them. The cookie is
    (re)issued whenever the session was written during the request.
    """

    def __init__(
        self,
        app,
        store: SessionStore,
        secret: str,
        cookie_name: str = "aad.sid",
        max_age: int = 12 * 60 * 60,
        secure: bool = True,
    ):
        super().__init__(app)
        self.store = store
        self.secret = secret
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.secure = secure

    async def _load(self, request: Request) -> Session:
        session_id = unsign_session_id(request.cookies.get(self.cookie_name), self.secret)
        if session_id:
            session = await self.store.load(session_id)
            if session is not None:
                await self.store.touch(session_id)
                return session
        return Session(generate_session_id())

    async def dispatch(self, request, call_next):
        session = await self._load(request)
        request.state.session = session
        request.state.session_store = self.store
        request.state.session_cookie_name = self.cookie_name

        response: StarletteResponse = await call_next(request)

        if session.destroyed:
            return response
        if session.modified:
            logger.debug("Persisting changed session %s...", session.session_id[:8])
            await self.store.save(session)
        if session.saved:
            response.set_cookie(
                self.cookie_name,
                sign_session_id(session.session_id, self.secret),
                max_age=self.max_age,
                httponly=True,
                secure=self.secure,
                samesite="lax",
                path="/",
            )
        return response


def get_session(request: Request) -> Session:
    return request.state.session


async def save_session(request: Request) -> None:
    """Writes the session now instead of waiting for the end of the request."""
    await request.state.session_store.save(request.state.session)


async def destroy_session(request: Request) -> None:
    session: Session = request.state.session
    await request.state.session_store.destroy(session.session_id)
    session.mark_destroyed()
