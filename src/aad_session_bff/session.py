"""Server-side sessions.

Only a signed session id travels in the browser cookie; everything else lives
in a ``SessionStore``. Stores never refresh a session just because it was
read (``touch`` is a no-op): a session is written only when a handler changed
it, which on the hot path means the access token was renewed.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
import secrets
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from starlette.concurrency import run_in_threadpool

from .claims import UserClaims
from .logging_config import get_logger
from .token_client import TokenExchangeResult

logger = get_logger("session")

PENDING_LOGIN_REDIRECT = "pendingLoginRedirect"
ACCESS_TOKEN = "accessToken"
REFRESH_TOKEN = "refreshToken"
EXPIRES_AT = "expiresAt"
USER_CLAIMS = "userClaims"

# Seconds between sweeps of expired sessions.
DEFAULT_REAP_INTERVAL = 60 * 60

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{16,128}$")


def generate_session_id() -> str:
    return secrets.token_urlsafe(32)


def is_valid_session_id(session_id: str) -> bool:
    return bool(session_id) and _SESSION_ID_RE.match(session_id) is not None


class Session:
    """Per-user session data with an explicit dirty flag."""

    def __init__(self, session_id: str, data: Optional[Dict[str, Any]] = None):
        self.session_id = session_id
        self._data: Dict[str, Any] = dict(data or {})
        self.modified = False
        self.destroyed = False
        self.saved = False

    # --- Fields ---

    @property
    def pending_login_redirect(self) -> Optional[str]:
        return self._data.get(PENDING_LOGIN_REDIRECT)

    @pending_login_redirect.setter
    def pending_login_redirect(self, value: str) -> None:
        self._data[PENDING_LOGIN_REDIRECT] = value
        self.mark_changed()

    def pop_pending_login_redirect(self) -> Optional[str]:
        value = self._data.pop(PENDING_LOGIN_REDIRECT, None)
        if value is not None:
            self.mark_changed()
        return value

    @property
    def access_token(self) -> Optional[str]:
        return self._data.get(ACCESS_TOKEN)

    @property
    def refresh_token(self) -> Optional[str]:
        return self._data.get(REFRESH_TOKEN)

    @property
    def expires_at(self) -> Optional[int]:
        value = self._data.get(EXPIRES_AT)
        # bool is an int subclass and never a valid timestamp
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return int(value)

    @property
    def user_claims(self) -> Optional[UserClaims]:
        value = self._data.get(USER_CLAIMS)
        if not value:
            return None
        return UserClaims.model_validate(value)

    def apply_exchange(self, result: TokenExchangeResult) -> None:
        """Replaces all token fields at once with a fresh exchange result."""
        self._data.update(
            {
                ACCESS_TOKEN: result.access_token,
                REFRESH_TOKEN: result.refresh_token,
                EXPIRES_AT: result.expires_at,
                USER_CLAIMS: result.user_claims.to_json() if result.user_claims else None,
            }
        )
        self.mark_changed()

    # --- State ---

    def mark_changed(self) -> None:
        self.modified = True

    def mark_destroyed(self) -> None:
        self.destroyed = True
        self._data.clear()

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)

    @classmethod
    def from_dict(cls, session_id: str, data: Dict[str, Any]) -> "Session":
        return cls(session_id, data)

    def __repr__(self) -> str:
        return f"Session(id={self.session_id[:8]}..., keys={sorted(self._data)}, modified={self.modified})"


# --- Stores ---


class SessionStore(ABC):
    """Persistence for session data, keyed by session id.

    Expired sessions are removed by ``reap``, which ``save`` runs at most once
    per ``reap_interval`` seconds. Sessions that are never loaded again (an
    abandoned login, a cookie that never comes back) are cleaned up this way.
    """

    def __init__(self, ttl_seconds: int, reap_interval: float = DEFAULT_REAP_INTERVAL):
        self.ttl_seconds = ttl_seconds
        self.reap_interval = reap_interval
        self._last_reap = time.monotonic()

    @abstractmethod
    async def load(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def save(self, session: Session) -> None:
        ...

    @abstractmethod
    async def destroy(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def reap(self) -> int:
        """Removes every expired session; returns how many were removed."""

    async def touch(self, session_id: str) -> None:
        # Access time is never refreshed on read; see module docstring.
        return None

    async def _maybe_reap(self) -> None:
        now = time.monotonic()
        if now - self._last_reap < self.reap_interval:
            return
        self._last_reap = now
        removed = await self.reap()
        if removed:
            logger.info("Reaped %d expired session(s)", removed)

    def _expires(self) -> float:
        return time.time() + self.ttl_seconds


class MemorySessionStore(SessionStore):
    """In-process store for development and tests."""

    def __init__(self, ttl_seconds: int = 12 * 60 * 60, reap_interval: float = DEFAULT_REAP_INTERVAL):
        super().__init__(ttl_seconds, reap_interval)
        self._entries: Dict[str, Dict[str, Any]] = {}

    async def load(self, session_id: str) -> Optional[Session]:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        if entry["expires"] <= time.time():
            del self._entries[session_id]
            return None
        return Session.from_dict(session_id, entry["data"])

    async def save(self, session: Session) -> None:
        await self._maybe_reap()
        self._entries[session.session_id] = {"data": session.to_dict(), "expires": self._expires()}
        session.modified = False
        session.saved = True

    async def destroy(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    async def reap(self) -> int:
        now = time.time()
        expired = [sid for sid, entry in self._entries.items() if entry["expires"] <= now]
        for sid in expired:
            del self._entries[sid]
        return len(expired)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class FileSessionStore(SessionStore):
    """One JSON file per session in a directory."""

    def __init__(
        self,
        directory: Path,
        ttl_seconds: int = 12 * 60 * 60,
        reap_interval: float = DEFAULT_REAP_INTERVAL,
    ):
        super().__init__(ttl_seconds, reap_interval)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        if not is_valid_session_id(session_id):
            raise ValueError("Invalid session id")
        return self.directory / f"{session_id}.json"

    def _read_entry(self, path: Path) -> Optional[Dict[str, Any]]:
        """Returns the stored entry, or None after deleting an expired or unreadable file."""
        try:
            with path.open("r", encoding="utf-8") as f:
                entry = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Discarding unreadable session file %s: %s", path.name, e)
            path.unlink(missing_ok=True)
            return None
        expires = entry.get("expires") if isinstance(entry, dict) else None
        if not isinstance(expires, (int, float)) or expires <= time.time():
            path.unlink(missing_ok=True)
            return None
        return entry

    def _read(self, session_id: str) -> Optional[Dict[str, Any]]:
        entry = self._read_entry(self._path(session_id))
        if entry is None:
            return None
        return entry.get("data") or {}

    def _write(self, session_id: str, data: Dict[str, Any], expires: float) -> None:
        path = self._path(session_id)
        tmp = path.with_suffix(".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump({"data": data, "expires": expires}, f)
        tmp.replace(path)

    def _reap(self) -> int:
        removed = 0
        for path in self.directory.glob("*.json"):
            if self._read_entry(path) is None:
                removed += 1
        return removed

    async def load(self, session_id: str) -> Optional[Session]:
        if not is_valid_session_id(session_id):
            return None
        data = await run_in_threadpool(self._read, session_id)
        if data is None:
            return None
        return Session.from_dict(session_id, data)

    async def save(self, session: Session) -> None:
        await self._maybe_reap()
        await run_in_threadpool(self._write, session.session_id, session.to_dict(), self._expires())
        session.modified = False
        session.saved = True

    async def destroy(self, session_id: str) -> None:
        if not is_valid_session_id(session_id):
            return
        await run_in_threadpool(self._path(session_id).unlink, missing_ok=True)

    async def reap(self) -> int:
        return await run_in_threadpool(self._reap)


def create_session_store(settings) -> SessionStore:
    if settings.SESSION_STORE == "file":
        logger.info("Using file session store at %s", settings.SESSION_STORAGE_DIRECTORY)
        return FileSessionStore(
            settings.SESSION_STORAGE_DIRECTORY,
            settings.SESSION_EXPIRES_SECONDS,
            settings.SESSION_REAP_INTERVAL_SECONDS,
        )
    logger.info("Using in-memory session store")
    return MemorySessionStore(settings.SESSION_EXPIRES_SECONDS, settings.SESSION_REAP_INTERVAL_SECONDS)


# --- Cookie signing ---


def _signature(session_id: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), session_id.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def sign_session_id(session_id: str, secret: str) -> str:
    return f"{session_id}.{_signature(session_id, secret)}"


def unsign_session_id(value: Optional[str], secret: str) -> Optional[str]:
    """Returns the session id from a cookie value, or None if it was tampered with."""
    if not value or "." not in value:
        return None
    session_id, signature = value.rsplit(".", 1)
    if not is_valid_session_id(session_id):
        return None
    if not secrets.compare_digest(signature, _signature(session_id, secret)):
        return None
    return session_id
