"""Shared fixtures: a fake identity provider, a fake remote API and a wired app."""

import asyncio
import base64
import json
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl

import httpx
import pytest
from fastapi.testclient import TestClient

from aad_session_bff.config import Settings
from aad_session_bff.main import create_app
from aad_session_bff.session import MemorySessionStore, Session, sign_session_id
from aad_session_bff.token_client import TokenExchangeClient

TENANT = "contoso.onmicrosoft.com"
CLIENT_ID = "client-123"
CLIENT_SECRET = "s3cret"
RESOURCE = "https://api.contoso.test"
COOKIE_NAME = "aad.sid"
COOKIE_SECRET = "cookie-secret"

DEFAULT_CLAIMS = {
    "oid": "00000000-0000-0000-0000-000000000042",
    "upn": "jdoe@contoso.test",
    "given_name": "Jane",
    "family_name": "Doe",
    "name": "Jane Doe",
}


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def make_access_token(claims: Optional[Dict[str, Any]] = None) -> str:
    header = b64url(json.dumps({"typ": "JWT", "alg": "RS256"}).encode())
    payload = b64url(json.dumps(DEFAULT_CLAIMS if claims is None else claims).encode())
    return f"{header}.{payload}.signature"


class FakeIdentityProvider:
    """Token endpoint double; records every request it receives."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.payload: Any = {
            "token_type": "Bearer",
            "access_token": make_access_token(),
            "refresh_token": "refresh-2",
            "expires_in": "3600",
        }
        self.error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if isinstance(self.payload, (dict, list)):
            return httpx.Response(self.status_code, json=self.payload)
        return httpx.Response(self.status_code, text=self.payload)

    @property
    def forms(self) -> List[Dict[str, str]]:
        return [dict(parse_qsl(r.content.decode())) for r in self.requests]


class FakeRemoteApi:
    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(
            201 if request.method == "POST" else 200,
            json={"path": request.url.path},
            headers={"x-upstream": "yes"},
        )


@pytest.fixture
def idp():
    return FakeIdentityProvider()


@pytest.fixture
def remote_api():
    return FakeRemoteApi()


@pytest.fixture
def token_client(idp):
    return TokenExchangeClient(
        tenant_id=TENANT,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        resource_uri=RESOURCE,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(idp.handler)),
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        AZURE_TENANT_ID=TENANT,
        AZURE_CLIENT_ID=CLIENT_ID,
        AZURE_CLIENT_SECRET=CLIENT_SECRET,
        AZURE_RESOURCE_URI=RESOURCE,
        REMOTE_API_URI="https://upstream.test/v1",
        LOCAL_API_PATH="/api",
        SESSION_COOKIE_NAME=COOKIE_NAME,
        SESSION_COOKIE_SECRET=COOKIE_SECRET,
        SESSION_COOKIE_SECURE=False,
        SESSION_STORAGE_DIRECTORY=tmp_path / "sessions",
    )


@pytest.fixture
def store():
    return MemorySessionStore(ttl_seconds=3600)


@pytest.fixture
def app(settings, token_client, store, remote_api):
    return create_app(
        settings,
        token_client=token_client,
        session_store=store,
        proxy_client=httpx.AsyncClient(transport=httpx.MockTransport(remote_api.handler)),
    )


@pytest.fixture
def client(app):
    return TestClient(app)


def seed_session(client: TestClient, store: MemorySessionStore, data: Dict[str, Any]) -> Session:
    """Stores a session and points the test client's cookie at it."""
    session = Session("seeded-session-id-0123456789", data)
    asyncio.run(store.save(session))
    client.cookies.set(COOKIE_NAME, sign_session_id(session.session_id, COOKIE_SECRET))
    return session


def load_session(store: MemorySessionStore, session_id: str) -> Optional[Session]:
    return asyncio.run(store.load(session_id))
