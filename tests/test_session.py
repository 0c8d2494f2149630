"""Tests for sessions, session stores and cookie signing."""

import json
import time

import pytest

from aad_session_bff.claims import UserClaims
from aad_session_bff.session import (
    FileSessionStore,
    MemorySessionStore,
    Session,
    create_session_store,
    generate_session_id,
    is_valid_session_id,
    sign_session_id,
    unsign_session_id,
)
from aad_session_bff.token_client import TokenExchangeResult

SID = "store-session-id-0123456789"


def exchange_result() -> TokenExchangeResult:
    return TokenExchangeResult(
        access_token="access",
        refresh_token="refresh",
        user_claims=UserClaims(user_id="42", display_name="Jane"),
        expires_at=123,
    )


class TestSession:
    def test_reading_does_not_mark_modified(self):
        session = Session(SID, {"accessToken": "a", "expiresAt": 5})

        assert session.access_token == "a"
        assert session.expires_at == 5
        assert session.user_claims is None
        assert session.modified is False

    def test_apply_exchange_sets_all_token_fields(self):
        session = Session(SID)
        session.apply_exchange(exchange_result())

        assert session.to_dict() == {
            "accessToken": "access",
            "refreshToken": "refresh",
            "expiresAt": 123,
            "userClaims": {
                "userId": "42",
                "principalName": None,
                "firstName": "(no first name)",
                "lastName": "(no last name)",
                "displayName": "Jane",
            },
        }
        assert session.modified is True

    def test_pending_redirect_round_trip(self):
        session = Session(SID)
        session.pending_login_redirect = "https://x.test/a"

        assert session.modified is True
        assert session.pop_pending_login_redirect() == "https://x.test/a"
        assert session.pending_login_redirect is None
        assert session.pop_pending_login_redirect() is None

    def test_non_numeric_expiry_is_ignored(self):
        assert Session(SID, {"expiresAt": "tomorrow"}).expires_at is None
        assert Session(SID, {"expiresAt": True}).expires_at is None

    def test_mark_destroyed_clears_data(self):
        session = Session(SID, {"accessToken": "a"})
        session.mark_destroyed()
        assert session.destroyed is True
        assert session.to_dict() == {}


class TestMemorySessionStore:
    @pytest.mark.asyncio
    async def test_save_and_load(self):
        store = MemorySessionStore()
        session = Session(SID)
        session.apply_exchange(exchange_result())

        await store.save(session)
        loaded = await store.load(SID)

        assert session.modified is False
        assert session.saved is True
        assert loaded.to_dict() == session.to_dict()

    @pytest.mark.asyncio
    async def test_load_unknown(self):
        assert await MemorySessionStore().load(SID) is None

    @pytest.mark.asyncio
    async def test_expired_entries_are_dropped(self):
        store = MemorySessionStore(ttl_seconds=1)
        await store.save(Session(SID, {"a": 1}))
        store._entries[SID]["expires"] = time.time() - 1

        assert await store.load(SID) is None
        assert SID not in store

    @pytest.mark.asyncio
    async def test_destroy(self):
        store = MemorySessionStore()
        await store.save(Session(SID, {"a": 1}))
        await store.destroy(SID)
        assert await store.load(SID) is None

    @pytest.mark.asyncio
    async def test_touch_does_not_write(self):
        store = MemorySessionStore()
        await store.save(Session(SID, {"a": 1}))
        expires = store._entries[SID]["expires"]

        await store.touch(SID)

        assert store._entries[SID]["expires"] == expires

    @pytest.mark.asyncio
    async def test_reap_removes_every_expired_entry(self):
        store = MemorySessionStore(ttl_seconds=60)
        for i in range(50):
            await store.save(Session(f"abandoned-login-{i:04d}", {"pendingLoginRedirect": "https://x.test/a"}))
            store._entries[f"abandoned-login-{i:04d}"]["expires"] = time.time() - 1
        await store.save(Session(SID, {"a": 1}))

        assert await store.reap() == 50
        assert len(store) == 1
        assert SID in store

    @pytest.mark.asyncio
    async def test_save_sweeps_sessions_never_loaded_again(self):
        store = MemorySessionStore(ttl_seconds=60, reap_interval=0)
        for i in range(50):
            await store.save(Session(f"abandoned-login-{i:04d}", {"a": i}))
        for entry in store._entries.values():
            entry["expires"] = time.time() - 1

        await store.save(Session(SID, {"a": 1}))

        assert len(store) == 1
        assert SID in store

    @pytest.mark.asyncio
    async def test_save_sweeps_at_most_once_per_interval(self):
        store = MemorySessionStore(ttl_seconds=60, reap_interval=3600)
        await store.save(Session("abandoned-login-0000", {"a": 1}))
        store._entries["abandoned-login-0000"]["expires"] = time.time() - 1

        await store.save(Session(SID, {"a": 1}))

        assert len(store) == 2


class TestFileSessionStore:
    @pytest.mark.asyncio
    async def test_save_writes_json_file(self, tmp_path):
        store = FileSessionStore(tmp_path / "sessions", ttl_seconds=60)
        session = Session(SID)
        session.apply_exchange(exchange_result())

        await store.save(session)

        entry = json.loads((tmp_path / "sessions" / f"{SID}.json").read_text())
        assert entry["data"]["accessToken"] == "access"
        assert entry["expires"] > time.time()
        loaded = await store.load(SID)
        assert loaded.user_claims.display_name == "Jane"

    @pytest.mark.asyncio
    async def test_expired_file_is_removed(self, tmp_path):
        store = FileSessionStore(tmp_path, ttl_seconds=60)
        (tmp_path / f"{SID}.json").write_text(json.dumps({"data": {"a": 1}, "expires": time.time() - 5}))

        assert await store.load(SID) is None
        assert not (tmp_path / f"{SID}.json").exists()

    @pytest.mark.asyncio
    async def test_corrupt_file_is_discarded(self, tmp_path):
        store = FileSessionStore(tmp_path, ttl_seconds=60)
        (tmp_path / f"{SID}.json").write_text("{not json")

        assert await store.load(SID) is None
        assert not (tmp_path / f"{SID}.json").exists()

    @pytest.mark.asyncio
    async def test_destroy(self, tmp_path):
        store = FileSessionStore(tmp_path, ttl_seconds=60)
        await store.save(Session(SID, {"a": 1}))
        await store.destroy(SID)
        await store.destroy(SID)
        assert await store.load(SID) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_id", ["../../etc/passwd", "short", "a/b" * 10])
    async def test_rejects_unsafe_ids(self, tmp_path, bad_id):
        store = FileSessionStore(tmp_path, ttl_seconds=60)
        assert await store.load(bad_id) is None
        with pytest.raises(ValueError):
            await store.save(Session(bad_id, {"a": 1}))

    @pytest.mark.asyncio
    async def test_reap_removes_expired_and_unreadable_files(self, tmp_path):
        store = FileSessionStore(tmp_path, ttl_seconds=60)
        for i in range(3):
            (tmp_path / f"abandoned-login-{i:04d}.json").write_text(
                json.dumps({"data": {"a": i}, "expires": time.time() - 5})
            )
        (tmp_path / "corrupt-session-0000.json").write_text("{not json")
        (tmp_path / "no-expiry-session-0000.json").write_text(json.dumps({"data": {}, "expires": "never"}))
        await store.save(Session(SID, {"a": 1}))

        assert await store.reap() == 5
        assert [p.name for p in tmp_path.glob("*.json")] == [f"{SID}.json"]

    @pytest.mark.asyncio
    async def test_save_sweeps_expired_files(self, tmp_path):
        store = FileSessionStore(tmp_path, ttl_seconds=60, reap_interval=0)
        (tmp_path / "abandoned-login-0000.json").write_text(
            json.dumps({"data": {"a": 1}, "expires": time.time() - 5})
        )

        await store.save(Session(SID, {"a": 1}))

        assert not (tmp_path / "abandoned-login-0000.json").exists()
        assert (tmp_path / f"{SID}.json").exists()


class TestCreateSessionStore:
    def test_memory_by_default(self, settings):
        assert isinstance(create_session_store(settings), MemorySessionStore)

    def test_file_store(self, settings, tmp_path):
        settings = settings.model_copy(update={"SESSION_STORE": "file"})
        store = create_session_store(settings)
        assert isinstance(store, FileSessionStore)
        assert store.directory == tmp_path / "sessions"
        assert store.directory.is_dir()

    def test_reap_interval_from_settings(self, settings):
        settings = settings.model_copy(update={"SESSION_REAP_INTERVAL_SECONDS": 15})
        assert create_session_store(settings).reap_interval == 15


class TestCookieSigning:
    def test_generated_ids_are_valid(self):
        assert is_valid_session_id(generate_session_id())
        assert generate_session_id() != generate_session_id()

    def test_round_trip(self):
        signed = sign_session_id(SID, "secret")
        assert unsign_session_id(signed, "secret") == SID

    def test_wrong_secret(self):
        assert unsign_session_id(sign_session_id(SID, "secret"), "other") is None

    def test_tampered_id(self):
        signature = sign_session_id(SID, "secret").rsplit(".", 1)[1]
        assert unsign_session_id(f"forged-session-id-0123456789.{signature}", "secret") is None

    @pytest.mark.parametrize("value", [None, "", "no-signature", ".sig"])
    def test_garbage(self, value):
        assert unsign_session_id(value, "secret") is None
