# download-link-service/tests/test_sessions.py
from unittest.mock import MagicMock

import pytest

from config import Settings, get_settings
from exceptions import ConfigurationError
from sessions import InMemorySessionStore, RedisSessionStore, build_session_store


def test_in_memory_store_round_trip():
    store = InMemorySessionStore()
    token = store.create("user-1")
    assert len(token) == 32
    assert store.get(token) == "user-1"
    store.delete(token)
    assert store.get(token) is None
    store.delete(token)
    assert len(store) == 0


def test_tokens_are_unique():
    store = InMemorySessionStore()
    assert store.create("u") != store.create("u")


def test_redis_store_uses_prefixed_keys():
    client = MagicMock()
    store = RedisSessionStore(client, ttl_seconds=3600)
    store.set("abc", "user-9")
    client.set.assert_called_once_with("session:abc", "user-9", ex=3600)

    client.get.return_value = "user-9"
    assert store.get("abc") == "user-9"
    client.get.assert_called_once_with("session:abc")

    store.delete("abc")
    client.delete.assert_called_once_with("session:abc")

    store.close()
    client.close.assert_called_once()


def test_redis_store_without_ttl():
    client = MagicMock()
    RedisSessionStore(client).set("abc", "u")
    client.set.assert_called_once_with("session:abc", "u", ex=None)


def test_build_session_store_defaults_to_memory():
    assert isinstance(build_session_store(Settings()), InMemorySessionStore)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("MONGO_DB", "other_db")
    monkeypatch.setenv("MONGO_PORT", "27018")
    monkeypatch.setenv("SESSION_BACKEND", "REDIS")
    monkeypatch.setenv("DOWNLOAD_TIMEOUT_SECONDS", "12.5")
    settings = get_settings()
    assert settings.mongo_db == "other_db"
    assert settings.mongo_port == 27018
    assert settings.session_backend == "redis"
    assert settings.download_timeout_seconds == 12.5
    assert settings.probe_timeout_seconds == 10.0


@pytest.mark.parametrize(
    "name, value",
    [("MONGO_PORT", "many"), ("SESSION_BACKEND", "memcached"), ("PROBE_TIMEOUT_SECONDS", "x")],
)
def test_settings_reject_bad_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigurationError):
        get_settings()
