# download-link-service/sessions.py
import logging
import secrets
from typing import Dict, Optional

import redis
from fastapi import Request

from config import Settings

logger = logging.getLogger(__name__)


def new_session_token() -> str:
    return secrets.token_hex(16)


class SessionStore:
    """Maps opaque session tokens to user ids."""

    def get(self, token: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, token: str, user_id: str) -> None:
        raise NotImplementedError

    def delete(self, token: str) -> None:
        raise NotImplementedError

    def create(self, user_id: str) -> str:
        token = new_session_token()
        self.set(token, user_id)
        return token

    def close(self) -> None:
        pass


class InMemorySessionStore(SessionStore):
    """Process-local sessions; everything is lost on restart."""

    def __init__(self):
        self._sessions: Dict[str, str] = {}

    def get(self, token):
        return self._sessions.get(token)

    def set(self, token, user_id):
        self._sessions[token] = user_id

    def delete(self, token):
        self._sessions.pop(token, None)

    def __len__(self):
        return len(self._sessions)


class RedisSessionStore(SessionStore):
    KEY_PREFIX = "session:"

    def __init__(self, client: redis.Redis, ttl_seconds: int = 0):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"

    def get(self, token):
        return self.client.get(self._key(token))

    def set(self, token, user_id):
        self.client.set(self._key(token), user_id, ex=self.ttl_seconds or None)

    def delete(self, token):
        self.client.delete(self._key(token))

    def close(self):
        self.client.close()
        logger.info("Disconnected from Redis.")


def get_redis_client_instance(settings: Settings) -> redis.Redis:
    """
    Returns a new Redis client instance.
    This function is intended to be called once during application startup.
    """
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        decode_responses=True,
    )  # values come back as str
    try:
        client.ping()
        logger.info("Connected to Redis: %s:%s", settings.redis_host, settings.redis_port)
    except redis.exceptions.ConnectionError:
        logger.exception("Redis connection failed")
        raise
    return client


def build_session_store(settings: Settings) -> SessionStore:
    if settings.session_backend == "redis":
        return RedisSessionStore(
            get_redis_client_instance(settings), settings.session_ttl_seconds
        )
    return InMemorySessionStore()


def get_session_store(request: Request) -> SessionStore:
    """
    Dependency that provides the process-wide session store.
    """
    return request.app.state.session_store
