# download-link-service/auth.py
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from passlib.context import CryptContext

import database
from config import Settings
from models import User
from sessions import SessionStore, get_session_store

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SESSION_HEADER = "x-session-id"
SESSION_QUERY_PARAM = "sessionId"


def session_token_from(request: Request) -> Optional[str]:
    return request.headers.get(SESSION_HEADER) or request.query_params.get(
        SESSION_QUERY_PARAM
    )


def require_auth(
    request: Request, sessions: SessionStore = Depends(get_session_store)
) -> str:
    """
    Resolves the caller's session token to a user id.
    """
    token = session_token_from(request)
    user_id = sessions.get(token) if token else None
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user_id


async def require_admin(user_id: str = Depends(require_auth)) -> User:
    user = await database.get_user_by_id(user_id)
    if user is None or user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required"
        )
    return user


async def authenticate(username: str, password: str) -> Optional[User]:
    user = await database.get_user_by_username(username)
    if user is None or not pwd_context.verify(password, user.password):
        return None
    return user


async def ensure_default_admin(settings: Settings) -> Optional[User]:
    """Creates the configured admin account when the user collection is empty."""
    if await database.count_users() > 0:
        logger.info("Users already exist in database, skipping default user creation")
        return None
    user = await database.create_user(
        settings.default_admin_username,
        pwd_context.hash(settings.default_admin_password),
        "admin",
    )
    logger.warning(
        "Created default admin user %r; change its password after first login",
        settings.default_admin_username,
    )
    return user
