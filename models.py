from datetime import datetime, timedelta, timezone
from typing import Literal, Optional
from uuid import uuid4

from beanie import Document, Indexed
from pydantic import Field


def utcnow() -> datetime:
    # Mongo hands back naive UTC datetimes, so compare against the same.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_link_id() -> str:
    return str(uuid4())


class Link(Document):
    id: str = Field(default_factory=new_link_id)
    title: Optional[str] = None
    original_url: str
    max_downloads: Optional[int] = None
    current_downloads: int = 0
    expiration_hours: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    is_active: bool = True
    is_valid: Optional[bool] = None
    last_checked: Optional[datetime] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    class Settings:
        name = "links"  # MongoDB collection

    @classmethod
    def new(
        cls,
        original_url: str,
        title: Optional[str] = None,
        max_downloads: Optional[int] = None,
        expiration_hours: Optional[int] = None,
    ) -> "Link":
        created_at = utcnow()
        expires_at = (
            created_at + timedelta(hours=expiration_hours)
            if expiration_hours
            else None
        )
        return cls(
            title=title,
            original_url=original_url,
            max_downloads=max_downloads,
            expiration_hours=expiration_hours,
            created_at=created_at,
            expires_at=expires_at,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at

    def is_limit_reached(self) -> bool:
        return (
            self.max_downloads is not None
            and self.current_downloads >= self.max_downloads
        )


class User(Document):
    username: Indexed(str, unique=True)
    password: str  # bcrypt hash
    role: Literal["user", "admin"] = "user"
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "users"
