from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models import Link, User


class CamelModel(BaseModel):
    """Request/response bodies use camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _require_non_empty_url(value: Optional[str]) -> str:
    if value is None or not value.strip():
        raise ValueError("Original URL is required")
    return value.strip()


class LinkCreate(CamelModel):
    title: Optional[str] = None
    original_url: str
    max_downloads: Optional[int] = Field(default=None, gt=0)
    expiration_hours: Optional[int] = Field(default=None, gt=0)

    @field_validator("original_url")
    @classmethod
    def check_original_url(cls, value):
        return _require_non_empty_url(value)


class LinkUpdate(CamelModel):
    """Fields an operator may edit. ``expiresAt`` is fixed at creation."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    title: Optional[str] = None
    original_url: Optional[str] = None
    max_downloads: Optional[int] = Field(default=None, gt=0)

    @field_validator("original_url")
    @classmethod
    def check_original_url(cls, value):
        return _require_non_empty_url(value)


class LinkChanges(BaseModel):
    """
    Partial update of the mutable columns of a link.

    Only fields that were explicitly set are written, so ``None`` can still be
    used to clear a nullable column.
    """

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    original_url: Optional[str] = None
    max_downloads: Optional[int] = None
    current_downloads: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    is_valid: Optional[bool] = None
    last_checked: Optional[datetime] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    def as_update(self) -> dict:
        return self.model_dump(exclude_unset=True)


class LinkOut(CamelModel):
    id: str
    title: Optional[str] = None
    original_url: str
    max_downloads: Optional[int] = None
    current_downloads: int = 0
    expiration_hours: Optional[int] = None
    created_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool
    is_valid: Optional[bool] = None
    last_checked: Optional[datetime] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def from_document(cls, link: Link, **extra) -> "LinkOut":
        return cls(**link.model_dump(), **extra)


class CreatedLinkOut(LinkOut):
    tracking_url: str


class RefreshedLinkOut(LinkOut):
    message: str


class MessageOut(BaseModel):
    message: str


class LoginRequest(CamelModel):
    username: Optional[str] = None
    password: Optional[str] = None


class LoginOut(CamelModel):
    success: bool = True
    session_id: str
    username: str


class UserCreate(CamelModel):
    username: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


class UserUpdate(CamelModel):
    username: Optional[str] = None


class PasswordChange(CamelModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class UserOut(CamelModel):
    id: str
    username: str
    role: str
    created_at: datetime

    @classmethod
    def from_document(cls, user: User) -> "UserOut":
        return cls(
            id=str(user.id),
            username=user.username,
            role=user.role,
            created_at=user.created_at,
        )


class CreatedUserOut(CamelModel):
    success: bool = True
    id: str
    username: str
    role: str
