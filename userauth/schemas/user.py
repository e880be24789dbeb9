"""Pydantic schemas for user read/update endpoints."""

from datetime import datetime

from pydantic import ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from userauth.schemas.auth import CamelModel


class UserResponse(CamelModel):
    """Public view of a user. Password hash and tokens never appear here."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    username: str
    email: str
    profile_image: str | None = None
    email_verified: bool
    roles: list[str]
    created_at: datetime
    updated_at: datetime

    @field_validator("roles", mode="before")
    @classmethod
    def role_names(cls, value: list) -> list[str]:
        return [getattr(role, "name", role) for role in value]


class Pagination(CamelModel):
    total_items: int
    total_pages: int
    current_page: int
    items_per_page: int


class UserListResponse(CamelModel):
    users: list[UserResponse]
    pagination: Pagination


class ProfileUpdateResponse(CamelModel):
    message: str
    user: UserResponse
