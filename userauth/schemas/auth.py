"""Pydantic schemas for authentication endpoints."""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_MIN, USERNAME_MAX = 3, 30
PASSWORD_MIN, PASSWORD_MAX = 6, 72


class CamelModel(BaseModel):
    """JSON bodies use camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SigninRequest(CamelModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1)


class EmailRequest(CamelModel):
    email: str = Field(pattern=EMAIL_PATTERN)


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


class ResetPasswordRequest(CamelModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self) -> "ResetPasswordRequest":
        if self.password != self.confirm_password:
            raise ValueError("Password confirmation does not match password")
        return self


class SignupResponse(CamelModel):
    id: int
    username: str
    email: str
    message: str
    warning: str | None = None


class SessionUser(CamelModel):
    id: int
    username: str
    email: str
    roles: list[str]
    profile_image: str | None = None


class SigninResponse(CamelModel):
    access_token: str
    refresh_token: str
    user: SessionUser


class TokenPairResponse(CamelModel):
    access_token: str
    refresh_token: str


class MessageResponse(CamelModel):
    message: str
    warning: str | None = None
