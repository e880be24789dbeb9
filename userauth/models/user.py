"""User model."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from userauth.database import Base, utcnow
from userauth.models.refresh_token import RefreshToken
from userauth.models.role import Role, RoleName, user_role


class User(Base):
    """Application user."""

    __tablename__ = "user"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(256), unique=True, nullable=False, index=True)
    password_hash = Column(String(256), nullable=False)
    profile_image = Column(String(512), nullable=True)
    email_verified = Column(Boolean, nullable=False, default=False)
    verification_token = Column(String(256), nullable=True, index=True)
    reset_password_token = Column(String(256), nullable=True, index=True)
    reset_password_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    roles = relationship(Role, secondary=user_role, lazy="selectin", order_by=Role.id)
    refresh_tokens = relationship(RefreshToken, back_populates="user", lazy="dynamic")

    @property
    def role_names(self) -> list[RoleName]:
        return [RoleName(role.name) for role in self.roles]
