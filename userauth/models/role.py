"""Role model and the closed set of role names."""

import enum

from sqlalchemy import Column, ForeignKey, Integer, String, Table

from userauth.database import Base


class RoleName(str, enum.Enum):
    """Every role the system knows about. Ids are fixed and seeded at startup."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"

    @property
    def role_id(self) -> int:
        return ROLE_IDS[self]

    @property
    def can_manage_users(self) -> bool:
        return self is RoleName.ADMIN


ROLE_IDS = {
    RoleName.USER: 1,
    RoleName.MODERATOR: 2,
    RoleName.ADMIN: 3,
}

DEFAULT_ROLE = RoleName.USER


user_role = Table(
    "user_role",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("user.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("role.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base):
    """A named role a user can hold."""

    __tablename__ = "role"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(32), unique=True, nullable=False)
