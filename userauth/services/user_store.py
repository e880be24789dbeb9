"""Credential store: persistence and lookups for user accounts."""

import math
from dataclasses import dataclass

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from userauth.database import utcnow
from userauth.errors import Conflict, EmailInUse, UsernameInUse
from userauth.models.role import DEFAULT_ROLE, Role
from userauth.models.user import User


@dataclass
class UserPage:
    """One page of a user listing."""

    items: list[User]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _conflict_from(error: IntegrityError) -> Conflict:
    """Map a unique-constraint violation to the matching conflict error."""
    text = str(error.orig).lower()
    if "email" in text:
        return EmailInUse()
    if "username" in text:
        return UsernameInUse()
    return Conflict()


class UserStore:
    """Reads and writes user records. Soft-deleted users are invisible to every lookup."""

    def _active(self, db: Session) -> Query:
        return db.query(User).filter(User.deleted_at.is_(None))

    def find_by_id(self, db: Session, user_id: int) -> User | None:
        return self._active(db).filter(User.id == user_id).first()

    def find_by_email(self, db: Session, email: str) -> User | None:
        return self._active(db).filter(User.email == email.lower().strip()).first()

    def find_by_username(self, db: Session, username: str) -> User | None:
        return self._active(db).filter(User.username == username.strip()).first()

    def find_by_verification_token(self, db: Session, token: str) -> User | None:
        return self._active(db).filter(User.verification_token == token).first()

    def find_by_reset_token(self, db: Session, token: str) -> User | None:
        """Find the holder of an unexpired reset token. Expired tokens count as absent."""
        return (
            self._active(db)
            .filter(User.reset_password_token == token, User.reset_password_expires_at > utcnow())
            .first()
        )

    def email_taken(self, db: Session, email: str) -> bool:
        # Soft-deleted rows still hold their unique email.
        return db.query(User.id).filter(User.email == email.lower().strip()).first() is not None

    def username_taken(self, db: Session, username: str) -> bool:
        return db.query(User.id).filter(User.username == username.strip()).first() is not None

    def create_with_default_role(
        self,
        db: Session,
        username: str,
        email: str,
        password_hash: str,
        verification_token: str,
        profile_image: str | None = None,
    ) -> User:
        """Insert a user together with the default role in one transaction."""
        role = db.get(Role, DEFAULT_ROLE.role_id)
        if role is None:
            raise RuntimeError("Roles are not seeded")

        user = User(
            username=username.strip(),
            email=email.lower().strip(),
            password_hash=password_hash,
            profile_image=profile_image,
            email_verified=False,
            verification_token=verification_token,
        )
        user.roles.append(role)
        db.add(user)
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise _conflict_from(e) from None
        db.refresh(user)
        return user

    def save(self, db: Session, user: User) -> User:
        """Commit pending changes on a user, mapping uniqueness violations to conflicts."""
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise _conflict_from(e) from None
        db.refresh(user)
        return user

    def list_users(self, db: Session, page: int = 1, page_size: int = 10, search: str | None = None) -> UserPage:
        """List users newest first, optionally filtered by a username/email substring."""
        query = self._active(db)
        if search:
            pattern = f"%{_escape_like(search)}%"
            query = query.filter(
                or_(User.username.ilike(pattern, escape="\\"), User.email.ilike(pattern, escape="\\"))
            )

        total = query.count()
        items = (
            query.order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return UserPage(items=items, total=total, page=page, page_size=page_size)

    def clear_reset_token(self, db: Session, user_id: int, token: str) -> bool:
        """Drop a reset token if it is still the one on file. Caller commits."""
        cleared = (
            db.query(User)
            .filter(User.id == user_id, User.reset_password_token == token)
            .update({"reset_password_token": None, "reset_password_expires_at": None}, synchronize_session="fetch")
        )
        return cleared == 1

    def soft_delete(self, db: Session, user: User) -> None:
        """Mark a user deleted. Caller commits."""
        user.deleted_at = utcnow()
        user.verification_token = None
        user.reset_password_token = None
        user.reset_password_expires_at = None


_user_store: UserStore | None = None


def get_user_store() -> UserStore:
    """Get singleton user store instance."""
    global _user_store
    if _user_store is None:
        _user_store = UserStore()
    return _user_store
