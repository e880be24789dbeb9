"""Access and refresh token service."""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

from userauth.config import get_settings
from userauth.database import utcnow
from userauth.errors import ExpiredToken, InvalidToken, SigningError
from userauth.models.refresh_token import RefreshToken
from userauth.models.role import RoleName
from userauth.models.user import User

logger = logging.getLogger("userauth")

REFRESH_TOKEN_TTL = timedelta(days=7)
ACCESS_TOKEN_TYPE = "access"


@dataclass
class AccessClaims:
    """Identity carried by a verified access token."""

    user_id: int
    roles: list[RoleName]


class TokenService:
    """Issues and validates access tokens and manages persisted refresh tokens."""

    def __init__(
        self,
        access_secret: str | None = None,
        refresh_secret: str | None = None,
        algorithm: str | None = None,
        access_ttl: timedelta | None = None,
    ) -> None:
        settings = get_settings()
        self.access_secret = settings.ACCESS_TOKEN_SECRET if access_secret is None else access_secret
        self.refresh_secret = settings.REFRESH_TOKEN_SECRET if refresh_secret is None else refresh_secret
        self.algorithm = algorithm or settings.JWT_ALGORITHM
        self.access_ttl = access_ttl or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    # --- access tokens ---

    def issue_access_token(self, user: User) -> str:
        """Create a signed, time-limited access token for the given user."""
        if not self.access_secret:
            raise SigningError("ACCESS_TOKEN_SECRET is not configured")
        now = utcnow()
        payload = {
            "sub": str(user.id),
            "roles": [role.value for role in user.role_names],
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        try:
            return jwt.encode(payload, self.access_secret, algorithm=self.algorithm)
        except JWTError as e:
            raise SigningError(f"Could not sign access token: {e}") from e

    def verify_access_token(self, token: str) -> AccessClaims:
        """Decode and validate an access token."""
        if not self.access_secret:
            raise SigningError("ACCESS_TOKEN_SECRET is not configured")
        try:
            payload = jwt.decode(token, self.access_secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise ExpiredToken() from None
        except JWTError:
            raise InvalidToken() from None

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise InvalidToken()
        try:
            user_id = int(payload["sub"])
            roles = [RoleName(name) for name in payload.get("roles", [])]
        except (KeyError, TypeError, ValueError):
            raise InvalidToken() from None
        return AccessClaims(user_id=user_id, roles=roles)

    # --- refresh tokens ---

    def _tag(self, value: str) -> str:
        return hmac.new(self.refresh_secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()[:32]

    def _new_refresh_value(self) -> str:
        if not self.refresh_secret:
            raise SigningError("REFRESH_TOKEN_SECRET is not configured")
        value = secrets.token_urlsafe(48)
        return f"{value}.{self._tag(value)}"

    def _is_well_formed(self, token: str) -> bool:
        """Reject forged values before touching the database."""
        value, sep, tag = token.rpartition(".")
        if not sep or not value or not self.refresh_secret:
            return False
        return hmac.compare_digest(tag, self._tag(value))

    def _build_refresh_token(self, user_id: int, client_ip: str) -> RefreshToken:
        now = utcnow()
        return RefreshToken(
            user_id=user_id,
            token=self._new_refresh_value(),
            expires_at=now + REFRESH_TOKEN_TTL,
            created_at=now,
            created_by_ip=client_ip,
        )

    def issue_refresh_token(self, db: Session, user_id: int, client_ip: str) -> str:
        """Persist a new refresh token for the user and return its value."""
        row = self._build_refresh_token(user_id, client_ip)
        db.add(row)
        db.commit()
        return row.token

    def get_refresh_token(self, db: Session, token: str) -> RefreshToken | None:
        """Look up a refresh token row by value, whatever its state."""
        return db.query(RefreshToken).filter(RefreshToken.token == token).first()

    def rotate_refresh_token(self, db: Session, token: str, client_ip: str) -> RefreshToken:
        """Revoke ``token`` and atomically issue its successor.

        The old row is revoked with a single conditional UPDATE, so of two
        concurrent rotations of the same token only one can succeed.
        Returns the successor row.
        """
        if not self._is_well_formed(token):
            raise InvalidToken("Invalid refresh token")

        now = utcnow()
        revoked = (
            db.query(RefreshToken)
            .filter(
                RefreshToken.token == token,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
            )
            .update({"revoked_at": now, "revoked_by_ip": client_ip}, synchronize_session=False)
        )
        if revoked != 1:
            db.rollback()
            self._reject(db, token, client_ip)

        old = db.query(RefreshToken).populate_existing().filter(RefreshToken.token == token).one()
        successor = self._build_refresh_token(old.user_id, client_ip)
        old.replaced_by_token = successor.token
        db.add(successor)
        db.commit()
        return successor

    def _reject(self, db: Session, token: str, client_ip: str) -> None:
        """Classify a token that could not be rotated and raise."""
        row = self.get_refresh_token(db, token)
        if row is None:
            raise InvalidToken("Invalid refresh token")
        if row.revoked_at is not None:
            revoked = self._revoke_descendants(db, row, client_ip)
            logger.warning(
                "Refresh token reuse detected for user %s from %s; revoked %d descendant token(s)",
                row.user_id,
                client_ip,
                revoked,
            )
            raise InvalidToken("Invalid refresh token")
        raise ExpiredToken("Refresh token expired")

    def _revoke_descendants(self, db: Session, row: RefreshToken, client_ip: str) -> int:
        now = utcnow()
        count = 0
        seen = {row.token}
        next_value = row.replaced_by_token
        while next_value and next_value not in seen:
            seen.add(next_value)
            successor = self.get_refresh_token(db, next_value)
            if successor is None:
                break
            if successor.revoked_at is None:
                successor.revoked_at = now
                successor.revoked_by_ip = client_ip
                count += 1
            next_value = successor.replaced_by_token
        db.commit()
        return count

    def revoke_refresh_token(self, db: Session, token: str, client_ip: str) -> bool:
        """Revoke a single refresh token. Returns False if it was not active."""
        revoked = (
            db.query(RefreshToken)
            .filter(RefreshToken.token == token, RefreshToken.revoked_at.is_(None))
            .update({"revoked_at": utcnow(), "revoked_by_ip": client_ip}, synchronize_session=False)
        )
        db.commit()
        return revoked == 1

    def revoke_user_tokens(self, db: Session, user_id: int, client_ip: str) -> int:
        """Revoke every unrevoked refresh token the user holds. Caller commits."""
        return (
            db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .update({"revoked_at": utcnow(), "revoked_by_ip": client_ip}, synchronize_session=False)
        )


_token_service: TokenService | None = None


def get_token_service() -> TokenService:
    """Get singleton token service instance."""
    global _token_service
    if _token_service is None:
        _token_service = TokenService()
    return _token_service
