"""Authentication service: account lifecycle and credential flows."""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache

import bcrypt
from sqlalchemy.orm import Session

from userauth.config import get_settings
from userauth.database import utcnow
from userauth.errors import (
    AlreadyVerified,
    EmailInUse,
    EmailNotVerified,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidToken,
    InvalidVerificationToken,
    MailDeliveryError,
    UsernameInUse,
    UserNotFound,
)
from userauth.models.user import User
from userauth.services.mailer import Mailer
from userauth.services.profile_image import ProfileImageStorage, get_profile_image_storage
from userauth.services.token import TokenService, get_token_service
from userauth.services.user_store import UserStore, get_user_store

logger = logging.getLogger("userauth")

RESET_TOKEN_TTL = timedelta(hours=1)

# bcrypt only looks at the first 72 bytes; newer releases refuse longer input.
_BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash a password with bcrypt at the configured cost."""
    rounds = get_settings().BCRYPT_ROUNDS
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))


@lru_cache
def _dummy_hash() -> str:
    """Hash compared against when the email is unknown, so both failures cost the same."""
    return hash_password(secrets.token_urlsafe(16))


@dataclass
class SignupResult:
    """Outcome of a signup. The account exists even if the email did not go out."""

    user: User
    email_sent: bool

    @property
    def warning(self) -> str | None:
        if self.email_sent:
            return None
        return "Verification email could not be sent. Request a new one later."


@dataclass
class SigninResult:
    user: User
    access_token: str
    refresh_token: str


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


class AuthService:
    """Handles signup, verification, signin, token refresh and password recovery.

    Email policy per operation:
      - signup and resend-verification: best-effort, failure is logged and reported as a warning
      - forgot-password: synchronous, failure rolls back the reset token and raises MailDeliveryError
      - reset-password confirmation: best-effort
    """

    def __init__(
        self,
        mailer: Mailer,
        tokens: TokenService | None = None,
        store: UserStore | None = None,
        images: ProfileImageStorage | None = None,
    ) -> None:
        self.mailer = mailer
        self.tokens = tokens or get_token_service()
        self.store = store or get_user_store()
        self.images = images or get_profile_image_storage()

    # --- registration and verification ---

    def signup(
        self,
        db: Session,
        username: str,
        email: str,
        password: str,
        profile_image: str | None = None,
    ) -> SignupResult:
        """Register a new, unverified user holding the default role.

        ``profile_image`` is an already-stored filename; it is removed if the
        user row is not committed.
        """
        try:
            if self.store.email_taken(db, email):
                raise EmailInUse()
            if self.store.username_taken(db, username):
                raise UsernameInUse()

            user = self.store.create_with_default_role(
                db,
                username=username,
                email=email,
                password_hash=hash_password(password),
                verification_token=secrets.token_urlsafe(32),
                profile_image=profile_image,
            )
        except Exception:
            self.images.delete(profile_image)
            raise

        logger.info("User %s registered (id=%s)", user.username, user.id)
        return SignupResult(user=user, email_sent=self._send_verification(user))

    def _send_verification(self, user: User) -> bool:
        # Best-effort: the account stays, the caller reports a warning.
        try:
            self.mailer.send_verification_email(user.email, user.username, user.verification_token)
        except MailDeliveryError:
            logger.warning("Verification email for user %s was not delivered", user.id)
            return False
        return True

    def verify_email(self, db: Session, token: str) -> User:
        """Consume a verification token. A token works exactly once."""
        user = self.store.find_by_verification_token(db, token) if token else None
        if user is None:
            raise InvalidVerificationToken()

        user.email_verified = True
        user.verification_token = None
        db.commit()
        db.refresh(user)
        logger.info("User %s verified their email", user.id)
        return user

    def resend_verification(self, db: Session, email: str) -> bool:
        """Resend the verification email. Returns whether delivery succeeded."""
        user = self.store.find_by_email(db, email)
        if user is None:
            raise UserNotFound()
        if user.email_verified:
            raise AlreadyVerified()

        if not user.verification_token:
            user.verification_token = secrets.token_urlsafe(32)
            db.commit()
            db.refresh(user)
        return self._send_verification(user)

    # --- sessions ---

    def signin(self, db: Session, email: str, password: str, client_ip: str) -> SigninResult:
        """Authenticate and issue an access token plus a refresh token."""
        user = self.store.find_by_email(db, email)
        if user is None:
            verify_password(password, _dummy_hash())
            raise InvalidCredentials()
        if not verify_password(password, user.password_hash):
            raise InvalidCredentials()
        if not user.email_verified:
            raise EmailNotVerified("Email not verified. Request a new verification email to continue.")

        access_token = self.tokens.issue_access_token(user)
        refresh_token = self.tokens.issue_refresh_token(db, user.id, client_ip)
        return SigninResult(user=user, access_token=access_token, refresh_token=refresh_token)

    def refresh(self, db: Session, refresh_token: str, client_ip: str) -> TokenPair:
        """Rotate a refresh token and mint a matching access token."""
        successor = self.tokens.rotate_refresh_token(db, refresh_token, client_ip)
        user = self.store.find_by_id(db, successor.user_id)
        if user is None:
            self.tokens.revoke_refresh_token(db, successor.token, client_ip)
            raise InvalidToken("Invalid refresh token")
        return TokenPair(access_token=self.tokens.issue_access_token(user), refresh_token=successor.token)

    def logout(self, db: Session, refresh_token: str, client_ip: str) -> None:
        """Revoke a refresh token. Revoking an already revoked token is a no-op."""
        if self.tokens.get_refresh_token(db, refresh_token) is None:
            raise InvalidToken("Invalid refresh token")
        self.tokens.revoke_refresh_token(db, refresh_token, client_ip)

    # --- password recovery ---

    def forgot_password(self, db: Session, email: str) -> str:
        """Issue a one-hour reset token and email the link. Returns the token."""
        user = self.store.find_by_email(db, email)
        if user is None:
            raise UserNotFound()

        token = secrets.token_urlsafe(32)
        user.reset_password_token = token
        user.reset_password_expires_at = utcnow() + RESET_TOKEN_TTL
        db.commit()

        # Synchronous: without the email the token is useless, so keep nothing.
        # The token is committed before sending so no write lock is held during SMTP.
        try:
            self.mailer.send_password_reset_email(user.email, token, int(RESET_TOKEN_TTL.total_seconds() // 60))
        except MailDeliveryError:
            self.store.clear_reset_token(db, user.id, token)
            db.commit()
            raise
        return token

    def reset_password(self, db: Session, token: str, new_password: str, client_ip: str = "unknown") -> User:
        """Set a new password using an unexpired reset token."""
        user = self.store.find_by_reset_token(db, token) if token else None
        if user is None:
            raise InvalidOrExpiredToken()

        user.password_hash = hash_password(new_password)
        user.reset_password_token = None
        user.reset_password_expires_at = None
        self.tokens.revoke_user_tokens(db, user.id, client_ip)
        db.commit()
        db.refresh(user)
        logger.info("User %s reset their password", user.id)

        # Best-effort confirmation: the password has already changed.
        try:
            self.mailer.send_password_changed_email(user.email)
        except MailDeliveryError:
            logger.warning("Password change confirmation for user %s was not delivered", user.id)
        return user

    # --- profile ---

    def get_user(self, db: Session, user_id: int) -> User:
        user = self.store.find_by_id(db, user_id)
        if user is None:
            raise UserNotFound()
        return user

    def update_profile(
        self,
        db: Session,
        user_id: int,
        username: str | None = None,
        email: str | None = None,
        profile_image: str | None = None,
    ) -> User:
        """Update username, email and/or image. A new image is removed again if the update fails."""
        old_image = None
        try:
            user = self.get_user(db, user_id)
            if username and username.strip() != user.username:
                if self.store.username_taken(db, username):
                    raise UsernameInUse()
                user.username = username.strip()
            if email and email.lower().strip() != user.email:
                if self.store.email_taken(db, email):
                    raise EmailInUse()
                user.email = email.lower().strip()
            if profile_image:
                old_image = user.profile_image
                user.profile_image = profile_image
            self.store.save(db, user)
        except Exception:
            db.rollback()
            self.images.delete(profile_image)
            raise

        self.images.delete(old_image)
        return user

    def delete_user(self, db: Session, user_id: int, client_ip: str) -> None:
        """Soft-delete a user, revoke their refresh tokens and drop their image."""
        user = self.get_user(db, user_id)
        image = user.profile_image
        self.store.soft_delete(db, user)
        user.profile_image = None
        revoked = self.tokens.revoke_user_tokens(db, user.id, client_ip)
        db.commit()
        self.images.delete(image)
        logger.info("User %s deleted (%d refresh token(s) revoked)", user_id, revoked)
