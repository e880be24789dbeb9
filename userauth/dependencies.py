"""Request-scoped dependencies: authentication, role checks and service wiring."""

from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from userauth.database import get_db
from userauth.errors import Forbidden, InvalidToken, Unauthenticated
from userauth.models.role import RoleName
from userauth.services.auth import AuthService
from userauth.services.mailer import Mailer
from userauth.services.token import get_token_service
from userauth.services.user_store import get_user_store


@dataclass
class CurrentUser:
    """Authenticated user context."""

    user_id: int
    roles: list[RoleName]


def get_client_ip(request: Request) -> str:
    """Best-effort client address for the refresh-token audit columns."""
    return request.client.host if request.client else "unknown"


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    """Extract and validate user from the Bearer token. Raises 401 if missing or invalid.

    The token's subject must still be a live account; roles come from the
    stored user, not from the token claims.
    """
    token: str | None = None

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()

    if not token:
        raise Unauthenticated()

    claims = get_token_service().verify_access_token(token)
    user = get_user_store().find_by_id(db, claims.user_id)
    if user is None:
        raise InvalidToken()
    return CurrentUser(user_id=user.id, roles=user.role_names)


def require_user_manager(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Admit only callers whose roles carry the user-management capability (admins)."""
    if not any(role.can_manage_users for role in user.roles):
        raise Forbidden(f"Requires {RoleName.ADMIN.value} role")
    return user


def get_mailer(request: Request) -> Mailer:
    """Process-wide mailer created in the application lifespan."""
    return request.app.state.mailer


def get_auth_service(mailer: Mailer = Depends(get_mailer)) -> AuthService:
    """Auth service bound to the process-wide mailer."""
    return AuthService(mailer=mailer)
