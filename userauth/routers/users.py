"""User listing and administration endpoints."""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from userauth.database import get_db
from userauth.dependencies import CurrentUser, get_auth_service, get_client_ip, get_current_user, require_user_manager
from userauth.schemas.auth import MessageResponse
from userauth.schemas.user import Pagination, UserListResponse, UserResponse
from userauth.services.auth import AuthService
from userauth.services.user_store import get_user_store

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("", response_model=UserListResponse)
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str | None = None,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserListResponse:
    """List users, newest first, with optional username/email search."""
    result = get_user_store().list_users(db, page=page, page_size=limit, search=search)
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in result.items],
        pagination=Pagination(
            total_items=result.total,
            total_pages=result.total_pages,
            current_page=result.page,
            items_per_page=result.page_size,
        ),
    )


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Get a single user by ID."""
    return UserResponse.model_validate(auth_service.get_user(db, user_id))


@router.delete("/{user_id}", response_model=MessageResponse)
def delete_user(
    request: Request,
    user_id: int,
    admin: CurrentUser = Depends(require_user_manager),
    db: Session = Depends(get_db),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Delete a user (admin only)."""
    auth_service.delete_user(db, user_id, get_client_ip(request))
    return MessageResponse(message="User deleted")
