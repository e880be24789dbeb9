"""API routers."""

from userauth.routers.auth import router as auth_router
from userauth.routers.users import router as users_router

__all__ = ["auth_router", "users_router"]
