from tonotes.web.routers.auth import router as auth_router
from tonotes.web.routers.sessions import router as sessions_router
from tonotes.web.routers.two_factor import router as two_factor_router
from tonotes.web.routers.user import router as user_router

__all__ = [
    "auth_router",
    "sessions_router",
    "two_factor_router",
    "user_router",
]
