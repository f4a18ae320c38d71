from uuid import UUID

from fastapi import APIRouter, Response
from pydantic import BaseModel

from tonotes.core.modules.session.models import SessionView
from tonotes.web.deps import SESSION_COOKIE, AppDep, AuthDep
from tonotes.web.openapi import ErrorResponse

router = APIRouter(tags=["sessions"])


class SessionListResponse(BaseModel):
    sessions: list[SessionView]
    count: int


class LogoutAllResponse(BaseModel):
    message: str
    ended: int


@router.get(
    "/session",
    summary="List sessions",
    description="Active sessions of the current user, most recently used first.",
    operation_id="listSessions",
    responses={
        200: {"description": "Active sessions"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def list_sessions(app: AppDep, ctx: AuthDep) -> SessionListResponse:
    sessions = await app.list_sessions(ctx)
    return SessionListResponse(sessions=sessions, count=len(sessions))


@router.post(
    "/session/logout-all",
    summary="Log out everywhere",
    description="End every session of the current user, including this one.",
    operation_id="logoutAllSessions",
    responses={
        200: {"description": "All sessions ended"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def logout_all(app: AppDep, ctx: AuthDep, response: Response) -> LogoutAllResponse:
    ended = await app.logout_all(ctx)
    response.delete_cookie(SESSION_COOKIE)
    return LogoutAllResponse(message="All sessions logged out", ended=ended)


@router.get(
    "/session/{session_id}",
    summary="Get session",
    operation_id="getSession",
    responses={
        200: {"description": "Session details"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Session belongs to another user"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def get_session(session_id: UUID, app: AppDep, ctx: AuthDep) -> SessionView:
    return await app.get_session(ctx, session_id)


@router.delete(
    "/session/{session_id}",
    summary="End session",
    description="Log out one of the current user's sessions.",
    operation_id="endSession",
    status_code=204,
    responses={
        204: {"description": "Session ended"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Session belongs to another user"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def end_session(session_id: UUID, app: AppDep, ctx: AuthDep) -> None:
    await app.end_session(ctx, session_id)
