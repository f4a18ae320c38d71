from fastapi import APIRouter, Response
from pydantic import BaseModel, Field

from tonotes.core.modules.user.models import UserView
from tonotes.web.deps import SESSION_COOKIE, AppDep, AuthDep
from tonotes.web.openapi import ErrorResponse, RateLimitedResponse

router = APIRouter(tags=["user"])


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(..., description="Current password")
    new_password: str = Field(..., description="New password satisfying the password policy")


class ChangeEmailRequest(BaseModel):
    new_email: str = Field(..., description="New email address")


@router.get(
    "/user",
    summary="Get profile",
    operation_id="getProfile",
    responses={
        200: {"description": "Current user"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def get_profile(app: AppDep, ctx: AuthDep) -> UserView:
    return await app.get_profile(ctx)


@router.put(
    "/user/password",
    summary="Change password",
    description="Allowed once every 14 days. Existing tokens stay valid.",
    operation_id="changePassword",
    responses={
        200: {"description": "Password changed"},
        400: {"model": ErrorResponse, "description": "Weak or unchanged password"},
        401: {"model": ErrorResponse, "description": "Not authenticated or wrong current password"},
        429: {"model": RateLimitedResponse, "description": "Changed too recently"},
    },
)
async def change_password(password_data: ChangePasswordRequest, app: AppDep, ctx: AuthDep) -> UserView:
    return await app.change_password(ctx, password_data.old_password, password_data.new_password)


@router.put(
    "/user/email",
    summary="Change email",
    description="Allowed once every 14 days.",
    operation_id="changeEmail",
    responses={
        200: {"description": "Email changed"},
        400: {"model": ErrorResponse, "description": "Invalid or unchanged email"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        429: {"model": RateLimitedResponse, "description": "Changed too recently"},
    },
)
async def change_email(email_data: ChangeEmailRequest, app: AppDep, ctx: AuthDep) -> UserView:
    return await app.change_email(ctx, email_data.new_email)


@router.delete(
    "/user",
    summary="Delete account",
    description="Delete the current user together with all of their sessions.",
    operation_id="deleteAccount",
    status_code=204,
    responses={
        204: {"description": "Account deleted"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def delete_account(app: AppDep, ctx: AuthDep, response: Response) -> None:
    await app.delete_account(ctx)
    response.delete_cookie(SESSION_COOKIE)
