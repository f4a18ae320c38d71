from fastapi import APIRouter
from pydantic import BaseModel, Field

from tonotes.web.deps import AppDep, AuthDep
from tonotes.web.openapi import ErrorResponse

router = APIRouter(tags=["2fa"])

RECOVERY_CODES_WARNING = "Save these recovery codes securely. They will not be shown again."


class TwoFactorSetupResponse(BaseModel):
    secret: str = Field(..., description="Base32 TOTP secret")
    qr_code: str = Field(..., description="PNG data URI of the provisioning QR code")


class EnableTwoFactorRequest(BaseModel):
    secret: str = Field(..., description="Secret returned by the setup endpoint")
    code: str = Field(..., description="Current TOTP code for the secret")


class EnableTwoFactorResponse(BaseModel):
    message: str
    recovery_codes: list[str]
    warning: str


class CodeRequest(BaseModel):
    code: str = Field(..., description="Current TOTP code")


class RecoveryRequest(BaseModel):
    recovery_code: str = Field(..., description="Recovery code, dashes and case are ignored")


class RecoveryResponse(BaseModel):
    message: str
    remaining_codes: int
    warning: str | None = None


class MessageResponse(BaseModel):
    message: str


@router.get(
    "/2fa/setup",
    summary="Start 2FA setup",
    description="Generate a TOTP secret and QR code. Nothing is stored until 2FA is enabled.",
    operation_id="setupTwoFactor",
    responses={
        200: {"description": "New secret"},
        400: {"model": ErrorResponse, "description": "2FA already enabled"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
    },
)
async def setup(app: AppDep, ctx: AuthDep) -> TwoFactorSetupResponse:
    secret, qr_code = await app.setup_two_factor(ctx)
    return TwoFactorSetupResponse(secret=secret, qr_code=qr_code)


@router.post(
    "/2fa/enable",
    summary="Enable 2FA",
    operation_id="enableTwoFactor",
    responses={
        200: {"description": "2FA enabled; recovery codes are shown once"},
        400: {"model": ErrorResponse, "description": "2FA already enabled"},
        401: {"model": ErrorResponse, "description": "Not authenticated or invalid code"},
    },
)
async def enable(enable_data: EnableTwoFactorRequest, app: AppDep, ctx: AuthDep) -> EnableTwoFactorResponse:
    codes = await app.enable_two_factor(ctx, enable_data.secret, enable_data.code)
    return EnableTwoFactorResponse(
        message="2FA enabled successfully", recovery_codes=codes, warning=RECOVERY_CODES_WARNING
    )


@router.post(
    "/2fa/verify",
    summary="Verify TOTP code",
    operation_id="verifyTwoFactor",
    responses={
        200: {"description": "Code is valid"},
        400: {"model": ErrorResponse, "description": "2FA not enabled"},
        401: {"model": ErrorResponse, "description": "Not authenticated or invalid code"},
    },
)
async def verify(code_data: CodeRequest, app: AppDep, ctx: AuthDep) -> MessageResponse:
    await app.verify_two_factor(ctx, code_data.code)
    return MessageResponse(message="2FA code verified")


@router.post(
    "/2fa/disable",
    summary="Disable 2FA",
    operation_id="disableTwoFactor",
    responses={
        200: {"description": "2FA disabled"},
        400: {"model": ErrorResponse, "description": "2FA not enabled"},
        401: {"model": ErrorResponse, "description": "Not authenticated or invalid code"},
    },
)
async def disable(code_data: CodeRequest, app: AppDep, ctx: AuthDep) -> MessageResponse:
    await app.disable_two_factor(ctx, code_data.code)
    return MessageResponse(message="2FA disabled successfully")


@router.post(
    "/2fa/recovery",
    summary="Use recovery code",
    description="Consume one recovery code. Each code is accepted once.",
    operation_id="useRecoveryCode",
    responses={
        200: {"description": "Code accepted"},
        400: {"model": ErrorResponse, "description": "2FA not enabled"},
        401: {"model": ErrorResponse, "description": "Not authenticated or invalid code"},
    },
)
async def recovery(recovery_data: RecoveryRequest, app: AppDep, ctx: AuthDep) -> RecoveryResponse:
    remaining, warning = await app.use_recovery_code(ctx, recovery_data.recovery_code)
    return RecoveryResponse(message="Recovery code accepted", remaining_codes=remaining, warning=warning)
