"""
Authentication Endpoints.

Provides password login, second-factor verification and MFA management.
All MFA operations return typed results; this module only maps them to HTTP.
"""
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Request, status

from ..models import (
    UserLogin,
    LoginResponse,
    MFAChallengeRequest,
    SessionResponse,
    MFASetupResponse,
    MFACodeRequest,
    MFABackupCodesResponse,
    MFADisableRequest,
    MFAStatusResponse,
    ErrorResponse,
)
from ..deps import (
    get_db,
    get_mfa_service,
    get_current_user,
    check_login_rate_limit,
    check_mfa_verify_rate_limit,
)
from ..errors import APIError, raise_for
from ...auth.service import MFAService
from ...database.mfa_db import MfaDB, verify_password

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def _client(request: Request) -> Dict[str, Optional[str]]:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


# ============================================
# Login
# ============================================

@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        429: {"model": ErrorResponse, "description": "Too many attempts from this IP"},
    },
    dependencies=[Depends(check_login_rate_limit)],
)
async def login(
    credentials: UserLogin,
    request: Request,
    db: MfaDB = Depends(get_db),
    service: MFAService = Depends(get_mfa_service),
):
    """
    Authenticate with email and password.

    If 2FA is enabled the response contains a challenge token; submit it to
    /auth/mfa/verify together with a TOTP or backup code.
    """
    user = db.get_user_by_email(credentials.email)

    if user is None or not user["is_active"] or not verify_password(credentials.password, user["password_hash"]):
        raise APIError(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            code="invalid_credentials",
        )

    user_id = user["user_id"]
    client = _client(request)

    if service.enrollment.status(user_id).enabled:
        token = service.challenges.create(user_id, ip=client["ip"], user_agent=client["user_agent"])
        logger.info(f"Password accepted, second factor required for user {user_id}")
        return LoginResponse(mfa_required=True, challenge_token=token)

    issued = db.create(user_id, client)
    logger.info(f"User logged in: {user['email']}")
    return LoginResponse(
        mfa_required=False,
        access_token=issued["session_token"],
        expires_at=issued["expires_at"],
    )


# ============================================
# Second Factor
# ============================================

@router.post(
    "/mfa/verify",
    response_model=SessionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed code"},
        401: {"model": ErrorResponse, "description": "Invalid code or expired challenge"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
        503: {"model": ErrorResponse, "description": "Session could not be created; retry"},
    },
    dependencies=[Depends(check_mfa_verify_rate_limit)],
)
async def verify_challenge(
    body: MFAChallengeRequest,
    request: Request,
    service: MFAService = Depends(get_mfa_service),
):
    """
    Complete a login with a TOTP code or a one-time backup code.

    Backup codes are consumed on use and cannot be reused.
    """
    client = _client(request)
    result = service.verification.verify(
        body.challenge_token,
        body.code,
        ip=client["ip"],
        user_agent=client["user_agent"],
    )
    raise_for(result)

    login_result = result.value
    return SessionResponse(
        access_token=login_result.session["session_token"],
        expires_at=login_result.session["expires_at"],
        method=login_result.method,
    )


# ============================================
# MFA Management
# ============================================

@router.get("/mfa/status", response_model=MFAStatusResponse)
async def mfa_status(
    user: Dict = Depends(get_current_user),
    service: MFAService = Depends(get_mfa_service),
):
    """Get the current user's 2FA state and remaining backup codes."""
    current = service.enrollment.status(str(user["user_id"]))
    return MFAStatusResponse(
        enabled=current.enabled,
        has_secret=current.has_secret,
        backup_codes_remaining=current.backup_codes_remaining,
        enabled_at=current.enabled_at,
    )


@router.post("/mfa/setup", response_model=MFASetupResponse)
async def setup_mfa_endpoint(
    user: Dict = Depends(get_current_user),
    service: MFAService = Depends(get_mfa_service),
):
    """
    Initialize MFA setup.

    Returns the secret and provisioning URI for authenticator app setup.
    MFA is not active until confirmed with /mfa/confirm. Calling this again
    before confirming replaces the pending secret.
    """
    result = service.enrollment.start_setup(str(user["user_id"]), user["email"])
    raise_for(result)

    return MFASetupResponse(
        secret=result.value.seed,
        provisioning_uri=result.value.provisioning_uri,
    )


@router.post("/mfa/confirm", response_model=MFABackupCodesResponse)
async def confirm_mfa_setup(
    body: MFACodeRequest,
    user: Dict = Depends(get_current_user),
    service: MFAService = Depends(get_mfa_service),
):
    """
    Verify MFA setup and enable it.

    Returns backup codes for account recovery - store these securely!
    """
    result = service.enrollment.confirm_setup(str(user["user_id"]), body.totp_code)
    raise_for(result)

    return MFABackupCodesResponse(
        message="MFA enabled successfully. Store your backup codes securely!",
        backup_codes=result.value,
    )


@router.post("/mfa/backup-codes", response_model=MFABackupCodesResponse)
async def regenerate_backup_codes(
    user: Dict = Depends(get_current_user),
    service: MFAService = Depends(get_mfa_service),
):
    """Replace all backup codes. Previously issued codes stop working."""
    result = service.enrollment.regenerate_backup_codes(str(user["user_id"]))
    raise_for(result)

    return MFABackupCodesResponse(backup_codes=result.value)


@router.post("/mfa/disable", status_code=status.HTTP_204_NO_CONTENT)
async def disable_mfa(
    body: MFADisableRequest,
    user: Dict = Depends(get_current_user),
    service: MFAService = Depends(get_mfa_service),
):
    """
    Disable MFA for the current user.

    Requires the current password.
    """
    result = service.enrollment.disable(str(user["user_id"]), body.password)
    raise_for(result)

    return None
