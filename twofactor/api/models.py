"""
Pydantic Models for the MFA API.

Request and response models for all API endpoints.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, EmailStr, Field, ConfigDict


# ============================================
# First Factor
# ============================================

class UserLogin(BaseModel):
    """
    User login request (first factor).

    If two-factor authentication is enabled, the response carries a
    challenge token instead of an access token.
    """
    email: EmailStr = Field(..., description="Registered email address")
    password: str = Field(..., description="Account password")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "user@example.com",
                "password": "securepassword123"
            }
        }
    )


class LoginResponse(BaseModel):
    """
    Login response.

    Exactly one of access_token / challenge_token is set.
    """
    mfa_required: bool
    access_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[datetime] = None
    challenge_token: Optional[str] = Field(None, description="Submit to /auth/mfa/verify with a code")


# ============================================
# Second Factor
# ============================================

class MFAChallengeRequest(BaseModel):
    """Second-factor verification request."""
    challenge_token: str = Field(..., min_length=1, max_length=64)
    code: str = Field(..., min_length=6, max_length=16, description="6-digit TOTP code or 8-character backup code")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "challenge_token": "q3JX...",
                "code": "123456"
            }
        }
    )


class SessionResponse(BaseModel):
    """Session issued after a successful second factor."""
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    method: str = Field(..., description="totp or backup_code")


# ============================================
# Enrollment
# ============================================

class MFASetupResponse(BaseModel):
    """MFA setup response. Render provisioning_uri as a QR code."""
    secret: str
    provisioning_uri: str


class MFACodeRequest(BaseModel):
    """TOTP code confirming enrollment."""
    totp_code: str = Field(..., min_length=6, max_length=8)


class MFABackupCodesResponse(BaseModel):
    """
    Backup codes response.

    Shown exactly once. Each backup code can only be used once.
    """
    message: str = "Store your backup codes securely!"
    backup_codes: List[str] = Field(..., description="One-time backup codes for account recovery (store securely!)")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message": "MFA enabled successfully. Store your backup codes securely!",
                "backup_codes": ["A1B2C3D4", "E5F6A7B8", "C9D0E1F2"]
            }
        }
    )


class MFADisableRequest(BaseModel):
    """Disabling 2FA requires the current password."""
    password: str = Field(..., min_length=1)


class MFAStatusResponse(BaseModel):
    enabled: bool
    has_secret: bool
    backup_codes_remaining: int
    enabled_at: Optional[datetime] = None


# ============================================
# Errors
# ============================================

class ErrorResponse(BaseModel):
    """
    Standard error response.

    All API errors return this format with an error message,
    optional detail, and error code for programmatic handling.
    """
    error: str = Field(..., description="Error type/summary")
    detail: Optional[str] = Field(None, description="Detailed error message")
    code: Optional[str] = Field(None, description="Error code for programmatic handling")
