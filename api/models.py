"""
API request and response models for the Deal Room auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field names are snake_case in Python and camelCase on the wire (csrfToken,
isSetup, qrCode) to match what the browser pages send and read.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class TwoFactorVerifyRequest(BaseModel):
    """Request body for POST /api/<realm>-2fa-verify.

    Length and digit checks happen in the TOTP engine so a malformed code
    gets the same 400 two_factor_invalid answer as a wrong one.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(max_length=32)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class CsrfResponse(BaseModel):
    """Response for GET /api/auth/<realm>/csrf."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    csrf_token: str = Field(serialization_alias="csrfToken")


class SessionResponse(BaseModel):
    """Response for GET /api/auth/<realm>/session."""

    model_config = ConfigDict(frozen=True)

    realm: str
    email: str
    expires: str


class TwoFactorStatusResponse(BaseModel):
    """Response for GET /api/<realm>-2fa-status.

    qr_code (PNG data URI) and secret (manual entry) are present only while
    the identity has not completed enrollment.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    state: str
    is_setup: bool = Field(serialization_alias="isSetup")
    qr_code: Optional[str] = Field(default=None, serialization_alias="qrCode")
    secret: Optional[str] = None


class SuccessResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
