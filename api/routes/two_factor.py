"""
api/routes/two_factor.py -- Second-factor endpoints for the admin and supervisor realms.

Routes ({realm} is admin | supervisor; the end-user realm answers 404):
  GET     /api/{realm}-2fa-status  -- state + provisioning material; enrolls on first call
  POST    /api/{realm}-2fa-verify  -- check a TOTP code; sets <realm>_2fa_verified
  DELETE  /api/{realm}-2fa-verify  -- clear the assertion (session stays valid)

Status and verify require a valid <realm>_session; the gate enforces it, so
the assertion cookie can only ever be written next to a matching session.
DELETE needs no session: it only expires the assertion cookie.

Security:
  [H2] POST is rate-limited per IP (TWO_FACTOR_RATE_LIMIT) -- a 6-digit code
       with a +/-2 step window must not be brute-forceable.
  Cache-Control: no-store on every response that may carry a secret.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import SuccessResponse, TwoFactorStatusResponse, TwoFactorVerifyRequest
from auth.dependencies import two_factor_realm_from_path
from auth.errors import Unauthenticated
from auth.gate import SecondFactorGate, TwoFactorState
from auth.realms import Realm
from core.config import get_settings

_settings = get_settings()

router = APIRouter()


@router.get("/{realm}-2fa-status", response_model=TwoFactorStatusResponse)
def two_factor_status(request: Request, target_realm: Realm = Depends(two_factor_realm_from_path)) -> JSONResponse:
    """Report the gate state. Creates the TOTP secret on the first call after sign-in."""
    gate: SecondFactorGate = request.app.state.gate
    status = gate.status(target_realm, request.cookies)
    if status.state is TwoFactorState.NO_SESSION:
        raise Unauthenticated()
    body = TwoFactorStatusResponse(
        state=status.state.value,
        is_setup=status.is_setup,
        qr_code=status.qr_code,
        secret=status.secret,
    )
    resp = JSONResponse(content=body.model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(_settings.two_factor_rate_limit)  # [H2]
@router.post("/{realm}-2fa-verify", response_model=SuccessResponse)
def two_factor_verify(
    request: Request,
    body: TwoFactorVerifyRequest,
    target_realm: Realm = Depends(two_factor_realm_from_path),
) -> JSONResponse:
    """Validate a code; on success write the 4-hour assertion cookie."""
    gate: SecondFactorGate = request.app.state.gate
    resp = JSONResponse(content=SuccessResponse().model_dump())
    gate.verify(target_realm, request.cookies, body.code, resp)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.delete("/{realm}-2fa-verify", response_model=SuccessResponse)
async def two_factor_clear(request: Request, target_realm: Realm = Depends(two_factor_realm_from_path)) -> JSONResponse:
    """Clear the assertion cookie."""
    gate: SecondFactorGate = request.app.state.gate
    resp = JSONResponse(content=SuccessResponse().model_dump())
    gate.clear(target_realm, resp)
    return resp
