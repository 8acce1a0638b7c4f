"""
auth/totp.py -- TOTP engine: secrets, provisioning URIs, QR codes, code validation.

RFC 6238 parameters are fixed for every realm: SHA-1, 6 digits, 30-second
period. These are what Google Authenticator, 1Password, Authy etc. expect
from an otpauth:// URI without extra parameters.

validate() checks the current step and `window` steps either side (default
2, i.e. +/-60 seconds of clock drift). It computes and compares every
candidate in the window with hmac.compare_digest and only then decides, so
the amount of work does not depend on which step (if any) matched.
Malformed input (anything but exactly six ASCII digits) is rejected before
any HMAC is computed.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import io
import logging
import re
import time
from datetime import datetime

import pyotp
import qrcode

logger = logging.getLogger("dealroom.auth.totp")

DIGITS = 6
PERIOD_SECONDS = 30
DEFAULT_WINDOW = 2
# 32 base32 chars = 160 bits, the RFC 4226 recommended HMAC-SHA1 key length.
SECRET_LENGTH = 32

_CODE_RE = re.compile(r"[0-9]{6}")


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=DIGITS, digest=hashlib.sha1, interval=PERIOD_SECONDS)


def generate_secret() -> str:
    """Return a new base32 shared secret."""
    return pyotp.random_base32(length=SECRET_LENGTH)


def provisioning_uri(secret: str, issuer: str, email: str) -> str:
    """Return the otpauth://totp/... URI an authenticator app enrolls from."""
    return _totp(secret).provisioning_uri(name=email, issuer_name=issuer)


def render_png_data_uri(otpauth_uri: str) -> str:
    """Render a URI as a PNG QR code and return it as a data: URI for an <img> tag."""
    image = qrcode.make(otpauth_uri)
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def is_well_formed_code(code: object) -> bool:
    return isinstance(code, str) and _CODE_RE.fullmatch(code) is not None


def code_at(secret: str, for_time: int | float | datetime) -> str:
    """The code for the time step containing for_time."""
    return _totp(secret).at(for_time)


def validate(
    secret: str,
    code: str,
    window: int = DEFAULT_WINDOW,
    for_time: int | float | datetime | None = None,
) -> bool:
    """True if code matches any step within +/-window of for_time (default: now)."""
    if not is_well_formed_code(code):
        return False
    if for_time is None:
        for_time = time.time()
    try:
        totp = _totp(secret)
        candidates = [totp.at(for_time, counter_offset=offset) for offset in range(-window, window + 1)]
    except (binascii.Error, ValueError, TypeError):
        # Corrupt secret: fail closed.
        logger.error("TOTP secret could not be decoded")
        return False
    matched = False
    for candidate in candidates:
        matched |= hmac.compare_digest(candidate, code)
    return matched
