"""
tests/test_totp.py -- Unit tests for the TOTP engine (auth/totp.py).

Covers:
  - Secret generation (base32, 160 bits)
  - otpauth provisioning URI carries the realm issuer label
  - QR rendering returns a PNG data URI
  - validate() accepts codes within +/-2 steps (+/-60s) and rejects outside
  - Malformed codes and corrupt secrets fail closed
"""

from __future__ import annotations

import base64

import pytest

from auth.realms import ADMIN, SUPERVISOR
from auth.totp import code_at, generate_secret, is_well_formed_code, provisioning_uri, render_png_data_uri, validate

# A fixed secret and a time exactly on a 30-second step boundary make every
# window assertion below deterministic.
_SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
_T = 1_700_000_010  # 56666667 * 30


class TestSecrets:
    def test_generated_secret_is_base32_and_160_bits(self) -> None:
        secret = generate_secret()
        assert len(secret) == 32
        assert len(base64.b32decode(secret)) == 20

    def test_generated_secrets_differ(self) -> None:
        assert generate_secret() != generate_secret()

    def test_provisioning_uri_uses_realm_issuer(self) -> None:
        uri = provisioning_uri(_SECRET, ADMIN.issuer_label("Deal Room"), "ops@example.com")
        assert uri.startswith("otpauth://totp/")
        assert f"secret={_SECRET}" in uri
        assert "issuer=Deal%20Room%20-%20Platform%20Admin" in uri

    def test_supervisor_issuer_label(self) -> None:
        assert SUPERVISOR.issuer_label("Deal Room") == "Deal Room - Supervisor"

    def test_qr_code_is_png_data_uri(self) -> None:
        data_uri = render_png_data_uri(provisioning_uri(_SECRET, "Deal Room", "a@x.com"))
        assert data_uri.startswith("data:image/png;base64,")
        png = base64.b64decode(data_uri.split(",", 1)[1])
        assert png[:8] == b"\x89PNG\r\n\x1a\n"


class TestValidateWindow:
    @pytest.mark.parametrize("drift", [-60, -30, 0, 29, 30, 60, 89])
    def test_code_accepted_within_two_steps(self, drift: int) -> None:
        code = code_at(_SECRET, _T)
        assert validate(_SECRET, code, for_time=_T + drift) is True

    @pytest.mark.parametrize("drift", [-61, -90, 90, 120, 3600])
    def test_code_rejected_outside_window(self, drift: int) -> None:
        code = code_at(_SECRET, _T)
        assert validate(_SECRET, code, for_time=_T + drift) is False

    def test_window_zero_only_accepts_current_step(self) -> None:
        code = code_at(_SECRET, _T)
        assert validate(_SECRET, code, window=0, for_time=_T + 29) is True
        assert validate(_SECRET, code, window=0, for_time=_T + 30) is False

    def test_code_for_other_secret_rejected(self) -> None:
        other = "KRSXG5CTMVRXEZLUKRSXG5CTMVRXEZLU"
        assert validate(other, code_at(_SECRET, _T), for_time=_T) is False


class TestMalformedInput:
    @pytest.mark.parametrize(
        "code",
        ["", "12345", "1234567", "12a456", " 123456", "123456 ", "١٢٣٤٥٦", "12 456"],
    )
    def test_malformed_codes_rejected(self, code: str) -> None:
        assert is_well_formed_code(code) is False
        assert validate(_SECRET, code, for_time=_T) is False

    def test_non_string_code_rejected(self) -> None:
        assert is_well_formed_code(123456) is False

    def test_corrupt_secret_fails_closed(self) -> None:
        assert validate("not-base32!!", "123456", for_time=_T) is False
