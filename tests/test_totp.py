"""
Tests for totp.py.
"""

import pyotp
import pytest

from idpauth.errors import ConfigurationError
from idpauth.totp import generate_totp_code, seconds_until_next_window, wait_for_fresh_window

SECRET = "JBSWY3DPEHPK3PXP"
AT = 1_700_000_000


class TestGenerateCode:

    def test_matches_reference_implementation(self):
        code = generate_totp_code("MFA_SECRET", {"MFA_SECRET": SECRET}, for_time=AT)
        assert code == pyotp.TOTP(SECRET).at(AT)

    def test_secret_is_normalized(self):
        """Spaces and lowercase, as copied from an enrollment screen, are accepted."""
        code = generate_totp_code("MFA_SECRET", {"MFA_SECRET": "jbsw y3dp ehpk 3pxp"}, for_time=AT)
        assert code == pyotp.TOTP(SECRET).at(AT)

    def test_missing_secret(self):
        with pytest.raises(ConfigurationError) as exc_info:
            generate_totp_code("MFA_SECRET", {})
        assert exc_info.value.field == "mfa.totpSecretEnv"
        assert "MFA_SECRET" in exc_info.value.suggestion

    def test_invalid_secret(self):
        with pytest.raises(ConfigurationError):
            generate_totp_code("MFA_SECRET", {"MFA_SECRET": "not base32!!"})


class TestWindows:

    def test_seconds_until_next_window(self):
        assert seconds_until_next_window(60) == 30
        assert seconds_until_next_window(75) == 15
        assert seconds_until_next_window(89.5) == 0.5

    @pytest.mark.asyncio
    async def test_no_wait_with_zero_threshold(self):
        assert await wait_for_fresh_window(0) is False
