"""
TOTP Codes
==========
Time-based one-time codes for MFA, generated from a base32 secret kept in
an environment variable (never in configuration files).
"""

from __future__ import annotations

import asyncio
import binascii
import logging
import os
import time
from typing import Mapping, Optional

import pyotp

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_STEP_S = 30


def _clean_secret(secret: str) -> str:
    return secret.replace(" ", "").replace("-", "").upper()


def generate_totp_code(
    secret_env: str,
    env: Optional[Mapping[str, str]] = None,
    *,
    for_time: Optional[float] = None,
) -> str:
    """Generate the current 6-digit code for the secret in ``secret_env``.

    Raises:
        ConfigurationError: the variable is unset or not valid base32.
    """
    env = os.environ if env is None else env
    secret = env.get(secret_env, "")
    if not secret:
        raise ConfigurationError(
            f'TOTP secret environment variable "{secret_env}" is not set',
            field="mfa.totpSecretEnv",
            suggestion=f"Set the {secret_env} environment variable with the base32 TOTP secret",
        )
    totp = pyotp.TOTP(_clean_secret(secret), interval=_STEP_S)
    try:
        code = totp.at(for_time) if for_time is not None else totp.now()
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(
            f"TOTP secret in {secret_env} is not valid base32: {exc}",
            field="mfa.totpSecretEnv",
            suggestion=f"Verify that {secret_env} holds the base32 secret shown at enrollment",
        ) from exc
    logger.debug(f"[TOTP] Generated code from {secret_env} ({len(code)} digits)")
    return code


def seconds_until_next_window(now: Optional[float] = None) -> float:
    now = time.time() if now is None else now
    return _STEP_S - (now % _STEP_S)


async def wait_for_fresh_window(threshold_s: float = 5.0) -> bool:
    """Sleep into the next TOTP window if the current one is about to roll.

    Returns:
        True if we waited.
    """
    remaining = seconds_until_next_window()
    if remaining >= threshold_s:
        return False
    logger.debug(f"[TOTP] {remaining:.1f}s left in window — waiting for the next one")
    await asyncio.sleep(remaining + 0.5)
    return True
