"""
Generic profile
===============
Common login-form patterns that work with many IdPs. Undocumented IdPs are
supported by overriding ``username``, ``password``, ``submit`` and
``error`` through a role's ``customSelectors``.
"""

from __future__ import annotations

from ..auth_config import IdpType
from .base_handler import IdpProfile, selector_list

_TOTP_INPUT = selector_list(
    'input[name*="otp"]',
    'input[name*="totp"]',
    'input[name*="code"]',
    'input[name*="token"]',
    'input[type="tel"][maxlength="6"]',
    'input[autocomplete="one-time-code"]',
)

GENERIC = IdpProfile(
    idp_type=IdpType.GENERIC,
    tag="GENERIC",
    username=selector_list(
        'input[type="email"]',
        'input[name="username"]',
        'input[name="email"]',
        'input[id*="username"]',
        'input[id*="email"]',
        'input[autocomplete="username"]',
    ),
    password=selector_list(
        'input[type="password"]',
        'input[name="password"]',
        'input[id*="password"]',
        'input[autocomplete="current-password"]',
    ),
    submit=selector_list(
        'button[type="submit"]',
        'input[type="submit"]',
        'button:has-text("Sign in")',
        'button:has-text("Log in")',
        'button:has-text("Login")',
        'button:has-text("Submit")',
    ),
    error=selector_list(
        '.error',
        '.error-message',
        '.alert-danger',
        '.alert-error',
        '[role="alert"]',
        '.form-error',
        '.login-error',
    ),
    totp_input=_TOTP_INPUT,
    totp_submit=selector_list(
        'button[type="submit"]',
        'input[type="submit"]',
        'button:has-text("Verify")',
        'button:has-text("Submit")',
    ),
    mfa_indicators=_TOTP_INPUT,
)
