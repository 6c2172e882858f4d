"""
Keycloak profile
================
Selectors and heuristics for Keycloak's login theme (``login.ftl`` and the
required-action templates).
"""

from __future__ import annotations

from ..auth_config import IdpType
from .base_handler import IdpProfile, Interstitial, selector_list

_SUBMIT = selector_list(
    '#kc-login',
    'button[type="submit"]',
    'input[type="submit"]',
)

KEYCLOAK = IdpProfile(
    idp_type=IdpType.KEYCLOAK,
    tag="KEYCLOAK",
    url_patterns=(
        "/auth/realms/",
        "/realms/",
        "/protocol/openid-connect/",
        "keycloak",
    ),
    page_markers=selector_list('#kc-form-login', '#kc-header', '#kc-page-title'),
    username=selector_list('#username', 'input[name="username"]'),
    password=selector_list('#password', 'input[name="password"]'),
    submit=_SUBMIT,
    error=selector_list(
        '.alert-error',
        '.kc-feedback-text',
        '#input-error',
        '.error-message',
    ),
    totp_input=selector_list('#otp', 'input[name="otp"]', 'input[name="totp"]'),
    totp_submit=_SUBMIT,
    mfa_indicators=selector_list(
        '#otp',
        'input[name="otp"]',
        'input[name="totp"]',
        '#kc-otp-login-form',
    ),
    interstitials=(
        Interstitial(
            name="update-password",
            indicator=selector_list('#kc-update-password', '#kc-passwd-update-form'),
        ),
        Interstitial(
            name="update-profile",
            indicator=selector_list('#kc-update-profile', '#kc-update-profile-form'),
            dismiss=_SUBMIT,
        ),
        Interstitial(
            name="verify-email",
            indicator=selector_list('#kc-verify-email', '#kc-verify-email-form'),
        ),
        Interstitial(
            name="terms-and-conditions",
            indicator=selector_list('#kc-terms-text'),
            dismiss=selector_list('#kc-accept', 'input[name="accept"]'),
        ),
        Interstitial(
            name="configure-otp",
            indicator=selector_list('#kc-totp-settings', '#kc-totp-settings-form'),
        ),
        Interstitial(
            name="required-action",
            indicator=selector_list('.required-action'),
        ),
    ),
)
