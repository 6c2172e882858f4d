"""
Okta profile
============
Covers both the classic Sign-In Widget and Identity Engine pages.

Okta is usually two-step (identifier first, then password), offers a factor
list when several authenticators are enrolled, and shows push challenges on
``/signin/verify`` or ``/mfa/`` URLs until the user approves.
"""

from __future__ import annotations

from ..auth_config import IdpType
from .base_handler import IdpProfile, Interstitial, selector_list

_ERRORS = selector_list(
    '.okta-form-infobox-error',
    '.o-form-error-container',
    '.error-box',
    '[data-se="o-form-error-container"]',
)

_FACTOR_LIST = selector_list(
    '.factor-list',
    '[data-se="factor-list"]',
    '.authenticator-verify-list',
)

OKTA = IdpProfile(
    idp_type=IdpType.OKTA,
    tag="OKTA",
    url_patterns=(".okta.com", ".oktapreview.com", ".okta-emea.com"),
    page_markers=selector_list('#okta-sign-in', '#okta-signin-container', '.okta-sign-in-header'),
    username=selector_list(
        '#okta-signin-username',
        'input[name="identifier"]',
        'input[name="username"]',
    ),
    password=selector_list(
        '#okta-signin-password',
        'input[name="credentials.passcode"]',
        'input[name="password"]',
    ),
    submit=selector_list(
        '#okta-signin-submit',
        'input[type="submit"]',
        'button[type="submit"]',
    ),
    error=_ERRORS,
    totp_input=selector_list('input[name="credentials.passcode"]', 'input[name="answer"]'),
    totp_submit=selector_list('input[type="submit"]', 'button[type="submit"]'),
    mfa_indicators=selector_list(
        '.factor-list',
        '[data-se="factor-list"]',
        '.authenticator-verify-list',
        '.mfa-verify',
        '[data-se="okta_verify-push"]',
        'input[name="answer"]',
    ),
    mfa_url_markers=("/signin/verify", "/mfa/"),
    push_send=selector_list(
        'input[value="Send Push"]',
        'input[value="Send push"]',
        'button:has-text("Send push")',
    ),
    push_rejected=selector_list(
        '[data-se="o-form-error-container"]',
        '.o-form-error-container',
        '.okta-form-infobox-error',
    ),
    factor_list=_FACTOR_LIST,
    push_factor=selector_list(
        '[data-se="okta_verify-push"] .select-factor',
        '[data-se="okta_verify-push"] a',
    ),
    totp_factor=selector_list(
        '[data-se="okta_verify-totp"] .select-factor',
        '[data-se="google_otp"] .select-factor',
        '[data-se="okta_verify-totp"] a',
    ),
    interstitials=(
        Interstitial(
            name="stay-signed-in",
            indicator=selector_list('[data-se="keep-me-signed-in"]', '.keep-me-signed-in'),
            dismiss=selector_list('[data-se="do-not-stay-signed-in-btn"]', '.js-dont-stay-signed-in'),
        ),
        Interstitial(
            name="enroll-authenticator",
            indicator=selector_list('.enroll-choices', '[data-se="authenticator-enroll-list"]'),
            dismiss=selector_list('.js-skip-setup', '[data-se="skip"]'),
        ),
        Interstitial(
            name="password-expired",
            indicator=selector_list('.password-expired', '[data-se="password-expiry-warning"]'),
            dismiss=selector_list('.js-skip', '[data-se="skip"]'),
        ),
    ),
)
