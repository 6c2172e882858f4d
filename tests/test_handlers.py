"""
Tests for the IdP handler against scripted login pages.

Each test builds a page with ``FakeDriver`` and scripts what clicking the
IdP's buttons does, then drives the real handler through it.
"""

import asyncio

import pytest

from idpauth.auth_config import IdpType, RequiredActionPolicy
from idpauth.errors import StepRejected, StepTimeout
from idpauth.handlers import (
    GENERIC,
    KEYCLOAK,
    OKTA,
    IdpHandler,
    create_handler,
    list_idp_types,
    register_profile,
)
from idpauth.handlers.base_handler import IdpProfile

from fakes import FakeDriver

KC_URL = "https://sso.example.com/realms/corp/protocol/openid-connect/auth"
OKTA_URL = "https://acme.okta.com/oauth2/default/v1/authorize"


def _handler(profile, driver, probe_ms=50):
    return IdpHandler(
        profile, driver, probe_timeout_ms=probe_ms, step_timeout_ms=200, poll_interval_s=0.01
    )


# ====================================================================
# Credentials
# ====================================================================

class TestSubmitCredentials:

    @pytest.mark.asyncio
    async def test_single_page_form(self):
        """Username and password on one page: fill both, submit once."""
        driver = FakeDriver(url=KC_URL, visible=["#username", "#password", "#kc-login"])
        await _handler(KEYCLOAK, driver).submit_credentials("admin@example.com", "pw")
        assert driver.actions == [
            ("fill", "#username", "admin@example.com"),
            ("fill", "#password", "pw"),
            ("click", "#kc-login", None),
        ]

    @pytest.mark.asyncio
    async def test_two_step_form(self):
        """Password field appears only after the username is submitted."""
        driver = FakeDriver(url=OKTA_URL, visible=['input[name="identifier"]', 'input[type="submit"]'])

        def _identifier_submitted(d):
            d.hide('input[name="identifier"]')
            d.show('input[name="credentials.passcode"]')
            d.on_click.pop('input[type="submit"]')

        driver.on_click['input[type="submit"]'] = _identifier_submitted
        await _handler(OKTA, driver).submit_credentials("viewer@example.com", "pw")
        assert driver.actions == [
            ("fill", 'input[name="identifier"]', "viewer@example.com"),
            ("click", 'input[type="submit"]', None),
            ("fill", 'input[name="credentials.passcode"]', "pw"),
            ("click", 'input[type="submit"]', None),
        ]

    @pytest.mark.asyncio
    async def test_two_step_username_rejected(self):
        driver = FakeDriver(url=OKTA_URL, visible=["#okta-signin-username", "#okta-signin-submit"])
        driver.on_click["#okta-signin-submit"] = lambda d: d.show(
            ".okta-form-infobox-error", text="Unable to sign in"
        )
        with pytest.raises(StepRejected) as exc_info:
            await _handler(OKTA, driver).submit_credentials("nobody@example.com", "pw")
        assert exc_info.value.idp_response == "Unable to sign in"

    @pytest.mark.asyncio
    async def test_submit_outcome_catches_late_banner(self):
        """The banner shows up a moment after the click; the outcome wait still sees it."""
        driver = FakeDriver(url=KC_URL, visible=["#username", "#password", "#kc-login"])
        loop = asyncio.get_running_loop()
        loop.call_later(0.02, lambda: driver.show(".alert-error", text="Invalid username or password."))
        assert await _handler(KEYCLOAK, driver).await_submit_outcome() == "Invalid username or password."

    @pytest.mark.asyncio
    async def test_submit_outcome_when_form_leaves(self):
        driver = FakeDriver(url=KC_URL, visible=["#username", "#password", "#kc-login"])
        handler = _handler(KEYCLOAK, driver)
        assert await handler.login_form_visible()
        driver.hide("#username", "#password", "#kc-login")
        assert not await handler.login_form_visible()
        assert await handler.await_submit_outcome() is None

    @pytest.mark.asyncio
    async def test_two_step_password_never_appears(self):
        driver = FakeDriver(url=OKTA_URL, visible=["#okta-signin-username", "#okta-signin-submit"])
        with pytest.raises(StepTimeout):
            await _handler(OKTA, driver).submit_credentials("viewer@example.com", "pw")

    @pytest.mark.asyncio
    async def test_username_field_missing(self):
        driver = FakeDriver(url=KC_URL, visible=["#kc-login"])
        with pytest.raises(StepTimeout):
            await _handler(KEYCLOAK, driver).submit_credentials("admin@example.com", "pw")

    @pytest.mark.asyncio
    async def test_generic_custom_selectors(self):
        """Generic IdPs take username/password/submit overrides from configuration."""
        driver = FakeDriver(url="https://login.example.com/", visible=["#login-id", "#pin", "#go"])
        handler = create_handler(
            IdpType.GENERIC,
            driver,
            custom_selectors={"username": "#login-id", "password": "#pin", "submit": "#go"},
            probe_timeout_ms=50,
        )
        assert await handler.matches_current_page()
        await handler.submit_credentials("editor@example.com", "pw")
        assert driver.clicks == ["#go"]
        assert driver.fills == {"#login-id": "editor@example.com", "#pin": "pw"}

    def test_custom_selectors_ignored_outside_generic(self):
        handler = create_handler(IdpType.KEYCLOAK, FakeDriver(), custom_selectors={"username": "#x"})
        assert handler.profile.username == KEYCLOAK.username


# ====================================================================
# MFA
# ====================================================================

class TestTotp:

    @pytest.mark.asyncio
    async def test_detected_and_accepted(self):
        driver = FakeDriver(url=KC_URL, visible=["#otp", "#kc-login"])
        driver.on_click["#kc-login"] = lambda d: d.hide("#otp")
        handler = _handler(KEYCLOAK, driver)
        assert await handler.is_mfa_required()
        await handler.complete_mfa("123456")
        assert driver.fills == {"#otp": "123456"}
        assert not await handler.is_mfa_required()

    @pytest.mark.asyncio
    async def test_rejected_code(self):
        """An error under the OTP field is a rejection carrying the IdP's text."""
        driver = FakeDriver(url=KC_URL, visible=["#otp", "#kc-login"])
        driver.on_click["#kc-login"] = lambda d: d.show("#input-error", text="Invalid authenticator code.")
        with pytest.raises(StepRejected) as exc_info:
            await _handler(KEYCLOAK, driver).complete_mfa("000000")
        assert exc_info.value.idp_response == "Invalid authenticator code."

    @pytest.mark.asyncio
    async def test_prompt_persists(self):
        driver = FakeDriver(url=KC_URL, visible=["#otp", "#kc-login"])
        with pytest.raises(StepRejected):
            await _handler(KEYCLOAK, driver).complete_mfa("000000")

    @pytest.mark.asyncio
    async def test_no_mfa_on_plain_page(self):
        driver = FakeDriver(url="https://app.example.com/home")
        assert not await _handler(KEYCLOAK, driver).is_mfa_required()


class TestPush:

    @pytest.mark.asyncio
    async def test_approved(self):
        driver = FakeDriver(
            url="https://acme.okta.com/signin/verify/okta/push", visible=['input[value="Send Push"]']
        )

        def _approved(d):
            d.url = "https://app.example.com/home"
            d.hide('input[value="Send Push"]')

        driver.on_click['input[value="Send Push"]'] = _approved
        handler = _handler(OKTA, driver)
        assert await handler.is_mfa_required()
        await handler.complete_mfa(None, timeout_s=1.0)
        assert driver.clicks == ['input[value="Send Push"]']

    @pytest.mark.asyncio
    async def test_timeout(self):
        """No approval within the window is a timeout, not a rejection."""
        driver = FakeDriver(
            url="https://acme.okta.com/signin/verify/okta/push", visible=['input[value="Send Push"]']
        )
        with pytest.raises(StepTimeout):
            await _handler(OKTA, driver).complete_mfa(None, timeout_s=0.2)
        assert driver.clicks == ['input[value="Send Push"]']

    @pytest.mark.asyncio
    async def test_denied(self):
        driver = FakeDriver(
            url="https://acme.okta.com/signin/verify/okta/push", visible=['input[value="Send Push"]']
        )
        driver.on_click['input[value="Send Push"]'] = lambda d: d.show(
            '[data-se="o-form-error-container"]', text="You have chosen to reject this login."
        )
        with pytest.raises(StepRejected) as exc_info:
            await _handler(OKTA, driver).complete_mfa(None, timeout_s=1.0)
        assert exc_info.value.idp_response == "You have chosen to reject this login."

    @pytest.mark.asyncio
    async def test_cancelled_poll_times_out_early(self):
        driver = FakeDriver(url="https://acme.okta.com/signin/verify/okta/push")
        with pytest.raises(StepTimeout):
            await _handler(OKTA, driver).complete_mfa(None, timeout_s=30.0, cancelled=lambda: True)

    @pytest.mark.asyncio
    async def test_factor_selected_first(self):
        """With several authenticators enrolled, Okta's push factor is picked before sending."""
        push_factor = '[data-se="okta_verify-push"] .select-factor'
        driver = FakeDriver(url="https://acme.okta.com/signin/select-factor", visible=[".factor-list", push_factor])

        def _factor_chosen(d):
            d.hide(".factor-list", push_factor)
            d.url = "https://acme.okta.com/signin/verify/okta/push"
            d.show('input[value="Send Push"]')

        def _approved(d):
            d.url = "https://app.example.com/home"
            d.hide('input[value="Send Push"]')

        driver.on_click[push_factor] = _factor_chosen
        driver.on_click['input[value="Send Push"]'] = _approved
        await _handler(OKTA, driver).complete_mfa(None, timeout_s=1.0)
        assert driver.clicks == [push_factor, 'input[value="Send Push"]']

    @pytest.mark.asyncio
    async def test_factor_not_offered(self):
        driver = FakeDriver(url="https://acme.okta.com/signin/select-factor", visible=[".factor-list"])
        with pytest.raises(StepRejected):
            await _handler(OKTA, driver).complete_mfa(None, timeout_s=1.0)


# ====================================================================
# Required actions
# ====================================================================

class TestRequiredActions:

    @pytest.mark.asyncio
    async def test_dismissable_under_auto(self):
        driver = FakeDriver(url=KC_URL, visible=["#kc-terms-text", "#kc-accept"])
        driver.on_click["#kc-accept"] = lambda d: d.hide("#kc-terms-text", "#kc-accept")
        handler = _handler(KEYCLOAK, driver)
        assert await handler.has_required_action()
        await handler.handle_required_action(RequiredActionPolicy.AUTO)
        assert driver.clicks == ["#kc-accept"]
        assert not await handler.has_required_action()

    @pytest.mark.asyncio
    async def test_fail_policy_refuses(self):
        driver = FakeDriver(url=KC_URL, visible=["#kc-terms-text", "#kc-accept"])
        with pytest.raises(StepRejected) as exc_info:
            await _handler(KEYCLOAK, driver).handle_required_action(RequiredActionPolicy.FAIL)
        assert exc_info.value.idp_response == "terms-and-conditions"
        assert driver.clicks == []

    @pytest.mark.asyncio
    async def test_password_update_is_never_automated(self):
        driver = FakeDriver(url=KC_URL, visible=["#kc-update-password", "#kc-login"])
        with pytest.raises(StepRejected) as exc_info:
            await _handler(KEYCLOAK, driver).handle_required_action(RequiredActionPolicy.AUTO)
        assert "update-password" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_dismissal_that_does_not_stick(self):
        driver = FakeDriver(url=OKTA_URL, visible=['[data-se="keep-me-signed-in"]', '[data-se="do-not-stay-signed-in-btn"]'])
        with pytest.raises(StepRejected):
            await _handler(OKTA, driver).handle_required_action(RequiredActionPolicy.AUTO)

    @pytest.mark.asyncio
    async def test_generic_has_none(self):
        driver = FakeDriver(visible=[".required-action"])
        assert not await _handler(GENERIC, driver).has_required_action()


# ====================================================================
# Page recognition, diagnostics and registry
# ====================================================================

class TestMisc:

    @pytest.mark.asyncio
    async def test_matches_current_page(self):
        assert await _handler(KEYCLOAK, FakeDriver(url=KC_URL)).matches_current_page()
        assert not await _handler(OKTA, FakeDriver(url=KC_URL)).matches_current_page()

    @pytest.mark.asyncio
    async def test_error_message_first_visible(self):
        driver = FakeDriver(
            visible=[".kc-feedback-text", "#input-error"],
            texts={".kc-feedback-text": "  Invalid username\n   or password.  ", "#input-error": "other"},
        )
        assert await _handler(KEYCLOAK, driver).get_error_message() == "Invalid username or password."

    @pytest.mark.asyncio
    async def test_no_error_message(self):
        assert await _handler(KEYCLOAK, FakeDriver()).get_error_message() is None

    def test_builtin_types_registered(self):
        assert list_idp_types()[:3] == ["keycloak", "okta", "generic"]

    def test_auto_cannot_be_registered(self):
        with pytest.raises(ValueError):
            register_profile(IdpProfile(idp_type=IdpType.AUTO, tag="AUTO"))

    def test_create_handler_for_auto_fails(self):
        with pytest.raises(ValueError):
            create_handler(IdpType.AUTO, FakeDriver())
