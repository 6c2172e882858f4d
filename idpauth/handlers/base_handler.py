"""
IdP Handler
===========
Drives one identity provider's login pages through a ``PageDriver``.

There is a single handler class. What differs between Keycloak, Okta and
generic IdPs is data, not behaviour, so each variant is an ``IdpProfile``
record: selector lists, URL heuristics, MFA markers and the interstitial
pages the handler knows how to get past.

Adding an IdP:
    1. Describe it as an ``IdpProfile`` (see ``keycloak.py`` / ``okta.py``)
    2. Call ``register_profile(profile)`` in ``handler_factory.py``
    3. The login flow and detector pick it up with no further changes.

Usage::

    handler = IdpHandler(KEYCLOAK, driver)
    await handler.submit_credentials(creds.username, creds.password)
    if await handler.is_mfa_required():
        await handler.complete_mfa(code, timeout_s=30)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Mapping, Optional, Tuple

from ..auth_config import CUSTOM_SELECTOR_KEYS, IdpType, RequiredActionPolicy
from ..errors import StepRejected, StepTimeout
from ..page_driver import PageDriver
from ..utils import mask_username, poll_until, truncate

logger = logging.getLogger(__name__)


def selector_list(*selectors: str) -> str:
    """Join CSS selectors into one comma-separated selector list."""
    return ", ".join(selectors)


def split_selectors(selector: str) -> List[str]:
    return [part.strip() for part in selector.split(", ") if part.strip()]


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Interstitial:
    """A page the IdP may insert between login and the application.

    ``dismiss`` is the control clicked under the ``auto`` required-action
    policy; interstitials without one always need a human.
    """
    name: str
    indicator: str
    dismiss: str = ""


@dataclass(frozen=True)
class IdpProfile:
    idp_type: IdpType
    tag: str
    url_patterns: Tuple[str, ...] = ()
    page_markers: str = ""
    username: str = ""
    password: str = ""
    submit: str = ""
    error: str = ""
    totp_input: str = ""
    totp_submit: str = ""
    mfa_indicators: str = ""
    mfa_url_markers: Tuple[str, ...] = ()
    push_send: str = ""
    push_rejected: str = ""
    factor_list: str = ""
    push_factor: str = ""
    totp_factor: str = ""
    interstitials: Tuple[Interstitial, ...] = ()

    def with_overrides(self, overrides: Optional[Mapping[str, str]]) -> "IdpProfile":
        """Return a copy with user-supplied username/password/submit/error selectors."""
        known = {
            key: value
            for key, value in (overrides or {}).items()
            if key in CUSTOM_SELECTOR_KEYS and value
        }
        return replace(self, **known) if known else self


async def profile_matches(profile: IdpProfile, driver: PageDriver) -> bool:
    """URL heuristics first, then DOM markers. Reads only."""
    url = driver.current_url().lower()
    if any(pattern in url for pattern in profile.url_patterns):
        return True
    markers = profile.page_markers or profile.username
    return bool(markers) and await driver.is_visible(markers)


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

class IdpHandler:
    """Login capabilities for one IdP, parameterized by its profile.

    Every wait is bounded: ``probe_timeout_ms`` for "is X showing?" checks,
    ``step_timeout_ms`` for fields expected after a page transition, and
    the caller-supplied timeout for push approval.
    """

    def __init__(
        self,
        profile: IdpProfile,
        driver: PageDriver,
        *,
        probe_timeout_ms: int = 1_500,
        step_timeout_ms: int = 10_000,
        poll_interval_s: float = 0.25,
    ):
        self.profile = profile
        self.driver = driver
        self.probe_timeout_ms = probe_timeout_ms
        self.step_timeout_ms = step_timeout_ms
        self.poll_interval_s = poll_interval_s

    @property
    def idp_type(self) -> IdpType:
        return self.profile.idp_type

    @property
    def _tag(self) -> str:
        return f"[{self.profile.tag}]"

    def __repr__(self) -> str:
        return f"IdpHandler({self.profile.idp_type.value})"

    # ── Page recognition ──────────────────────────────────────────

    async def matches_current_page(self) -> bool:
        return await profile_matches(self.profile, self.driver)

    # ── Credentials ───────────────────────────────────────────────

    async def submit_credentials(self, username: str, password: str) -> None:
        """Fill and submit the login form.

        Single-page forms show the password field next to the username;
        two-step forms reveal it only after the username is submitted.
        """
        p = self.profile
        if not await self.driver.wait_for_visible(p.username, self.step_timeout_ms):
            raise StepTimeout(
                f"Username field not visible after {self.step_timeout_ms}ms"
            )
        await self.driver.fill(p.username, username)

        if await self.driver.is_visible(p.password):
            logger.debug(f"{self._tag} Single-page login form")
            await self.driver.fill(p.password, password)
            await self.driver.click(p.submit)
        else:
            logger.debug(f"{self._tag} Two-step login form — submitting username first")
            await self.driver.click(p.submit)
            if not await self.driver.wait_for_visible(p.password, self.step_timeout_ms):
                message = await self.get_error_message()
                if message:
                    raise StepRejected("Username was not accepted", idp_response=message)
                raise StepTimeout(
                    f"Password field did not appear within {self.step_timeout_ms}ms "
                    f"of submitting the username"
                )
            await self.driver.fill(p.password, password)
            await self.driver.click(p.submit)

        logger.info(f"{self._tag} Credentials submitted for {mask_username(username)}")

    async def login_form_visible(self) -> bool:
        """True while a username or password field of this IdP is on screen."""
        p = self.profile
        return await self.driver.is_visible(selector_list(p.username, p.password))

    async def await_submit_outcome(self) -> Optional[str]:
        """Wait for the page to react to the submitted credentials.

        Polls for up to the probe window until either an error banner shows
        or the login form goes away. Late banners are the common case:
        the click returns before the IdP has re-rendered.

        Returns:
            The IdP's error text, or None if no error was shown.
        """
        async def _settled() -> bool:
            if await self.get_error_message() is not None:
                return True
            return not await self.login_form_visible()

        await poll_until(_settled, self.probe_timeout_ms / 1000, self.poll_interval_s)
        return await self.get_error_message()

    # ── MFA ───────────────────────────────────────────────────────

    async def _mfa_visible(self) -> bool:
        p = self.profile
        url = self.driver.current_url().lower()
        if any(marker in url for marker in p.mfa_url_markers):
            return True
        return bool(p.mfa_indicators) and await self.driver.is_visible(p.mfa_indicators)

    async def is_mfa_required(self) -> bool:
        required = await poll_until(
            self._mfa_visible, self.probe_timeout_ms / 1000, self.poll_interval_s
        )
        if required:
            logger.info(f"{self._tag} MFA challenge detected")
        return required

    async def complete_mfa(
        self,
        code: Optional[str] = None,
        *,
        timeout_s: float = 30.0,
        cancelled: Optional[Callable[[], bool]] = None,
    ) -> None:
        """Answer the MFA challenge.

        Args:
            code:      One-time code for TOTP, or None to wait for push approval.
            timeout_s: How long to wait for push approval.
            cancelled: Checked on every poll iteration while waiting.

        Raises:
            StepRejected: the IdP refused the code or the push was denied.
            StepTimeout:  push approval did not arrive in time.
        """
        await self._select_factor(push=code is None)
        if code is not None:
            await self._submit_totp(code)
        else:
            await self._await_push_approval(timeout_s, cancelled)

    async def _select_factor(self, push: bool) -> None:
        p = self.profile
        target = p.push_factor if push else p.totp_factor
        if not (p.factor_list and target):
            return
        if not await self.driver.is_visible(p.factor_list):
            return
        kind = "push" if push else "TOTP"
        if not await self.driver.is_visible(target):
            raise StepRejected(f"The {kind} factor is not offered for this account")
        logger.info(f"{self._tag} Selecting {kind} factor")
        await self.driver.click(target)

    async def _totp_settled(self) -> bool:
        if not await self.driver.is_visible(self.profile.totp_input):
            return True
        return await self.get_error_message() is not None

    async def _submit_totp(self, code: str) -> None:
        p = self.profile
        if not await self.driver.wait_for_visible(p.totp_input, self.step_timeout_ms):
            raise StepTimeout(
                f"One-time code field not visible after {self.step_timeout_ms}ms"
            )
        await self.driver.fill(p.totp_input, code)
        await self.driver.click(p.totp_submit or p.submit)
        logger.debug(f"{self._tag} One-time code submitted")

        await poll_until(self._totp_settled, self.probe_timeout_ms / 1000, self.poll_interval_s)
        message = await self.get_error_message()
        if message or await self.driver.is_visible(p.totp_input):
            raise StepRejected("One-time code was not accepted", idp_response=message)

    async def _await_push_approval(
        self, timeout_s: float, cancelled: Optional[Callable[[], bool]]
    ) -> None:
        p = self.profile
        if p.push_send and await self.driver.is_visible(p.push_send):
            await self.driver.click(p.push_send)
            logger.info(f"{self._tag} Push notification sent — waiting up to {timeout_s:.0f}s")

        denied = False

        async def _resolved() -> bool:
            nonlocal denied
            if p.push_rejected and await self.driver.is_visible(p.push_rejected):
                denied = True
                return True
            return not await self._mfa_visible()

        finished = await poll_until(_resolved, timeout_s, self.poll_interval_s, cancelled)
        if denied:
            raise StepRejected(
                "Push notification was denied",
                idp_response=await self.get_error_message(),
            )
        if not finished:
            raise StepTimeout(f"Push approval not received within {timeout_s * 1000:.0f}ms")
        logger.info(f"{self._tag} Push approved")

    # ── Required actions ──────────────────────────────────────────

    async def _active_interstitial(self) -> Optional[Interstitial]:
        for page in self.profile.interstitials:
            if await self.driver.is_visible(page.indicator):
                return page
        return None

    async def has_required_action(self) -> bool:
        if not self.profile.interstitials:
            return False

        async def _showing() -> bool:
            return await self._active_interstitial() is not None

        return await poll_until(_showing, self.probe_timeout_ms / 1000, self.poll_interval_s)

    async def handle_required_action(
        self, policy: RequiredActionPolicy = RequiredActionPolicy.FAIL
    ) -> None:
        """Get past the current interstitial or refuse with ``StepRejected``."""
        page = await self._active_interstitial()
        if page is None:
            logger.debug(f"{self._tag} No required action showing")
            return

        if policy is not RequiredActionPolicy.AUTO:
            raise StepRejected(
                f'Required action "{page.name}" blocks login (requiredActionPolicy is "fail")',
                idp_response=page.name,
            )
        if not page.dismiss or not await self.driver.is_visible(page.dismiss):
            raise StepRejected(
                f'Required action "{page.name}" cannot be completed automatically',
                idp_response=page.name,
            )

        logger.info(f"{self._tag} Dismissing required action: {page.name}")
        await self.driver.click(page.dismiss)

        async def _gone() -> bool:
            return not await self.driver.is_visible(page.indicator)

        if not await poll_until(_gone, self.step_timeout_ms / 1000, self.poll_interval_s):
            raise StepRejected(
                f'Required action "{page.name}" is still showing after dismissal',
                idp_response=await self.get_error_message() or page.name,
            )

    # ── Diagnostics ───────────────────────────────────────────────

    async def get_error_message(self) -> Optional[str]:
        """Return the first visible IdP error text, if any."""
        for selector in split_selectors(self.profile.error):
            text = truncate(await self.driver.read_text(selector))
            if text:
                return text
        return None
