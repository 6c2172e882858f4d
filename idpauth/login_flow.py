"""
Login Flow
==========
The login state machine for one role::

    START → NAVIGATED → CREDENTIALS_SUBMITTED
          → { MFA_PENDING → MFA_RESOLVED | REQUIRED_ACTION_PENDING → REQUIRED_ACTION_RESOLVED }*
          → SUCCEEDED | FAILED

After credentials the flow keeps asking the handler "MFA?" and then
"required action?" until both answers are no, so IdPs that chain several
interstitials (MFA, then a forced password change, ...) are followed.

A run only succeeds once the IdP's login form is gone: an error banner
that renders late, or a form that simply stays put, fails the
credentials phase instead of producing an unauthenticated session.

Every phase runs under its own timeout. Running out of time fails the
phase exactly like an IdP rejection does; only the remediation text
differs ("timed out" vs "rejected"). Every failure surfaces as exactly one
``AuthenticationError`` carrying role and phase.

Usage::

    flow = LoginFlow(settings, env=build_env(".env"))
    session = await flow.run(settings.role("admin"), driver)
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from .auth_config import (
    AuthSettings,
    IdpType,
    MfaType,
    PhaseTimeouts,
    RoleConfig,
    resolve_credentials,
)
from .detector import detect, looks_like_login_page
from .errors import (
    AuthenticationError,
    ConfigurationError,
    FailurePhase,
    StepRejected,
    StepTimeout,
)
from .handlers import IdpHandler, create_handler
from .page_driver import PageDriver
from .session_store import AuthSession, FixedTtlPolicy, policy_for
from .totp import generate_totp_code, wait_for_fresh_window
from .utils import poll_until

logger = logging.getLogger(__name__)


class LoginPhase(str, Enum):
    START = "start"
    NAVIGATED = "navigated"
    CREDENTIALS_SUBMITTED = "credentials-submitted"
    MFA_PENDING = "mfa-pending"
    MFA_RESOLVED = "mfa-resolved"
    REQUIRED_ACTION_PENDING = "required-action-pending"
    REQUIRED_ACTION_RESOLVED = "required-action-resolved"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Remediation hints per (failure phase, outcome)
_REMEDIATION: Dict[Tuple[FailurePhase, str], str] = {
    (FailurePhase.NAVIGATION, "timeout"): (
        "Navigation timed out after {ms}ms without reaching a recognizable login page. "
        "Check loginUrl, network access to the IdP, and idpType."
    ),
    (FailurePhase.NAVIGATION, "rejected"): (
        "Navigation was rejected. Check loginUrl and that the IdP is reachable."
    ),
    (FailurePhase.CREDENTIALS, "timeout"): (
        "Credential submission timed out after {ms}ms. The login form may use "
        "selectors this IdP profile does not know; set customSelectors or idpType."
    ),
    (FailurePhase.CREDENTIALS, "rejected"): (
        "Credentials were rejected by the IdP. Verify the username/password "
        "environment variables and that the account is not locked."
    ),
    (FailurePhase.MFA, "timeout"): (
        "MFA timed out after {ms}ms. Approve the push notification on the enrolled "
        "device within the window (or raise mfaTimeoutMs) and retry."
    ),
    (FailurePhase.MFA, "rejected"): (
        "MFA was rejected by the IdP. Check the TOTP secret and the machine clock, "
        "or that the push was not denied, then retry."
    ),
    (FailurePhase.REQUIRED_ACTION, "timeout"): (
        "Required action timed out after {ms}ms. Complete the pending action "
        "for this account manually in the IdP and retry."
    ),
    (FailurePhase.REQUIRED_ACTION, "rejected"): (
        "Required action was rejected: the IdP demands an action that cannot be "
        "automated. Complete it manually for this account, or set "
        "requiredActionPolicy to auto for dismissable prompts."
    ),
    (FailurePhase.CALLBACK, "timeout"): (
        "Return to the application timed out after {ms}ms. Check "
        "successUrlContains / successSelector and the IdP redirect URI."
    ),
    (FailurePhase.CALLBACK, "rejected"): (
        "The application rejected the callback. Check the client redirect URI configuration."
    ),
}


def remediation_for(phase: FailurePhase, outcome: str, timeout_ms: int = 0) -> str:
    """Remediation text for a failure; ``outcome`` is timeout/rejected/cancelled/error."""
    if outcome == "cancelled":
        return (
            f"Login was cancelled by the overall deadline during the {phase.value} phase; "
            f"raise the overall timeout or check why the phase is slow."
        )
    key = "timeout" if outcome == "timeout" else "rejected"
    return _REMEDIATION[(phase, key)].format(ms=timeout_ms)


@dataclass
class LoginAttempt:
    """Transient record of one run of the state machine."""
    role: RoleConfig
    handler: Optional[IdpHandler] = None
    phase: LoginPhase = LoginPhase.START
    step: FailurePhase = FailurePhase.NAVIGATION
    started_at: float = field(default_factory=time.monotonic)
    history: List[LoginPhase] = field(default_factory=lambda: [LoginPhase.START])
    notes: List[str] = field(default_factory=list)
    interstitials: int = 0

    def advance(self, phase: LoginPhase) -> None:
        self.phase = phase
        self.history.append(phase)
        logger.info(f"[AUTH] {self.role.name}: {phase.value} ({self.elapsed_ms:.0f}ms)")

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000


class LoginFlow:
    """Runs the login state machine for a role on a given driver.

    ``handler_factory`` and ``detector`` are injectable so tests can script
    the IdP side without a browser.
    """

    def __init__(
        self,
        settings: AuthSettings,
        *,
        env: Optional[Mapping[str, str]] = None,
        handler_factory: Callable[..., IdpHandler] = create_handler,
        detector: Callable[[PageDriver], Awaitable[IdpType]] = detect,
        expiry_policy: Optional[FixedTtlPolicy] = None,
        clock: Callable[[], float] = time.time,
        overall_timeout_s: Optional[float] = None,
        totp_window_threshold_s: float = 5.0,
    ):
        self.settings = settings
        self.env = os.environ if env is None else env
        self.handler_factory = handler_factory
        self.detector = detector
        self.expiry_policy = expiry_policy or policy_for(settings)
        self.clock = clock
        self.overall_timeout_s = overall_timeout_s
        self.totp_window_threshold_s = totp_window_threshold_s

    async def run(self, role: RoleConfig, driver: PageDriver) -> AuthSession:
        """Log ``role`` in and return the resulting session.

        Raises:
            ConfigurationError:  credentials or TOTP secret missing.
            AuthenticationError: any phase failed, timed out or was cancelled.
        """
        credentials = resolve_credentials(role, self.env)
        attempt = LoginAttempt(role=role)
        logger.info(
            f"[AUTH] Starting login for '{role.name}' "
            f"(idpType={role.idp_type.value}, url={role.login_url[:60]})"
        )
        drive = self._drive(attempt, driver, credentials.username, credentials.password)
        if self.overall_timeout_s is None:
            return await drive
        try:
            return await asyncio.wait_for(drive, self.overall_timeout_s)
        except asyncio.TimeoutError:
            if attempt.phase is LoginPhase.FAILED:
                raise
            raise await self._failure(
                attempt,
                f"Login cancelled after {self.overall_timeout_s:.0f}s",
                remediation_for(attempt.step, "cancelled"),
            ) from None

    # ── State machine ─────────────────────────────────────────────

    async def _drive(
        self, attempt: LoginAttempt, driver: PageDriver, username: str, password: str
    ) -> AuthSession:
        role = attempt.role
        timeouts = self.settings.timeouts_for(role)

        await self._step(
            attempt, FailurePhase.NAVIGATION, timeouts.navigation_ms,
            lambda: self._navigate(attempt, driver, timeouts.navigation_ms),
        )
        attempt.advance(LoginPhase.NAVIGATED)
        handler = attempt.handler

        await self._step(
            attempt, FailurePhase.CREDENTIALS, timeouts.credentials_ms,
            lambda: handler.submit_credentials(username, password),
        )
        message = await self._step(
            attempt, FailurePhase.CREDENTIALS, timeouts.credentials_ms,
            handler.await_submit_outcome,
        )
        if message:
            raise await self._failure(
                attempt,
                "IdP rejected the credentials",
                remediation_for(FailurePhase.CREDENTIALS, "rejected"),
                idp_response=message,
            )
        attempt.advance(LoginPhase.CREDENTIALS_SUBMITTED)

        await self._resolve_interstitials(attempt, timeouts)

        if role.success_url_contains or role.success_selector:
            await self._step(
                attempt, FailurePhase.CALLBACK, timeouts.callback_ms,
                lambda: self._verify_callback(attempt, driver, timeouts.callback_ms),
            )
        else:
            await self._step(
                attempt, FailurePhase.CREDENTIALS, timeouts.credentials_ms,
                lambda: self._confirm_left_login_page(handler),
            )

        state = await self._step(
            attempt, FailurePhase.CALLBACK, timeouts.callback_ms,
            driver.snapshot_storage_state,
        )
        session = self.expiry_policy.new_session(role.name, state, self.clock())
        attempt.advance(LoginPhase.SUCCEEDED)
        logger.info(
            f"[AUTH] Login succeeded for '{role.name}' via {handler.idp_type.value} "
            f"in {attempt.elapsed_ms:.0f}ms"
        )
        return session

    async def _resolve_interstitials(self, attempt: LoginAttempt, timeouts: PhaseTimeouts) -> None:
        handler = attempt.handler
        role = attempt.role
        while True:
            if await self._step(attempt, FailurePhase.MFA, timeouts.mfa_ms, handler.is_mfa_required):
                await self._count_interstitial(attempt, FailurePhase.MFA)
                attempt.advance(LoginPhase.MFA_PENDING)
                # Outside the phase budget: the window wait can take seconds
                code = await self._one_time_code(attempt.role)
                await self._step(
                    attempt, FailurePhase.MFA, timeouts.mfa_ms,
                    lambda: self._complete_mfa(attempt, code, timeouts.mfa_ms),
                )
                attempt.advance(LoginPhase.MFA_RESOLVED)
                continue

            if await self._step(
                attempt, FailurePhase.REQUIRED_ACTION, timeouts.required_action_ms,
                handler.has_required_action,
            ):
                await self._count_interstitial(attempt, FailurePhase.REQUIRED_ACTION)
                attempt.advance(LoginPhase.REQUIRED_ACTION_PENDING)
                await self._step(
                    attempt, FailurePhase.REQUIRED_ACTION, timeouts.required_action_ms,
                    lambda: handler.handle_required_action(role.required_action_policy),
                )
                attempt.advance(LoginPhase.REQUIRED_ACTION_RESOLVED)
                continue

            return

    async def _count_interstitial(self, attempt: LoginAttempt, step: FailurePhase) -> None:
        attempt.interstitials += 1
        limit = self.settings.max_interstitials
        if attempt.interstitials > limit:
            attempt.step = step
            raise await self._failure(
                attempt,
                f"IdP kept presenting interstitial pages ({limit} handled)",
                remediation_for(step, "rejected"),
            )

    # ── Phase bodies ──────────────────────────────────────────────

    async def _navigate(self, attempt: LoginAttempt, driver: PageDriver, timeout_ms: int) -> None:
        role = attempt.role
        await driver.goto(role.login_url, timeout_ms)

        idp_type = role.idp_type
        if idp_type is IdpType.AUTO:
            # Redirect chains: wait for some login page before classifying it once.
            await poll_until(
                lambda: looks_like_login_page(driver, role.custom_selectors),
                timeout_ms / 1000,
            )
            idp_type = await self.detector(driver)
            attempt.notes.append(f"detected {idp_type.value}")

        attempt.handler = self.handler_factory(
            idp_type,
            driver,
            custom_selectors=role.custom_selectors,
            probe_timeout_ms=self.settings.probe_timeout_ms,
            step_timeout_ms=self.settings.default_timeout_ms,
        )
        if not await poll_until(attempt.handler.matches_current_page, timeout_ms / 1000):
            raise StepTimeout(
                f"{idp_type.value} login page not recognized at {driver.current_url()[:80]}"
            )

    async def _one_time_code(self, role: RoleConfig) -> Optional[str]:
        """TOTP code for the role, taken from a window with time left in it."""
        if role.mfa.type is not MfaType.TOTP:
            return None
        await wait_for_fresh_window(self.totp_window_threshold_s)
        return generate_totp_code(role.mfa.totp_secret_env, self.env)

    async def _complete_mfa(
        self, attempt: LoginAttempt, code: Optional[str], timeout_ms: int
    ) -> None:
        mfa = attempt.role.mfa
        handler = attempt.handler
        if mfa.type is MfaType.TOTP:
            await handler.complete_mfa(code, timeout_s=timeout_ms / 1000)
        elif mfa.type is MfaType.PUSH:
            await handler.complete_mfa(None, timeout_s=timeout_ms / 1000)
        else:
            raise StepRejected(
                "IdP requested MFA but the role has no MFA configured",
                idp_response=await handler.get_error_message(),
            )

    async def _confirm_left_login_page(self, handler: IdpHandler) -> None:
        """Fail when the IdP's login form is still showing at the end of the flow."""
        async def _gone() -> bool:
            return not await handler.login_form_visible()

        if not await poll_until(_gone, self.settings.probe_timeout_ms / 1000):
            raise StepRejected(
                "Still on the IdP login page after submitting credentials",
                idp_response=await handler.get_error_message(),
            )

    async def _verify_callback(self, attempt: LoginAttempt, driver: PageDriver, timeout_ms: int) -> None:
        role = attempt.role

        async def _arrived() -> bool:
            if role.success_url_contains and role.success_url_contains not in driver.current_url():
                return False
            if role.success_selector and not await driver.is_visible(role.success_selector):
                return False
            return True

        if not await poll_until(_arrived, timeout_ms / 1000):
            raise StepTimeout(f"Application not reached; still at {driver.current_url()[:80]}")

    # ── Failure handling ──────────────────────────────────────────

    async def _step(
        self,
        attempt: LoginAttempt,
        step: FailurePhase,
        timeout_ms: int,
        action: Callable[[], Awaitable],
    ):
        """Run one phase action under its timeout, converting failures."""
        attempt.step = step
        try:
            return await asyncio.wait_for(action(), timeout_ms / 1000)
        except (ConfigurationError, AuthenticationError):
            raise
        except (asyncio.TimeoutError, StepTimeout) as exc:
            detail = str(exc) or f"no progress within {timeout_ms}ms"
            raise await self._failure(
                attempt,
                f"{step.value.capitalize()} phase timed out: {detail}",
                remediation_for(step, "timeout", timeout_ms),
            ) from exc
        except StepRejected as exc:
            raise await self._failure(
                attempt,
                f"{step.value.capitalize()} phase rejected: {exc}",
                remediation_for(step, "rejected"),
                idp_response=exc.idp_response,
            ) from exc
        except Exception as exc:
            raise await self._failure(
                attempt,
                f"{step.value.capitalize()} phase failed: {type(exc).__name__}: {exc}",
                remediation_for(step, "error", timeout_ms),
            ) from exc

    async def _failure(
        self,
        attempt: LoginAttempt,
        message: str,
        remediation: str,
        idp_response: Optional[str] = None,
    ) -> AuthenticationError:
        if idp_response is None and attempt.handler is not None:
            idp_response = await self._read_idp_error(attempt.handler)
        attempt.advance(LoginPhase.FAILED)
        err = AuthenticationError(
            message,
            role=attempt.role.name,
            phase=attempt.step,
            idp_response=idp_response,
            remediation=remediation,
        )
        logger.error(f"[AUTH] Login failed\n{err}")
        return err

    async def _read_idp_error(self, handler: IdpHandler) -> Optional[str]:
        try:
            return await asyncio.wait_for(
                handler.get_error_message(), self.settings.probe_timeout_ms / 1000
            )
        except Exception as exc:
            logger.debug(f"[AUTH] Could not read IdP error text: {exc}")
            return None
