"""
Session Manager
===============
Test-setup entry point: hand out an authenticated session per role.

    - Cache first: a fresh, intact entry in the ``SessionStore`` is returned as is
    - On a miss, run the login flow, store the result, return it
    - At most one login per role in flight: concurrent callers for the same
      role share the running login and get the same session (or the same
      error); different roles log in in parallel

Usage::

    manager = SessionManager(settings, PlaywrightDriver.factory(browser))
    session = await manager.authenticate("admin")
    context = await manager.new_context(browser, "admin")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from playwright.async_api import Browser, BrowserContext

from .auth_config import AuthSettings, RoleConfig
from .browser_channel import BrowserChannelResult, validate_browser_channel
from .errors import (
    AuthenticationError,
    ConfigurationError,
    FailurePhase,
    StorageStateError,
)
from .login_flow import LoginFlow
from .page_driver import DriverFactory
from .session_store import AuthSession, SessionStore

logger = logging.getLogger(__name__)


class SessionManager:
    """Cache-aware authentication with per-role single-flight logins."""

    def __init__(
        self,
        settings: AuthSettings,
        driver_factory: DriverFactory,
        *,
        store: Optional[SessionStore] = None,
        flow: Optional[LoginFlow] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            settings:       Loaded authentication settings.
            driver_factory: ``async (RoleConfig) -> PageDriver``; one fresh
                            driver per login, closed afterwards.
            store:          Cache to use (default: from settings).
            flow:           Login state machine (default: from settings + env).
            env:            Environment for credentials / TOTP secrets.
        """
        self.settings = settings
        self.driver_factory = driver_factory
        self.store = store or SessionStore.from_settings(settings)
        self.flow = flow or LoginFlow(settings, env=env)
        self._in_flight: Dict[str, "asyncio.Task[AuthSession]"] = {}

    async def authenticate(self, role: str, *, force: bool = False) -> AuthSession:
        """Return a session for ``role``, logging in only when needed.

        Args:
            role:  Configured role name.
            force: Skip the cache and log in again (still single-flight).

        Raises:
            ConfigurationError:  unknown role or missing secrets.
            AuthenticationError: the login failed; nothing was cached.
        """
        role_config = self.settings.role(role)

        if not force:
            cached = self.store.get(role)
            if cached is not None:
                return cached

        task = self._in_flight.get(role)
        if task is None:
            task = asyncio.ensure_future(self._login(role_config))
            self._in_flight[role] = task
            task.add_done_callback(lambda t, name=role: self._login_done(name, t))
        else:
            logger.info(f"[SESSION] Login for '{role}' already in progress — waiting for it")

        # shield: one caller giving up must not cancel the login for the others
        return await asyncio.shield(task)

    def _login_done(self, role: str, task: "asyncio.Task[AuthSession]") -> None:
        self._in_flight.pop(role, None)
        # Retrieve the outcome even when every waiting caller was cancelled
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                logger.debug(f"[SESSION] Login for '{role}' ended with {type(exc).__name__}")

    async def _login(self, role: RoleConfig) -> AuthSession:
        driver = await self._open_driver(role)
        try:
            session = await self.flow.run(role, driver)
        finally:
            try:
                await driver.close()
            except Exception as exc:
                logger.warning(f"[SESSION] Could not close the browser after login for '{role.name}': {exc}")

        try:
            self.store.put(session)
        except StorageStateError as err:
            logger.error(f"[SESSION] Login succeeded but the session was not cached\n{err}")
        return session

    async def _open_driver(self, role: RoleConfig):
        try:
            return await self.driver_factory(role)
        except (ConfigurationError, AuthenticationError):
            raise
        except Exception as exc:
            err = AuthenticationError(
                f"Could not open a browser page for the login: {type(exc).__name__}: {exc}",
                role=role.name,
                phase=FailurePhase.NAVIGATION,
                remediation=(
                    "The browser could not start a new context. Check that the browser "
                    "is still running and installed (see validate_browser_channel)."
                ),
            )
            logger.error(f"[SESSION] Login failed\n{err}")
            raise err from exc

    def invalidate_session(self, role: str) -> bool:
        """Evict a role's cached session so the next call logs in again."""
        return self.store.invalidate(role)

    def validate_browser_channel(self, channel: Optional[str] = None) -> BrowserChannelResult:
        """Pre-flight check for ``channel`` (default: the configured channel)."""
        return validate_browser_channel(
            channel if channel is not None else self.settings.browser_channel
        )

    async def new_context(self, browser: Browser, role: str, **context_kwargs: Any) -> BrowserContext:
        """Open a browser context already signed in as ``role``."""
        session = await self.authenticate(role)
        return await browser.new_context(storage_state=session.storage_state, **context_kwargs)
