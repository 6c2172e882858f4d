"""
IdP Authentication Package
Automated SSO login (Keycloak, Okta, generic IdPs) for browser test suites,
with a per-role cache of authenticated Playwright storage state.

Usage:
    settings = AuthSettings.from_dict(config, env=build_env(".env"))
    manager = SessionManager(settings, PlaywrightDriver.factory(browser))
    context = await manager.new_context(browser, "admin")
"""

import logging

from .auth_config import (
    AuthSettings,
    Credentials,
    CredentialsRef,
    EnvResolution,
    IdpType,
    MfaConfig,
    MfaType,
    PhaseTimeouts,
    RequiredActionPolicy,
    RoleConfig,
    build_env,
    resolve_credentials,
    resolve_env_vars,
)
from .browser_channel import BrowserChannelResult, validate_browser_channel
from .detector import detect
from .errors import (
    AuthenticationError,
    ConfigurationError,
    ErrorKind,
    FailurePhase,
    IdpAuthError,
    StorageStateError,
    format_error,
)
from .handlers import IdpHandler, IdpProfile, create_handler, list_idp_types, register_profile
from .login_flow import LoginAttempt, LoginFlow, LoginPhase
from .page_driver import PageDriver, PlaywrightDriver
from .session_manager import SessionManager
from .session_store import AuthSession, FixedTtlPolicy, SessionStore, TokenLifetimePolicy
from .totp import generate_totp_code


def configure_logging(level: int = logging.INFO) -> None:
    """Basic stream logging for callers with no logging setup of their own."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )


__all__ = [
    # Configuration
    'AuthSettings',
    'RoleConfig',
    'CredentialsRef',
    'Credentials',
    'MfaConfig',
    'MfaType',
    'IdpType',
    'PhaseTimeouts',
    'RequiredActionPolicy',
    'EnvResolution',
    'build_env',
    'resolve_env_vars',
    'resolve_credentials',
    # Errors
    'IdpAuthError',
    'ConfigurationError',
    'AuthenticationError',
    'StorageStateError',
    'ErrorKind',
    'FailurePhase',
    'format_error',
    # Handlers
    'IdpHandler',
    'IdpProfile',
    'create_handler',
    'register_profile',
    'list_idp_types',
    'detect',
    # Login + cache
    'LoginFlow',
    'LoginAttempt',
    'LoginPhase',
    'AuthSession',
    'SessionStore',
    'FixedTtlPolicy',
    'TokenLifetimePolicy',
    'SessionManager',
    'generate_totp_code',
    # Browser
    'PageDriver',
    'PlaywrightDriver',
    'BrowserChannelResult',
    'validate_browser_channel',
    'configure_logging',
]

__version__ = '1.0.0'
