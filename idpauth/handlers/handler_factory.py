"""
Handler Factory
===============
Maps an ``IdpType`` to its profile and builds handlers.

The factory is the ONLY place the login flow gets handlers from. The flow
never imports a specific IdP profile directly.

Usage::

    from idpauth.handlers import create_handler

    handler = create_handler(IdpType.OKTA, driver)
    handler = create_handler(IdpType.GENERIC, driver,
                             custom_selectors={"username": "#login"})
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional

from ..auth_config import IdpType
from ..page_driver import PageDriver
from .base_handler import IdpHandler, IdpProfile

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Profile Registry
# ---------------------------------------------------------------------------

# Insertion order is detection order.
_PROFILE_REGISTRY: Dict[IdpType, IdpProfile] = {}


def register_profile(profile: IdpProfile) -> None:
    """Register (or replace) the profile for an IdP type."""
    if profile.idp_type is IdpType.AUTO:
        raise ValueError("'auto' is resolved by detection and cannot have a profile")
    _PROFILE_REGISTRY[profile.idp_type] = profile
    logger.debug(f"[HANDLER-FACTORY] Registered profile: {profile.idp_type.value}")


def get_profile(idp_type: IdpType) -> IdpProfile:
    try:
        return _PROFILE_REGISTRY[IdpType(idp_type)]
    except KeyError:
        raise ValueError(
            f"No handler registered for IdP type '{IdpType(idp_type).value}'"
        ) from None


def list_idp_types() -> List[str]:
    """Return the names of all registered IdP types."""
    return [idp_type.value for idp_type in _PROFILE_REGISTRY]


def detection_profiles() -> List[IdpProfile]:
    """Profiles the detector checks, in order. Generic is the fallback."""
    return [
        profile for idp_type, profile in _PROFILE_REGISTRY.items()
        if idp_type is not IdpType.GENERIC
    ]


def create_handler(
    idp_type: IdpType,
    driver: PageDriver,
    *,
    custom_selectors: Optional[Mapping[str, str]] = None,
    probe_timeout_ms: int = 1_500,
    step_timeout_ms: int = 10_000,
) -> IdpHandler:
    """Build a handler for ``idp_type`` bound to ``driver``.

    ``custom_selectors`` only apply to the generic profile.
    """
    profile = get_profile(idp_type)
    if profile.idp_type is IdpType.GENERIC:
        profile = profile.with_overrides(custom_selectors)
    handler = IdpHandler(
        profile,
        driver,
        probe_timeout_ms=probe_timeout_ms,
        step_timeout_ms=step_timeout_ms,
    )
    logger.debug(f"[HANDLER-FACTORY] Created {handler!r}")
    return handler


# ---------------------------------------------------------------------------
# Built-in profiles
# ---------------------------------------------------------------------------

def _auto_register() -> None:
    from .generic import GENERIC
    from .keycloak import KEYCLOAK
    from .okta import OKTA

    for profile in (KEYCLOAK, OKTA, GENERIC):
        register_profile(profile)


_auto_register()
