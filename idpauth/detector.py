"""
IdP Detector
============
Classifies the current page as Keycloak, Okta or generic.

Only used for roles configured with ``idpType: auto``, once, right after
navigation. Detection reads the URL and element visibility; it never
types into or clicks anything.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

from .auth_config import IdpType
from .handlers import IdpProfile, detection_profiles, get_profile, profile_matches
from .page_driver import PageDriver

logger = logging.getLogger(__name__)


async def detect(
    driver: PageDriver, profiles: Optional[Sequence[IdpProfile]] = None
) -> IdpType:
    """Return the first profile whose heuristics match, else ``GENERIC``."""
    candidates = list(profiles) if profiles is not None else detection_profiles()
    for profile in candidates:
        if await profile_matches(profile, driver):
            logger.info(
                f"[IDP-DETECT] Detected {profile.idp_type.value} "
                f"(from URL: {driver.current_url()[:60]})"
            )
            return profile.idp_type
    logger.info(f"[IDP-DETECT] No known IdP matched — using generic ({driver.current_url()[:60]})")
    return IdpType.GENERIC


async def looks_like_login_page(
    driver: PageDriver, custom_selectors: Optional[Mapping[str, str]] = None
) -> bool:
    """True once any known IdP, or a generic login form, is showing."""
    for profile in detection_profiles():
        if await profile_matches(profile, driver):
            return True
    generic = get_profile(IdpType.GENERIC).with_overrides(custom_selectors)
    return await profile_matches(generic, driver)
