"""
IdP handlers: one handler class, one profile per identity provider.
"""

from .base_handler import IdpHandler, IdpProfile, Interstitial, profile_matches
from .generic import GENERIC
from .handler_factory import (
    create_handler,
    detection_profiles,
    get_profile,
    list_idp_types,
    register_profile,
)
from .keycloak import KEYCLOAK
from .okta import OKTA

__all__ = [
    "IdpHandler",
    "IdpProfile",
    "Interstitial",
    "profile_matches",
    "create_handler",
    "detection_profiles",
    "get_profile",
    "list_idp_types",
    "register_profile",
    "KEYCLOAK",
    "OKTA",
    "GENERIC",
]
