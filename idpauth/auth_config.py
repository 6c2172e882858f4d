"""
Authentication Configuration
============================
Single source of truth for per-role IdP settings and global defaults.

Configuration arrives as an already-parsed mapping (YAML / JSON loading
lives elsewhere) and is turned into immutable dataclasses here::

    settings = AuthSettings.from_dict(data, env=build_env(".env"))
    role = settings.role("admin")
    creds = resolve_credentials(role, env)

String values may reference the environment with ``${VAR}`` or
``${VAR:-default}``. Resolution is a pure function that reports which
variables were missing instead of collecting them in global state.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from dotenv import dotenv_values

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults — the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "default_timeout_ms": 30_000,
    "artifacts_dir": ".auth-states",
    "session_ttl_minutes": 60,
    "expiry_policy": "fixed",          # "fixed" | "token"
    "file_pattern": "{role}.json",
    "push_timeout_ms": 30_000,
    "probe_timeout_ms": 1_500,         # how long is_mfa_required / has_required_action look
    "max_interstitials": 6,            # MFA + required-action pages before giving up
}

# Recognized generic selector overrides
CUSTOM_SELECTOR_KEYS = ("username", "password", "submit", "error")


class IdpType(str, Enum):
    KEYCLOAK = "keycloak"
    OKTA = "okta"
    GENERIC = "generic"
    AUTO = "auto"


class MfaType(str, Enum):
    NONE = "none"
    TOTP = "totp"
    PUSH = "push"


class RequiredActionPolicy(str, Enum):
    FAIL = "fail"    # any required-action interstitial is terminal
    AUTO = "auto"    # dismiss the interstitials the handler knows how to


# ---------------------------------------------------------------------------
# Environment interpolation
# ---------------------------------------------------------------------------

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


@dataclass(frozen=True)
class EnvResolution:
    """Result of interpolating one string value."""
    value: str
    unresolved: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.unresolved


def resolve_env_vars(value: str, env: Mapping[str, str]) -> EnvResolution:
    """Replace ``${VAR}`` / ``${VAR:-default}`` references in *value*.

    Unset variables without a default are left in place and listed in
    ``unresolved``.
    """
    missing: List[str] = []

    def _sub(match: "re.Match[str]") -> str:
        name, default = match.group(1), match.group(2)
        if name in env and env[name] != "":
            return env[name]
        if default is not None:
            return default
        if name not in missing:
            missing.append(name)
        return match.group(0)

    return EnvResolution(_ENV_REF.sub(_sub, value), missing)


def build_env(dotenv_path: Optional[str] = None) -> Dict[str, str]:
    """Return ``os.environ`` layered over the values of a ``.env`` file.

    Real environment variables win over the file.
    """
    merged: Dict[str, str] = {}
    if dotenv_path and os.path.exists(dotenv_path):
        file_values = dotenv_values(dotenv_path)
        merged.update({k: v for k, v in file_values.items() if v is not None})
        logger.debug(f"[CONFIG] Loaded {len(merged)} values from {dotenv_path}")
    merged.update(os.environ)
    return merged


# ---------------------------------------------------------------------------
# Role-level records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CredentialsRef:
    """Names of the environment variables holding a role's secrets."""
    username_env: str
    password_env: str


@dataclass
class Credentials:
    """Resolved username/password pair for one role."""
    username: str = ""
    password: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)

    def __repr__(self) -> str:
        return "Credentials(username='***', password='***')"


@dataclass(frozen=True)
class MfaConfig:
    type: MfaType = MfaType.NONE
    totp_secret_env: Optional[str] = None
    push_timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class PhaseTimeouts:
    """Per-phase budgets in milliseconds."""
    navigation_ms: int
    credentials_ms: int
    mfa_ms: int
    required_action_ms: int
    callback_ms: int

    @classmethod
    def from_default(cls, default_ms: int, mfa_ms: Optional[int] = None) -> "PhaseTimeouts":
        return cls(
            navigation_ms=default_ms,
            credentials_ms=default_ms,
            mfa_ms=mfa_ms if mfa_ms is not None else default_ms,
            required_action_ms=default_ms,
            callback_ms=default_ms,
        )


@dataclass(frozen=True)
class RoleConfig:
    """One test persona. Immutable once loaded."""
    name: str
    idp_type: IdpType
    login_url: str
    credentials_ref: CredentialsRef
    custom_selectors: Dict[str, str] = field(default_factory=dict)
    mfa: MfaConfig = field(default_factory=MfaConfig)
    mfa_timeout_ms: Optional[int] = None
    required_action_policy: RequiredActionPolicy = RequiredActionPolicy.FAIL
    success_url_contains: str = ""
    success_selector: str = ""
    timeouts: Optional[PhaseTimeouts] = None

    def __hash__(self) -> int:
        return hash(self.name)

    @property
    def effective_mfa_timeout_ms(self) -> int:
        if self.mfa_timeout_ms is not None:
            return self.mfa_timeout_ms
        if self.mfa.push_timeout_ms is not None:
            return self.mfa.push_timeout_ms
        return _DEFAULTS["push_timeout_ms"]


# ---------------------------------------------------------------------------
# Global settings
# ---------------------------------------------------------------------------

@dataclass
class AuthSettings:
    """
    Global authentication settings plus the role table.

    Populate via:
      - ``AuthSettings(roles={...})``        → defaults for everything else
      - ``AuthSettings.from_dict(data)``    → from parsed configuration
    """

    roles: Dict[str, RoleConfig] = field(default_factory=dict)
    browser_channel: Optional[str] = None
    default_timeout_ms: int = _DEFAULTS["default_timeout_ms"]
    artifacts_dir: str = _DEFAULTS["artifacts_dir"]
    session_ttl_minutes: float = _DEFAULTS["session_ttl_minutes"]
    expiry_policy: str = _DEFAULTS["expiry_policy"]
    file_pattern: str = _DEFAULTS["file_pattern"]
    environment: Optional[str] = None
    probe_timeout_ms: int = _DEFAULTS["probe_timeout_ms"]
    max_interstitials: int = _DEFAULTS["max_interstitials"]

    def role(self, name: str) -> RoleConfig:
        """Look up a role, failing with the list of configured roles."""
        try:
            return self.roles[name]
        except KeyError:
            available = ", ".join(sorted(self.roles)) or "(none)"
            raise ConfigurationError(
                f'Role "{name}" is not configured. Available roles: {available}',
                field=f"roles.{name}",
                suggestion=f'Add a "{name}" entry under roles',
            ) from None

    def timeouts_for(self, role: RoleConfig) -> PhaseTimeouts:
        if role.timeouts is not None:
            return role.timeouts
        return PhaseTimeouts.from_default(
            self.default_timeout_ms, role.effective_mfa_timeout_ms
        )

    # -----------------------------------------------------------------------
    # Factory
    # -----------------------------------------------------------------------
    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], env: Optional[Mapping[str, str]] = None
    ) -> "AuthSettings":
        """Build validated settings from a parsed configuration mapping."""
        env = dict(os.environ) if env is None else env
        data = _interpolate(data, env, path="")

        if not isinstance(data, Mapping):
            raise ConfigurationError(
                "Configuration root must be a mapping", field="(root)"
            )

        default_timeout_ms = _positive_int(
            data.get("defaultTimeoutMs", _DEFAULTS["default_timeout_ms"]),
            "defaultTimeoutMs",
        )
        expiry_policy = str(data.get("expiryPolicy", _DEFAULTS["expiry_policy"]))
        if expiry_policy not in ("fixed", "token"):
            raise ConfigurationError(
                f'Unknown expiry policy "{expiry_policy}"',
                field="expiryPolicy",
                suggestion='Use "fixed" or "token"',
            )
        file_pattern = str(data.get("filePattern", _DEFAULTS["file_pattern"]))
        if "{role}" not in file_pattern:
            raise ConfigurationError(
                "File pattern must contain the {role} placeholder",
                field="filePattern",
                suggestion='For example "{role}.json" or "{role}-{env}.json"',
            )

        raw_roles = data.get("roles") or {}
        if not isinstance(raw_roles, Mapping) or not raw_roles:
            raise ConfigurationError(
                "At least one role must be configured",
                field="roles",
                suggestion="Add a roles mapping, e.g. roles: {admin: {...}}",
            )
        roles = {
            str(name): _parse_role(str(name), spec)
            for name, spec in raw_roles.items()
        }

        settings = cls(
            roles=roles,
            browser_channel=data.get("browserChannel") or None,
            default_timeout_ms=default_timeout_ms,
            artifacts_dir=str(data.get("artifactsDir", _DEFAULTS["artifacts_dir"])),
            session_ttl_minutes=_positive_number(
                data.get("sessionTtlMinutes", _DEFAULTS["session_ttl_minutes"]),
                "sessionTtlMinutes",
            ),
            expiry_policy=expiry_policy,
            file_pattern=file_pattern,
            environment=data.get("environment") or None,
            probe_timeout_ms=_positive_int(
                data.get("probeTimeoutMs", _DEFAULTS["probe_timeout_ms"]),
                "probeTimeoutMs",
            ),
            max_interstitials=_positive_int(
                data.get("maxInterstitials", _DEFAULTS["max_interstitials"]),
                "maxInterstitials",
            ),
        )
        logger.info(
            f"[CONFIG] Loaded {len(roles)} role(s): {', '.join(sorted(roles))}"
        )
        return settings


# ---------------------------------------------------------------------------
# Credential resolution
# ---------------------------------------------------------------------------

def resolve_credentials(
    role: RoleConfig, env: Optional[Mapping[str, str]] = None
) -> Credentials:
    """Read a role's username / password from the environment."""
    env = os.environ if env is None else env
    ref = role.credentials_ref

    username = env.get(ref.username_env, "")
    if not username:
        raise ConfigurationError(
            f'Environment variable "{ref.username_env}" for role "{role.name}" username is not set',
            field=f"roles.{role.name}.credentialsRef.username",
            suggestion=f"Set the {ref.username_env} environment variable",
        )
    password = env.get(ref.password_env, "")
    if not password:
        raise ConfigurationError(
            f'Environment variable "{ref.password_env}" for role "{role.name}" password is not set',
            field=f"roles.{role.name}.credentialsRef.password",
            suggestion=f"Set the {ref.password_env} environment variable",
        )
    logger.debug(f"[CONFIG] Credentials resolved for role '{role.name}'")
    return Credentials(username=username, password=password)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _interpolate(value: Any, env: Mapping[str, str], path: str) -> Any:
    if isinstance(value, str):
        result = resolve_env_vars(value, env)
        if not result.ok:
            names = ", ".join(result.unresolved)
            raise ConfigurationError(
                f"Unresolved environment variable(s): {names}",
                field=path or "(root)",
                suggestion=f"Export {names} or add a ${{VAR:-default}} fallback",
            )
        return result.value
    if isinstance(value, Mapping):
        return {
            k: _interpolate(v, env, f"{path}.{k}" if path else str(k))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_interpolate(v, env, f"{path}[{i}]") for i, v in enumerate(value)]
    return value


def _positive_int(value: Any, path: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Expected an integer, got {value!r}", field=path
        ) from None
    if number <= 0:
        raise ConfigurationError(f"Must be positive, got {number}", field=path)
    return number


def _positive_number(value: Any, path: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Expected a number, got {value!r}", field=path
        ) from None
    if number <= 0:
        raise ConfigurationError(f"Must be positive, got {number}", field=path)
    return number


def _enum(enum_cls, value: Any, path: str, default):
    if value is None:
        return default
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ", ".join(f'"{m.value}"' for m in enum_cls)
        raise ConfigurationError(
            f"Invalid value {value!r}", field=path, suggestion=f"Use one of {allowed}"
        ) from None


def _parse_credentials_ref(value: Any, path: str) -> CredentialsRef:
    if isinstance(value, str) and value:
        prefix = value.upper().rstrip("_")
        return CredentialsRef(f"{prefix}_USERNAME", f"{prefix}_PASSWORD")
    if isinstance(value, Mapping):
        username_env = value.get("username")
        password_env = value.get("password")
        if username_env and password_env:
            return CredentialsRef(str(username_env), str(password_env))
    raise ConfigurationError(
        "credentialsRef must name the username and password environment variables",
        field=path,
        suggestion='Use {username: ADMIN_USER, password: ADMIN_PASS} or a prefix like "ADMIN"',
    )


def _parse_mfa(value: Any, path: str) -> MfaConfig:
    if value is None:
        return MfaConfig()
    if not isinstance(value, Mapping):
        raise ConfigurationError("mfa must be a mapping", field=path)
    mfa_type = _enum(MfaType, value.get("type"), f"{path}.type", MfaType.NONE)
    secret_env = value.get("totpSecretEnv")
    if mfa_type is MfaType.TOTP and not secret_env:
        raise ConfigurationError(
            "TOTP MFA requires the name of the secret environment variable",
            field=f"{path}.totpSecretEnv",
            suggestion="Set mfa.totpSecretEnv, e.g. MFA_SECRET_ADMIN",
        )
    push_timeout = value.get("pushTimeoutMs")
    return MfaConfig(
        type=mfa_type,
        totp_secret_env=str(secret_env) if secret_env else None,
        push_timeout_ms=(
            _positive_int(push_timeout, f"{path}.pushTimeoutMs")
            if push_timeout is not None else None
        ),
    )


def _parse_role(name: str, spec: Any) -> RoleConfig:
    base = f"roles.{name}"
    if not isinstance(spec, Mapping):
        raise ConfigurationError("Role entry must be a mapping", field=base)

    idp_type = _enum(IdpType, spec.get("idpType"), f"{base}.idpType", IdpType.AUTO)

    login_url = spec.get("loginUrl")
    if not login_url:
        raise ConfigurationError(
            "Role has no login entry point",
            field=f"{base}.loginUrl",
            suggestion="Set loginUrl to the application URL that starts the SSO flow",
        )

    selectors = spec.get("customSelectors") or {}
    if not isinstance(selectors, Mapping):
        raise ConfigurationError("customSelectors must be a mapping", field=f"{base}.customSelectors")
    unknown = sorted(set(selectors) - set(CUSTOM_SELECTOR_KEYS))
    if unknown:
        raise ConfigurationError(
            f"Unknown selector override(s): {', '.join(unknown)}",
            field=f"{base}.customSelectors",
            suggestion=f"Recognized keys: {', '.join(CUSTOM_SELECTOR_KEYS)}",
        )
    if selectors and idp_type not in (IdpType.GENERIC, IdpType.AUTO):
        logger.warning(
            f"[CONFIG] customSelectors for role '{name}' are ignored by the "
            f"{idp_type.value} handler"
        )

    mfa_timeout = spec.get("mfaTimeoutMs")

    return RoleConfig(
        name=name,
        idp_type=idp_type,
        login_url=str(login_url),
        credentials_ref=_parse_credentials_ref(
            spec.get("credentialsRef"), f"{base}.credentialsRef"
        ),
        custom_selectors={str(k): str(v) for k, v in selectors.items()},
        mfa=_parse_mfa(spec.get("mfa"), f"{base}.mfa"),
        mfa_timeout_ms=(
            _positive_int(mfa_timeout, f"{base}.mfaTimeoutMs")
            if mfa_timeout is not None else None
        ),
        required_action_policy=_enum(
            RequiredActionPolicy,
            spec.get("requiredActionPolicy"),
            f"{base}.requiredActionPolicy",
            RequiredActionPolicy.FAIL,
        ),
        success_url_contains=str(spec.get("successUrlContains") or ""),
        success_selector=str(spec.get("successSelector") or ""),
    )
