"""
Error Taxonomy
==============
Structured errors raised by the authentication engine.

Three kinds, one shape:
    - ``ConfigurationError``  — bad or missing configuration (never retried)
    - ``AuthenticationError`` — login flow failure, scoped to a phase
    - ``StorageStateError``   — cache persistence failure

Each error carries a ``kind`` discriminator plus ordered context fields.
Rendering is done by ``format_error()`` over that data, so every kind
prints the same way::

    AuthenticationError: Push MFA not approved (role: viewer)
      Phase: mfa
      Remediation: MFA timed out after 2000ms ...
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ErrorKind(str, Enum):
    CONFIGURATION = "ConfigurationError"
    AUTHENTICATION = "AuthenticationError"
    STORAGE_STATE = "StorageStateError"


class FailurePhase(str, Enum):
    """Login phase an ``AuthenticationError`` is attributed to."""
    NAVIGATION = "navigation"
    CREDENTIALS = "credentials"
    MFA = "mfa"
    REQUIRED_ACTION = "required-action"
    CALLBACK = "callback"


# Display labels for context fields, in rendering order per kind.
# The first entry is the primary field shown on the header line; the
# trailing hint field (suggestion / remediation) is always rendered last.
_LAYOUT: Dict[ErrorKind, Tuple[Tuple[str, str], ...]] = {
    ErrorKind.CONFIGURATION: (
        ("field", "field"),
        ("suggestion", "Suggestion"),
    ),
    ErrorKind.AUTHENTICATION: (
        ("role", "role"),
        ("phase", "Phase"),
        ("idp_response", "IdP Response"),
        ("remediation", "Remediation"),
    ),
    ErrorKind.STORAGE_STATE: (
        ("role", "role"),
        ("path", "Path"),
        ("cause", "Cause"),
    ),
}

_HINT_FIELDS = ("suggestion", "remediation")


class IdpAuthError(Exception):
    """Base for all structured errors.

    Subclasses only decide which context fields exist; they never
    override rendering.
    """

    kind: ErrorKind

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def __getattr__(self, name: str) -> Any:
        # Context fields read like attributes (err.role, err.phase, ...)
        context = self.__dict__.get("context")
        if context is not None and name in context:
            return context[name]
        raise AttributeError(name)

    def __str__(self) -> str:
        return format_error(self)

    def to_dict(self) -> Dict[str, Any]:
        """Machine-readable form (JSON-safe)."""
        data: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        for key, value in self.context.items():
            data[key] = value.value if isinstance(value, Enum) else value
        return data


class ConfigurationError(IdpAuthError):
    kind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, field: str, suggestion: Optional[str] = None):
        super().__init__(message, field=field, suggestion=suggestion)


class AuthenticationError(IdpAuthError):
    kind = ErrorKind.AUTHENTICATION

    def __init__(
        self,
        message: str,
        role: str,
        phase: FailurePhase,
        idp_response: Optional[str] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(
            message,
            role=role,
            phase=FailurePhase(phase),
            idp_response=idp_response,
            remediation=remediation,
        )


class StorageStateError(IdpAuthError):
    kind = ErrorKind.STORAGE_STATE

    def __init__(self, message: str, role: str, path: str, cause: str):
        super().__init__(message, role=role, path=str(path), cause=cause)


def _display(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value).strip()


def format_error(err: IdpAuthError) -> str:
    """Render an error as the fixed multi-line human format.

    Line 1: ``<Kind>: <message> (<primary>: <value>)``; then one indented
    line per remaining non-empty field in declaration order; the
    suggestion / remediation line, if any, comes last.
    """
    layout = _LAYOUT[err.kind]
    primary_key, primary_label = layout[0]
    lines: List[str] = [
        f"{err.kind.value}: {err.message} "
        f"({primary_label}: {_display(err.context.get(primary_key))})"
    ]
    hint: Optional[str] = None
    for key, label in layout[1:]:
        value = err.context.get(key)
        if value is None or _display(value) == "":
            continue
        if key in _HINT_FIELDS:
            hint = f"  {label}: {_display(value)}"
            continue
        lines.append(f"  {label}: {_display(value)}")
    if hint:
        lines.append(hint)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Step signals (raised by handlers, converted by the login flow)
# ---------------------------------------------------------------------------

class StepTimeout(Exception):
    """A bounded wait inside a handler step ran out of time."""


class StepRejected(Exception):
    """The IdP explicitly refused a step (bad OTP, denied push, blocking page)."""

    def __init__(self, message: str, idp_response: Optional[str] = None):
        super().__init__(message)
        self.idp_response = idp_response
