"""
Session Store
=============
Per-role cache of authenticated browser storage state on disk.

Responsibilities:
    1. Persist a role's ``storage_state`` (cookies + localStorage) after login
    2. Hand it back while it is fresh, treat expired entries as a miss
    3. Refuse entries that fail their integrity hash (logged, then a miss)
    4. Explicit eviction when a consumer sees the session stop working

One JSON file per role under ``artifacts_dir``. Writes go to a temp file in
the same directory and are moved into place with ``os.replace``, so a
reader sees either the old entry or the new one, never half of either.

Usage::

    store = SessionStore.from_settings(settings)
    session = store.get("admin")
    if session is None:
        session = await flow.run(role, driver)
        store.put(session)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .auth_config import AuthSettings
from .errors import StorageStateError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings
# ---------------------------------------------------------------------------

_ENTRY_VERSION = 1
_CLEANUP_MAX_AGE_S = 24 * 3600
_TOKEN_EXPIRY_SKEW_S = 60
_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass(frozen=True)
class AuthSession:
    """An authenticated storage-state snapshot for one role."""
    role: str
    storage_state: Dict[str, Any]
    created_at: float
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at

    @property
    def cookie_count(self) -> int:
        return len(self.storage_state.get("cookies") or [])


# ---------------------------------------------------------------------------
# Expiry policies
# ---------------------------------------------------------------------------

class FixedTtlPolicy:
    """Sessions live for a fixed time after login."""

    def __init__(self, ttl_s: float):
        self.ttl_s = ttl_s

    def expires_at(self, storage_state: Dict[str, Any], created_at: float) -> float:
        return created_at + self.ttl_s

    def new_session(self, role: str, storage_state: Dict[str, Any], created_at: float) -> AuthSession:
        return AuthSession(
            role=role,
            storage_state=storage_state,
            created_at=created_at,
            expires_at=self.expires_at(storage_state, created_at),
        )


class TokenLifetimePolicy(FixedTtlPolicy):
    """Sessions expire with their earliest persistent cookie.

    Session cookies (``expires`` of -1) don't count. The result is capped
    by ``fallback_ttl_s`` and pulled forward by ``skew_s``.
    """

    def __init__(self, fallback_ttl_s: float, skew_s: float = _TOKEN_EXPIRY_SKEW_S):
        super().__init__(fallback_ttl_s)
        self.skew_s = skew_s

    def expires_at(self, storage_state: Dict[str, Any], created_at: float) -> float:
        cap = created_at + self.ttl_s
        expiries = [
            float(cookie["expires"])
            for cookie in storage_state.get("cookies") or []
            if isinstance(cookie.get("expires"), (int, float)) and cookie["expires"] > 0
        ]
        if not expiries:
            return cap
        return max(created_at, min(cap, min(expiries) - self.skew_s))


def policy_for(settings: AuthSettings) -> FixedTtlPolicy:
    ttl_s = settings.session_ttl_minutes * 60
    if settings.expiry_policy == "token":
        return TokenLifetimePolicy(ttl_s)
    return FixedTtlPolicy(ttl_s)


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------

def _canonical(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_hash(payload: Dict[str, Any]) -> str:
    """SHA-256 over every entry field except the hash itself."""
    body = {k: v for k, v in payload.items() if k != "sha256"}
    return hashlib.sha256(_canonical(body).encode("utf-8")).hexdigest()


def _file_safe(name: str) -> str:
    """Filesystem-safe form of a role/env name; distinct names stay distinct."""
    safe = _SAFE_NAME.sub("_", name)
    if safe == name:
        return name
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:8]
    return f"{safe}-{digest}"


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class SessionStore:
    """Reads and writes per-role cache entries.

    ``clock`` returns epoch seconds and is injectable for tests.
    """

    def __init__(
        self,
        artifacts_dir: str = ".auth-states",
        *,
        file_pattern: str = "{role}.json",
        environment: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.artifacts_dir = Path(artifacts_dir)
        self.file_pattern = file_pattern
        self.environment = environment
        self.clock = clock

    @classmethod
    def from_settings(
        cls, settings: AuthSettings, clock: Callable[[], float] = time.time
    ) -> "SessionStore":
        return cls(
            settings.artifacts_dir,
            file_pattern=settings.file_pattern,
            environment=settings.environment,
            clock=clock,
        )

    def path_for(self, role: str) -> Path:
        """Deterministic entry path for a role."""
        name = self.file_pattern.replace("{role}", _file_safe(role))
        name = name.replace("{env}", _file_safe(self.environment or "default"))
        return self.artifacts_dir / name

    # ── Read ──────────────────────────────────────────────────────

    def get(self, role: str) -> Optional[AuthSession]:
        """Return the cached session, or None on a miss.

        Missing and expired entries are quiet misses. Entries that fail
        to parse or verify are logged as storage-state errors first.
        """
        path = self.path_for(role)
        if not path.exists():
            logger.debug(f"[SESSION] No cached state for '{role}' ({path})")
            return None
        try:
            session = self._load(role, path)
        except StorageStateError as err:
            logger.warning(f"[SESSION] Ignoring cached state\n{err}")
            return None

        now = self.clock()
        if session.is_expired(now):
            age_min = (now - session.created_at) / 60
            logger.info(
                f"[SESSION] Cached state for '{role}' expired "
                f"({age_min:.0f}min old) — fresh login required"
            )
            return None

        remaining_min = (session.expires_at - now) / 60
        logger.info(
            f"[SESSION] Using cached state for '{role}' "
            f"({session.cookie_count} cookies, {remaining_min:.0f}min left)"
        )
        return session

    def _load(self, role: str, path: Path) -> AuthSession:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                entry = json.load(fh)
        except (OSError, ValueError) as exc:
            raise StorageStateError(
                f"Cache entry is unreadable: {exc}", role=role, path=str(path), cause="invalid"
            ) from exc

        if not isinstance(entry, dict) or "sha256" not in entry:
            raise StorageStateError(
                "Cache entry has no integrity hash", role=role, path=str(path), cause="invalid"
            )
        if compute_hash(entry) != entry["sha256"]:
            raise StorageStateError(
                "Cache entry failed its integrity check (hash mismatch)",
                role=role,
                path=str(path),
                cause="corrupted",
            )
        if entry.get("role") != role:
            raise StorageStateError(
                f"Cache entry belongs to role '{entry.get('role')}'",
                role=role,
                path=str(path),
                cause="invalid",
            )
        try:
            return AuthSession(
                role=role,
                storage_state=dict(entry["storage_state"]),
                created_at=float(entry["created_at"]),
                expires_at=float(entry["expires_at"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageStateError(
                f"Cache entry is missing fields: {exc}", role=role, path=str(path), cause="invalid"
            ) from exc

    # ── Write ─────────────────────────────────────────────────────

    def put(self, session: AuthSession) -> Path:
        """Atomically replace the role's entry.

        Raises:
            StorageStateError: the entry could not be written (cause
                ``write-failed``); any previous entry is left untouched.
        """
        path = self.path_for(session.role)
        entry: Dict[str, Any] = {
            "version": _ENTRY_VERSION,
            "role": session.role,
            "created_at": session.created_at,
            "expires_at": session.expires_at,
            "storage_state": session.storage_state,
        }
        entry["sha256"] = compute_hash(entry)

        tmp_path: Optional[str] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(entry, fh, indent=2, ensure_ascii=False)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageStateError(
                f"Could not write cache entry: {exc}",
                role=session.role,
                path=str(path),
                cause="write-failed",
            ) from exc

        logger.info(
            f"[SESSION] Saved state for '{session.role}' "
            f"({session.cookie_count} cookies) → {path}"
        )
        return path

    def invalidate(self, role: str) -> bool:
        """Remove a role's entry. Returns True if one existed."""
        path = self.path_for(role)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"[SESSION] Invalidated cached state for '{role}'")
        return True

    # ── Housekeeping ──────────────────────────────────────────────

    def _entry_files(self) -> List[Path]:
        if not self.artifacts_dir.is_dir():
            return []
        return sorted(p for p in self.artifacts_dir.glob("*.json") if p.is_file())

    def list_entries(self) -> List[Dict[str, Any]]:
        """Metadata for every entry on disk (never the storage state itself)."""
        now = self.clock()
        entries: List[Dict[str, Any]] = []
        for path in self._entry_files():
            info: Dict[str, Any] = {"path": str(path), "role": None, "valid": False}
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    entry = json.load(fh)
            except (OSError, ValueError):
                entries.append(info)
                continue
            if isinstance(entry, dict):
                info.update(
                    role=entry.get("role"),
                    created_at=entry.get("created_at"),
                    expires_at=entry.get("expires_at"),
                    valid=compute_hash(entry) == entry.get("sha256"),
                )
                expires_at = entry.get("expires_at")
                info["expired"] = (
                    isinstance(expires_at, (int, float)) and now >= expires_at
                )
            entries.append(info)
        return entries

    def clear(self) -> int:
        """Delete every entry. Returns the number removed."""
        removed = 0
        for path in self._entry_files():
            path.unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.info(f"[SESSION] Cleared {removed} cached state file(s)")
        return removed

    def cleanup_older_than(self, max_age_s: float = _CLEANUP_MAX_AGE_S) -> int:
        """Delete entries (and stray temp files) last written before ``max_age_s`` ago."""
        if not self.artifacts_dir.is_dir():
            return 0
        cutoff = self.clock() - max_age_s
        removed = 0
        for path in list(self._entry_files()) + list(self.artifacts_dir.glob(".*.tmp")):
            if path.stat().st_mtime < cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info(f"[SESSION] Removed {removed} stale file(s) from {self.artifacts_dir}")
        return removed
