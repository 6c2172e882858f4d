"""
Browser Channel Validator
=========================
Pre-flight check that a requested browser channel is installed.

No channel, ``bundled`` and ``chromium`` mean Playwright's own Chromium
and are always available. ``msedge`` and the ``chrome*`` channels are
looked up in the platform's install locations and on ``PATH``; when found,
``--version`` is run (5s limit) to report the version.

Usage::

    result = validate_browser_channel("msedge")
    if not result.available:
        raise SystemExit(result.reason)
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

_VERSION_TIMEOUT_S = 5
_VERSION_RE = re.compile(r"(\d+\.\d+\.\d+\.\d+)")

_BUNDLED = (None, "", "bundled", "chromium")

_INSTALL_URLS: Dict[str, str] = {
    "msedge": "https://microsoft.com/edge",
    "chrome": "https://google.com/chrome",
    "chrome-beta": "https://google.com/chrome/beta",
    "chrome-dev": "https://google.com/chrome/dev",
}

_COMMANDS: Dict[str, List[str]] = {
    "msedge": ["microsoft-edge", "microsoft-edge-stable"],
    "chrome": ["google-chrome", "google-chrome-stable", "chromium"],
    "chrome-beta": ["google-chrome-beta"],
    "chrome-dev": ["google-chrome-unstable"],
}


@dataclass
class BrowserChannelResult:
    available: bool
    channel: Optional[str] = None
    version: Optional[str] = None
    path: Optional[str] = None
    reason: Optional[str] = None


def _install_paths(channel: str, platform: str) -> List[str]:
    """Known install locations for a channel on a platform."""
    if platform == "win32":
        program_files = os.environ.get("ProgramFiles", r"C:\Program Files")
        program_files_x86 = os.environ.get("ProgramFiles(x86)", r"C:\Program Files (x86)")
        local_app_data = os.environ.get("LOCALAPPDATA", "")
        if channel == "msedge":
            return [
                rf"{program_files_x86}\Microsoft\Edge\Application\msedge.exe",
                rf"{program_files}\Microsoft\Edge\Application\msedge.exe",
            ]
        folder = {
            "chrome": "Chrome",
            "chrome-beta": "Chrome Beta",
            "chrome-dev": "Chrome Dev",
        }[channel]
        return [
            rf"{program_files}\Google\{folder}\Application\chrome.exe",
            rf"{program_files_x86}\Google\{folder}\Application\chrome.exe",
            rf"{local_app_data}\Google\{folder}\Application\chrome.exe",
        ]

    if platform == "darwin":
        app = {
            "msedge": "Microsoft Edge",
            "chrome": "Google Chrome",
            "chrome-beta": "Google Chrome Beta",
            "chrome-dev": "Google Chrome Dev",
        }[channel]
        return [f"/Applications/{app}.app/Contents/MacOS/{app}"]

    return {
        "msedge": [
            "/usr/bin/microsoft-edge",
            "/usr/bin/microsoft-edge-stable",
            "/snap/bin/microsoft-edge",
        ],
        "chrome": [
            "/usr/bin/google-chrome",
            "/usr/bin/google-chrome-stable",
            "/snap/bin/chromium",
            "/usr/bin/chromium-browser",
        ],
        "chrome-beta": ["/usr/bin/google-chrome-beta"],
        "chrome-dev": ["/usr/bin/google-chrome-unstable"],
    }[channel]


def _probe_version(executable: str) -> Optional[str]:
    try:
        proc = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            text=True,
            timeout=_VERSION_TIMEOUT_S,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug(f"[BROWSER] {executable} --version failed: {exc}")
        return None
    match = _VERSION_RE.search(proc.stdout or "")
    return match.group(1) if match else None


def _locate(channel: str, platform: str) -> Optional[str]:
    for path in _install_paths(channel, platform):
        if path and os.path.exists(path):
            logger.debug(f"[BROWSER] Found {channel} at {path}")
            return path
    for command in _COMMANDS[channel]:
        resolved = shutil.which(command)
        if resolved:
            logger.debug(f"[BROWSER] Found {channel} on PATH: {resolved}")
            return resolved
    return None


def validate_browser_channel(
    channel: Optional[str] = None, *, platform: Optional[str] = None
) -> BrowserChannelResult:
    """Report whether ``channel`` can be launched on this machine."""
    if channel in _BUNDLED:
        return BrowserChannelResult(available=True, channel=channel or "bundled")

    channel = channel.lower()
    if channel not in _INSTALL_URLS:
        supported = ", ".join(["bundled"] + sorted(_INSTALL_URLS))
        return BrowserChannelResult(
            available=False,
            channel=channel,
            reason=f'Unsupported browser channel "{channel}". Supported channels: {supported}',
        )

    platform = platform or sys.platform
    path = _locate(channel, platform)
    if path is None:
        reason = f'Browser "{channel}" not found. Install from {_INSTALL_URLS[channel]}'
        logger.warning(f"[BROWSER] {reason}")
        return BrowserChannelResult(available=False, channel=channel, reason=reason)

    version = _probe_version(path)
    logger.info(f"[BROWSER] {channel} available at {path} ({version or 'unknown version'})")
    return BrowserChannelResult(available=True, channel=channel, version=version, path=path)
