"""
Tests for browser_channel.py. Probes are monkeypatched; nothing real is launched.
"""

import subprocess
from types import SimpleNamespace

import pytest

from idpauth import browser_channel
from idpauth.browser_channel import validate_browser_channel


@pytest.fixture
def nothing_installed(monkeypatch):
    monkeypatch.setattr(browser_channel.os.path, "exists", lambda path: False)
    monkeypatch.setattr(browser_channel.shutil, "which", lambda command: None)


class TestBundled:

    @pytest.mark.parametrize("channel", [None, "bundled", "chromium"])
    def test_always_available(self, channel, nothing_installed):
        result = validate_browser_channel(channel)
        assert result.available
        assert result.reason is None


class TestNotFound:

    def test_msedge_missing(self, nothing_installed):
        """No Edge on the machine: unavailable, with an install pointer."""
        result = validate_browser_channel("msedge", platform="linux")
        assert result.available is False
        assert "not found" in result.reason
        assert "https://microsoft.com/edge" in result.reason
        assert result.path is None

    @pytest.mark.parametrize("platform", ["linux", "darwin", "win32"])
    def test_chrome_missing_on_every_platform(self, platform, nothing_installed):
        result = validate_browser_channel("chrome", platform=platform)
        assert not result.available
        assert "https://google.com/chrome" in result.reason

    def test_unsupported_channel(self):
        result = validate_browser_channel("netscape")
        assert not result.available
        assert "Unsupported" in result.reason


class TestFound:

    def test_install_path_with_version(self, monkeypatch):
        monkeypatch.setattr(
            browser_channel.os.path, "exists", lambda path: path == "/usr/bin/microsoft-edge-stable"
        )
        monkeypatch.setattr(
            browser_channel.subprocess,
            "run",
            lambda *args, **kwargs: SimpleNamespace(stdout="Microsoft Edge 120.0.2210.91 \n"),
        )
        result = validate_browser_channel("msedge", platform="linux")
        assert result.available
        assert result.path == "/usr/bin/microsoft-edge-stable"
        assert result.version == "120.0.2210.91"

    def test_found_on_path(self, monkeypatch):
        monkeypatch.setattr(browser_channel.os.path, "exists", lambda path: False)
        monkeypatch.setattr(
            browser_channel.shutil,
            "which",
            lambda command: "/opt/bin/google-chrome" if command == "google-chrome" else None,
        )
        monkeypatch.setattr(
            browser_channel.subprocess,
            "run",
            lambda *args, **kwargs: SimpleNamespace(stdout="Google Chrome 121.0.6167.85"),
        )
        result = validate_browser_channel("chrome", platform="linux")
        assert result.path == "/opt/bin/google-chrome"
        assert result.version == "121.0.6167.85"

    def test_version_probe_failure_keeps_availability(self, monkeypatch):
        monkeypatch.setattr(browser_channel.os.path, "exists", lambda path: True)

        def _hang(*args, **kwargs):
            raise subprocess.TimeoutExpired(cmd=args[0], timeout=5)

        monkeypatch.setattr(browser_channel.subprocess, "run", _hang)
        result = validate_browser_channel("msedge", platform="darwin")
        assert result.available
        assert result.version is None
        assert result.path == "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge"


class TestInstallPaths:

    def test_windows_edge(self):
        paths = browser_channel._install_paths("msedge", "win32")
        assert all(p.endswith(r"\Microsoft\Edge\Application\msedge.exe") for p in paths)

    def test_linux_chrome(self):
        paths = browser_channel._install_paths("chrome", "linux")
        assert "/usr/bin/google-chrome" in paths
        assert "/snap/bin/chromium" in paths
