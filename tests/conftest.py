"""
Shared test fixtures and configuration.

Most tests build a throwaway tap under ``tmp_path`` whose artifacts are
tiny shell scripts (optionally wrapped in a .tar.gz) served from
``file://`` URLs, so the full pipeline runs without the network.
"""

from __future__ import annotations

import hashlib
import io
import logging
import tarfile
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
import yaml

from lmtap.core.config.settings import Settings
from lmtap.core.services.host import HostPlatform

MACOS_ARM = HostPlatform("macos", "arm64")
MACOS_INTEL = HostPlatform("macos", "amd64")

HELP_TEXT = "Lunch Money CLI - focused transaction review"


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def stub_script(output: str = HELP_TEXT, exit_code: int = 0, sleep: float = 0) -> bytes:
    """A tiny POSIX shell 'binary' that prints ``output``."""
    pause = f"sleep {sleep}" if sleep else ":"
    return f"#!/bin/sh\n{pause}\necho \"{output}\"\nexit {exit_code}\n".encode()


def tarball(members: dict[str, bytes]) -> bytes:
    """Build a .tar.gz in memory."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def make_tap(tmp_path: Path) -> Callable[..., Path]:
    """Factory: write a tap with one formula whose artifacts live on disk.

    ``releases`` maps version → {arch: payload bytes}. The recorded
    sha256 is the payload's real digest unless overridden via
    ``digests`` ({(version, arch): digest}).
    """

    def _make(
        releases: dict[str, dict[str, bytes]] | None = None,
        *,
        name: str = "lm",
        binary: str = "lm",
        aliases: list[str] | None = None,
        install: dict[str, str] | None = None,
        digests: dict[tuple[str, str], str] | None = None,
        tap_name: str = "tap",
    ) -> Path:
        releases = releases if releases is not None else {
            "0.1.3": {"arm64": stub_script(), "amd64": stub_script()},
        }
        digests = digests or {}
        tap_dir = tmp_path / tap_name
        tap_dir.mkdir(exist_ok=True)
        artifacts = tmp_path / "artifacts"

        entries = []
        for version, variants in releases.items():
            macos = {}
            for arch, payload in variants.items():
                path = artifacts / f"v{version}" / f"{name}-darwin-{arch}.tar.gz"
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(payload)
                macos[arch] = {
                    "url": path.as_uri(),
                    "sha256": digests.get((version, arch), sha256(payload)),
                }
            entries.append({"version": version, "macos": macos})

        doc = {
            "name": name,
            "description": "Test formula",
            "homepage": "https://example.com/lm",
            "binary": binary,
            "aliases": aliases or [],
            "test": {"args": ["--help"], "expect": "Lunch Money CLI", "timeout_seconds": 5},
            **({"install": install} if install else {}),
            "releases": entries,
        }
        (tap_dir / f"{name}.yml").write_text(yaml.safe_dump(doc, sort_keys=False))
        return tap_dir

    return _make


@pytest.fixture
def settings_for(tmp_path: Path) -> Callable[[Path], Settings]:
    """Factory: Settings pointing at a tap, with bin/state under tmp_path."""

    def _settings(tap_dir: Path) -> Settings:
        return Settings(
            tap_dir=tap_dir,
            bin_dir=tmp_path / "bin",
            state_dir=tmp_path / "state",
            fetch_timeout=5,
            test_timeout=5,
        )

    return _settings


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests away from the real ~/.local and any LMTAP_* settings."""
    for var in ("LMTAP_TAP_DIR", "LMTAP_BIN_DIR", "LMTAP_STATE_DIR", "LMTAP_LOG_LEVEL",
                "LMTAP_LOG_FILE", "LMTAP_FETCH_TIMEOUT", "LMTAP_TEST_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "home" / "state"))


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Drop handlers that ``setup_logging`` (or the CLI) installed."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(logging.WARNING)
