"""
Host platform detection.

Normalizes ``platform.system()`` / ``platform.machine()`` to the
names used in formula files (``macos``, ``arm64``/``amd64``).
"""

from __future__ import annotations

import platform
from typing import NamedTuple

# Architecture name normalization (Go-style, matching release asset names)
_ARCH_MAP: dict[str, str] = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",      # macOS (Darwin reports arm64)
}

_OS_MAP: dict[str, str] = {
    "darwin": "macos",
    "linux": "linux",
    "windows": "windows",
}


class HostPlatform(NamedTuple):
    """The (os, arch) pair a variant is selected for."""

    os: str
    arch: str

    def __str__(self) -> str:
        return f"{self.os}/{self.arch}"


def detect_host() -> HostPlatform:
    """Describe the running machine."""
    system = platform.system().lower()
    machine = platform.machine().lower()
    return HostPlatform(
        os=_OS_MAP.get(system, system),
        arch=_ARCH_MAP.get(machine, machine),
    )


def parse_platform(value: str) -> HostPlatform:
    """Parse an ``os/arch`` override such as ``macos/arm64``.

    Raises:
        ValueError: If the value is not of the form ``os/arch``.
    """
    os_part, sep, arch_part = value.strip().lower().partition("/")
    if not sep or not os_part or not arch_part:
        raise ValueError(f"Expected os/arch (e.g. macos/arm64), got {value!r}")
    return HostPlatform(
        os=_OS_MAP.get(os_part, os_part),
        arch=_ARCH_MAP.get(arch_part, arch_part),
    )
