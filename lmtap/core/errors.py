"""
Error taxonomy for the install pipeline.

Every failure surfaces as a ``TapError`` subclass carrying the stage
it came from and the package/version involved, so the CLI can print
one line naming all three and exit non-zero.

    resolve  → FormulaError, UnknownFormula, UnknownVersion, UnsupportedPlatform
    fetch    → FetchError            (retryable by the caller)
    verify   → DigestMismatch, PlaceholderDigest
    install  → InstallError
    test     → VerificationFailed
"""

from __future__ import annotations

from typing import Any


class TapError(Exception):
    """Base class for every pipeline failure."""

    stage: str = "tap"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        package: str = "",
        version: str = "",
        stage: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.package = package
        self.version = version
        if stage is not None:
            self.stage = stage

    def attach(self, package: str, version: str = "") -> TapError:
        """Fill in package/version if the raising code did not know them."""
        if not self.package:
            self.package = package
        if not self.version:
            self.version = version
        return self

    @property
    def subject(self) -> str:
        if self.package and self.version:
            return f"{self.package}@{self.version}"
        return self.package or "-"

    def __str__(self) -> str:
        return f"[{self.stage}] {self.subject}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "stage": self.stage,
            "package": self.package,
            "version": self.version,
            "message": self.message,
            "retryable": self.retryable,
        }


# ── Resolve ─────────────────────────────────────────────────────


class FormulaError(TapError):
    """A formula file is missing, malformed, or violates an invariant."""

    stage = "resolve"


class UnknownFormula(TapError):
    """No formula (or alias) matches the requested name."""

    stage = "resolve"


class UnknownVersion(TapError):
    """The requested version has no release record."""

    stage = "resolve"


class UnsupportedPlatform(TapError):
    """No variant matches the host's (os, arch)."""

    stage = "resolve"


# ── Fetch / verify ──────────────────────────────────────────────


class FetchError(TapError):
    """Transport or HTTP failure while downloading an artifact."""

    stage = "fetch"
    retryable = True

    def __init__(self, message: str, *, url: str = "", status: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.url = url
        self.status = status


class DigestMismatch(TapError):
    """Downloaded bytes do not hash to the expected SHA-256."""

    stage = "verify"

    def __init__(self, message: str, *, expected: str = "", actual: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class PlaceholderDigest(DigestMismatch):
    """The release record carries the all-zero placeholder digest."""


# ── Install / test ──────────────────────────────────────────────


class InstallError(TapError):
    """Filesystem failure while placing the binary."""

    stage = "install"


class VerificationFailed(TapError):
    """The installed binary failed its smoke test."""

    stage = "test"

    def __init__(self, message: str, *, output: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.output = output
