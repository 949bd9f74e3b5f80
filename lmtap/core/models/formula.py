"""
Formula models — the release ledger for one package.

A Formula is an append-only list of PackageDescriptor records, one per
published version. Each descriptor pins, for every supported
(os, arch), a download URL and the SHA-256 the bytes at that URL must
hash to. Records are frozen once loaded; a new release is a new record.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PLACEHOLDER_DIGEST = "0" * 64

_DIGEST_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_VERSION_RE = re.compile(r"^\d+\.\d+\.\d+$")

OSName = Literal["macos"]
ArchName = Literal["arm64", "amd64"]


def is_valid_digest(value: str) -> bool:
    """True if ``value`` is a 64-character hex string."""
    return bool(_DIGEST_RE.match(value or ""))


def is_placeholder_digest(value: str) -> bool:
    """True for the reserved all-zero "unpublished" sentinel."""
    return value.strip().lower() == PLACEHOLDER_DIGEST


def version_key(version: str) -> tuple[int, ...]:
    """Sort key for a dotted-triple version string."""
    return tuple(int(part) for part in version.split("."))


def normalize_version(version: str) -> str:
    """Strip whitespace and a leading ``v`` from a requested version."""
    version = version.strip()
    return version[1:] if version[:1] in ("v", "V") else version


def url_embeds_version(url: str, version: str) -> bool:
    """True if ``version`` appears in ``url`` as a whole version, not inside a longer one."""
    pattern = rf"(?<![\d.]){re.escape(version)}(?!\.?\d)"
    return re.search(pattern, url) is not None


class SmokeTestSpec(BaseModel):
    """Post-install check: run the binary, expect a substring in its output."""

    model_config = ConfigDict(frozen=True)

    args: tuple[str, ...] = ("--help",)
    expect: str = "Lunch Money CLI"
    timeout_seconds: float = 10.0


class InstallStep(BaseModel):
    """Copy one file out of the artifact into the bin directory.

    ``source`` is the archive member to take; empty means the binary
    name itself (the usual ``bin.install "lm"`` case).
    """

    model_config = ConfigDict(frozen=True)

    source: str = ""

    @field_validator("source")
    @classmethod
    def _check_source(cls, v: str) -> str:
        if "/" in v or v in (".", ".."):
            raise ValueError(f"install source must be a plain file name, got {v!r}")
        return v

    def member_for(self, binary_name: str) -> str:
        return self.source or binary_name


class PlatformVariant(BaseModel):
    """One platform-specific download entry within a release."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    os: OSName = "macos"
    arch: ArchName
    url: str
    expected_digest: str = Field(alias="sha256")

    @field_validator("expected_digest")
    @classmethod
    def _check_digest(cls, v: str) -> str:
        if not is_valid_digest(v):
            raise ValueError(f"sha256 must be 64 hex characters, got {v!r}")
        return v.lower()

    @property
    def platform(self) -> tuple[str, str]:
        return (self.os, self.arch)

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder_digest(self.expected_digest)


class PackageDescriptor(BaseModel):
    """Everything needed to install one version of a package."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = ""
    homepage_url: str = ""
    binary_name: str
    platform_variants: tuple[PlatformVariant, ...]
    install: InstallStep = Field(default_factory=InstallStep)
    test: SmokeTestSpec = Field(default_factory=SmokeTestSpec)

    @field_validator("version")
    @classmethod
    def _check_version(cls, v: str) -> str:
        if not _VERSION_RE.match(v):
            raise ValueError(f"version must be a dotted triple (major.minor.patch), got {v!r}")
        return v

    @field_validator("binary_name")
    @classmethod
    def _check_binary_name(cls, v: str) -> str:
        if not v or "/" in v or v in (".", ".."):
            raise ValueError(f"binary name must be a plain file name, got {v!r}")
        return v

    @model_validator(mode="after")
    def _check_variants(self) -> PackageDescriptor:
        if not self.platform_variants:
            raise ValueError(f"{self.name} {self.version} declares no platform variants")
        seen: set[tuple[str, str]] = set()
        for variant in self.platform_variants:
            if variant.platform in seen:
                raise ValueError(
                    f"{self.name} {self.version}: duplicate variant for {variant.os}/{variant.arch}"
                )
            seen.add(variant.platform)
            if not url_embeds_version(variant.url, self.version):
                raise ValueError(
                    f"{self.name} {self.version}: url for {variant.os}/{variant.arch} "
                    f"does not embed the version: {variant.url}"
                )
        return self

    def variant_for(self, os: str, arch: str) -> PlatformVariant | None:
        """Look up the variant for a platform."""
        for variant in self.platform_variants:
            if variant.os == os and variant.arch == arch:
                return variant
        return None

    @property
    def published(self) -> bool:
        """False while any variant still carries the placeholder digest."""
        return not any(v.is_placeholder for v in self.platform_variants)

    @property
    def platforms(self) -> list[str]:
        return [f"{v.os}/{v.arch}" for v in self.platform_variants]


class Formula(BaseModel):
    """Release ledger for one package name, oldest release first."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    homepage: str = ""
    binary: str
    aliases: tuple[str, ...] = ()
    releases: tuple[PackageDescriptor, ...] = ()

    @model_validator(mode="after")
    def _check_releases(self) -> Formula:
        versions = [r.version for r in self.releases]
        dupes = sorted({v for v in versions if versions.count(v) > 1})
        if dupes:
            raise ValueError(f"{self.name}: duplicate release versions {', '.join(dupes)}")
        for release in self.releases:
            if release.name != self.name:
                raise ValueError(f"{self.name}: release {release.version} is named {release.name!r}")
        return self

    @property
    def versions(self) -> list[str]:
        return [r.version for r in self.releases]

    def get(self, version: str) -> PackageDescriptor | None:
        """Exact-match lookup; no range resolution."""
        for release in self.releases:
            if release.version == version:
                return release
        return None

    def latest(self, *, published_only: bool = True) -> PackageDescriptor | None:
        """The highest version, skipping placeholder releases by default."""
        candidates = [r for r in self.releases if r.published or not published_only]
        if not candidates:
            return None
        return max(candidates, key=lambda r: version_key(r.version))

    def append(self, release: PackageDescriptor) -> Formula:
        """Return a new ledger with ``release`` appended.

        Raises:
            ValueError: If the version already exists or does not
                sort after the newest existing release.
        """
        if self.get(release.version) is not None:
            raise ValueError(f"{self.name} {release.version} is already released")
        if self.releases and version_key(release.version) <= version_key(self.releases[-1].version):
            raise ValueError(
                f"{self.name} {release.version} must be newer than {self.releases[-1].version}"
            )
        return self.model_copy(update={"releases": (*self.releases, release)})

    def matches(self, name: str) -> bool:
        return name == self.name or name in self.aliases
