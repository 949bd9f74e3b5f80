"""
Descriptor resolution — pick one release and one variant for this host.

Pure lookup over a loaded tap: no network, no filesystem. Matching is
exact equality on name (then alias) and version; each formula pins
exact versions, so there is no range resolution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from lmtap.core.config.loader import Tap
from lmtap.core.errors import UnknownFormula, UnknownVersion, UnsupportedPlatform
from lmtap.core.models.formula import Formula, PackageDescriptor, PlatformVariant, normalize_version
from lmtap.core.services.host import HostPlatform, detect_host

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """A descriptor plus the single variant selected for the host."""

    formula: Formula
    descriptor: PackageDescriptor
    variant: PlatformVariant
    host: HostPlatform

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def version(self) -> str:
        return self.descriptor.version

    def to_dict(self) -> dict:
        return {
            "name": self.descriptor.name,
            "version": self.descriptor.version,
            "binary": self.descriptor.binary_name,
            "host": str(self.host),
            "url": self.variant.url,
            "sha256": self.variant.expected_digest,
            "published": self.descriptor.published,
        }


def find_formula(tap: Tap, name: str) -> Formula:
    """Look up a formula by name or alias.

    Raises:
        UnknownFormula: If nothing in the tap matches.
    """
    formula = tap.get(name)
    if formula is None:
        raise UnknownFormula(
            f"No formula named '{name}' in {tap.path} (available: {', '.join(tap.names) or 'none'})",
            package=name,
        )
    if formula.name != name:
        logger.info("'%s' is an alias of formula '%s'", name, formula.name)
    return formula


def select_release(formula: Formula, version: str | None = None) -> PackageDescriptor:
    """Pick the requested release, or the newest published one.

    Raises:
        UnknownVersion: If the version has no record, or no version was
            requested and every release is still a placeholder.
    """
    if version is None:
        descriptor = formula.latest()
        if descriptor is None:
            raise UnknownVersion(
                f"No published release (known: {', '.join(formula.versions) or 'none'})",
                package=formula.name,
            )
        return descriptor

    wanted = normalize_version(version)
    descriptor = formula.get(wanted)
    if descriptor is None:
        raise UnknownVersion(
            f"No release {wanted} (known: {', '.join(formula.versions) or 'none'})",
            package=formula.name,
            version=wanted,
        )
    return descriptor


def select_variant(descriptor: PackageDescriptor, host: HostPlatform) -> PlatformVariant:
    """Pick the variant whose (os, arch) equals the host's.

    Raises:
        UnsupportedPlatform: If the release has no variant for the host.
    """
    variant = descriptor.variant_for(host.os, host.arch)
    if variant is None:
        raise UnsupportedPlatform(
            f"No build for {host} (available: {', '.join(descriptor.platforms)})",
            package=descriptor.name,
            version=descriptor.version,
        )
    return variant


def resolve(
    tap: Tap,
    name: str,
    version: str | None = None,
    host: HostPlatform | None = None,
) -> Resolution:
    """Resolve ``name``/``version`` to exactly one variant for ``host``."""
    host = host or detect_host()
    formula = find_formula(tap, name)
    try:
        descriptor = select_release(formula, version)
    except UnknownVersion as e:
        successors = [f.name for f in tap.formulae.values() if formula.name in f.aliases]
        if version is None and successors:
            e.message += f"; '{formula.name}' is now published as {', '.join(successors)}"
        raise
    variant = select_variant(descriptor, host)
    logger.info(
        "Resolved %s %s for %s → %s", descriptor.name, descriptor.version, host, variant.url,
    )
    return Resolution(formula=formula, descriptor=descriptor, variant=variant, host=host)
