"""
Formula loader — reads a tap directory of YAML formula files.

A tap is a directory of ``<name>.yml`` files. Each file is one
Formula: package metadata plus an ordered list of releases, each
release mapping ``os → arch → {url, sha256}``. The loader flattens
that matrix into PlatformVariant records and validates the result
against the Pydantic models.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from lmtap.core.errors import FormulaError
from lmtap.core.models.formula import (
    Formula,
    InstallStep,
    PackageDescriptor,
    PlatformVariant,
    SmokeTestSpec,
)

logger = logging.getLogger(__name__)

FORMULA_SUFFIXES = (".yml", ".yaml")

# Ruby-formula block names and uname spellings → canonical names
_OS_ALIASES: dict[str, str] = {
    "macos": "macos",
    "darwin": "macos",
    "mac": "macos",
}
_ARCH_ALIASES: dict[str, str] = {
    "arm64": "arm64",
    "arm": "arm64",
    "aarch64": "arm64",
    "amd64": "amd64",
    "intel": "amd64",
    "x86_64": "amd64",
}


@dataclass
class Tap:
    """A loaded tap: formulae keyed by name."""

    path: Path
    formulae: dict[str, Formula] = field(default_factory=dict)

    def get(self, name: str) -> Formula | None:
        """Look up by formula name, then by alias."""
        if name in self.formulae:
            return self.formulae[name]
        for formula in self.formulae.values():
            if name in formula.aliases:
                return formula
        return None

    @property
    def names(self) -> list[str]:
        return sorted(self.formulae)


def load_formula(path: Path) -> Formula:
    """Load and validate a single formula file.

    Raises:
        FormulaError: If the file cannot be read or is invalid.
    """
    logger.debug("Loading formula from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FormulaError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise FormulaError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise FormulaError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    name = data.get("name") or path.stem

    try:
        return _build_formula(name, data)
    except ValidationError as e:
        raise FormulaError(f"Invalid formula in {path}: {e}", package=name) from e
    except (TypeError, ValueError) as e:
        raise FormulaError(f"Invalid formula in {path}: {e}", package=name) from e


def load_tap(tap_dir: Path) -> Tap:
    """Load every formula file in a tap directory.

    Raises:
        FormulaError: If the directory is missing, a file is invalid,
            or two files declare the same formula name.
    """
    if not tap_dir.is_dir():
        raise FormulaError(f"Tap directory not found: {tap_dir}")

    tap = Tap(path=tap_dir)
    for path in sorted(tap_dir.iterdir()):
        if path.suffix not in FORMULA_SUFFIXES or not path.is_file():
            continue
        formula = load_formula(path)
        if formula.name in tap.formulae:
            raise FormulaError(f"Formula '{formula.name}' is declared twice (second in {path})")
        tap.formulae[formula.name] = formula

    logger.info("Loaded tap %s with %d formulae: %s", tap_dir, len(tap.formulae), tap.names)
    return tap


def _build_formula(name: str, data: dict[str, Any]) -> Formula:
    binary = data.get("binary") or name
    test = SmokeTestSpec.model_validate(data.get("test") or {})
    install = InstallStep.model_validate(data.get("install") or {})

    releases = []
    for entry in data.get("releases") or []:
        if not isinstance(entry, dict):
            raise ValueError(f"release entries must be mappings, got {type(entry).__name__}")
        version = str(entry.get("version", "")).strip()
        releases.append(
            PackageDescriptor(
                name=name,
                version=version,
                description=data.get("description", ""),
                homepage_url=data.get("homepage", ""),
                binary_name=binary,
                platform_variants=tuple(_flatten_variants(entry, version)),
                install=install,
                test=test,
            )
        )

    return Formula(
        name=name,
        description=data.get("description", ""),
        homepage=data.get("homepage", ""),
        binary=binary,
        aliases=tuple(data.get("aliases") or ()),
        releases=tuple(releases),
    )


def _flatten_variants(entry: dict[str, Any], version: str) -> list[PlatformVariant]:
    """Turn ``{macos: {arm: {url, sha256}, intel: {...}}}`` into variants."""
    variants: list[PlatformVariant] = []
    for os_key, arches in entry.items():
        if os_key == "version":
            continue
        os_name = _OS_ALIASES.get(str(os_key).lower())
        if os_name is None:
            raise ValueError(f"unsupported operating system {os_key!r} in release {version}")
        if not isinstance(arches, dict):
            raise ValueError(f"{os_key} in release {version} must map architectures to downloads")

        for arch_key, download in arches.items():
            arch = _ARCH_ALIASES.get(str(arch_key).lower())
            if arch is None:
                raise ValueError(f"unsupported architecture {arch_key!r} in release {version}")
            if not isinstance(download, dict):
                raise ValueError(f"{os_key}/{arch_key} in release {version} must have url and sha256")
            variants.append(
                PlatformVariant(
                    os=os_name,
                    arch=arch,
                    url=str(download.get("url", "")).replace("{version}", version),
                    sha256=str(download.get("sha256", "")),
                )
            )
    return variants
