"""
Release-ledger audit — publish-time integrity checks over a tap.

Schema-level invariants (digest format, one variant per platform,
version in URL) are already enforced when the tap loads. This pass
adds the checks that span records or need the network:

    - versions strictly increase in ledger order
    - every release covers the full platform matrix
    - placeholder (unpublished) releases are flagged
    - download URLs use https
    - two architectures never share one digest
    - with ``fetch_artifacts=True``: the bytes at each URL hash to the recorded digest
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from lmtap.core.config.loader import Tap
from lmtap.core.errors import FetchError
from lmtap.core.models.formula import Formula, version_key
from lmtap.core.services.fetch import fetch, sha256_hex

logger = logging.getLogger(__name__)

# The platform matrix every release is expected to cover
EXPECTED_PLATFORMS: tuple[tuple[str, str], ...] = (("macos", "arm64"), ("macos", "amd64"))


@dataclass
class Finding:
    severity: str          # error, warning, info
    package: str
    version: str
    message: str
    platform: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity,
            "package": self.package,
            "version": self.version,
            "platform": self.platform,
            "message": self.message,
        }


@dataclass
class AuditReport:
    """Findings across a whole tap."""

    formulae: int = 0
    releases: int = 0
    variants_fetched: int = 0
    findings: list[Finding] = field(default_factory=list)

    @property
    def errors(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == "error"]

    @property
    def warnings(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == "warning"]

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "formulae": self.formulae,
            "releases": self.releases,
            "variants_fetched": self.variants_fetched,
            "errors": len(self.errors),
            "warnings": len(self.warnings),
            "findings": [f.to_dict() for f in self.findings],
        }


def audit_tap(
    tap: Tap,
    *,
    fetch_artifacts: bool = False,
    timeout: float = 60.0,
    fetcher: Callable[[str, float], bytes] | None = None,
) -> AuditReport:
    """Audit every formula in ``tap``.

    Args:
        tap: A loaded tap.
        fetch_artifacts: Also download each published variant and
            compare its SHA-256 with the record.
        timeout: Per-download timeout.
        fetcher: ``(url, timeout) -> bytes``; defaults to ``fetch``.
    """
    fetcher = fetcher or fetch
    report = AuditReport(formulae=len(tap.formulae))

    for name in tap.names:
        formula = tap.formulae[name]
        report.releases += len(formula.releases)
        _check_formula(tap, formula, report)
        if fetch_artifacts:
            _check_downloads(formula, report, fetcher, timeout)

    logger.info(
        "Audit: %d formulae, %d releases, %d errors, %d warnings",
        report.formulae, report.releases, len(report.errors), len(report.warnings),
    )
    return report


def _check_formula(tap: Tap, formula: Formula, report: AuditReport) -> None:
    add = report.findings.append

    if not formula.releases:
        add(Finding("warning", formula.name, "", "Formula has no releases"))

    for alias in formula.aliases:
        if alias in tap.formulae:
            add(Finding(
                "info", formula.name, "",
                f"Alias '{alias}' is also a formula of its own; the formula wins on lookup",
            ))

    previous = None
    for release in formula.releases:
        if previous is not None and version_key(release.version) <= version_key(previous):
            add(Finding(
                "error", formula.name, release.version,
                f"Release {release.version} does not sort after {previous}; "
                "the ledger must be append-only with increasing versions",
            ))
        previous = release.version

        if not release.published:
            add(Finding(
                "warning", formula.name, release.version,
                "Placeholder sha256: release is unpublished and cannot be installed",
            ))

        for os_name, arch in EXPECTED_PLATFORMS:
            if release.variant_for(os_name, arch) is None:
                add(Finding(
                    "warning", formula.name, release.version,
                    "No variant for this platform", platform=f"{os_name}/{arch}",
                ))

        seen_digests: dict[str, str] = {}
        for variant in release.platform_variants:
            platform = f"{variant.os}/{variant.arch}"
            if urlparse(variant.url).scheme != "https":
                add(Finding(
                    "error", formula.name, release.version,
                    f"URL is not https: {variant.url}", platform=platform,
                ))
            if variant.is_placeholder:
                continue
            other = seen_digests.get(variant.expected_digest)
            if other:
                add(Finding(
                    "error", formula.name, release.version,
                    f"Same sha256 as {other}; each architecture needs its own artifact",
                    platform=platform,
                ))
            seen_digests[variant.expected_digest] = platform


def _check_downloads(
    formula: Formula,
    report: AuditReport,
    fetcher: Callable[[str, float], bytes],
    timeout: float,
) -> None:
    for release in formula.releases:
        if not release.published:
            continue
        for variant in release.platform_variants:
            platform = f"{variant.os}/{variant.arch}"
            try:
                data = fetcher(variant.url, timeout)
            except FetchError as e:
                report.findings.append(Finding(
                    "error", formula.name, release.version,
                    f"Cannot fetch artifact: {e.message}", platform=platform,
                ))
                continue
            report.variants_fetched += 1
            actual = sha256_hex(data)
            if actual != variant.expected_digest:
                report.findings.append(Finding(
                    "error", formula.name, release.version,
                    f"sha256 mismatch: recorded {variant.expected_digest}, artifact hashes to {actual}",
                    platform=platform,
                ))
