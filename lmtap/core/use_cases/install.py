"""
Install use case — Resolve → Fetch → Verify → Install → Smoke test.

Strictly sequential; each stage blocks until done and any failure
aborts the rest. Every attempt lands in the audit ledger, and a
receipt is written only once the binary has passed its smoke test.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lmtap.core.config.loader import load_tap
from lmtap.core.config.settings import Settings
from lmtap.core.errors import InstallError, PlaceholderDigest, TapError, VerificationFailed
from lmtap.core.models.receipt import InstalledArtifact
from lmtap.core.persistence.audit import AuditEntry, AuditWriter
from lmtap.core.persistence.receipts import delete_receipt, load_receipt, save_receipt
from lmtap.core.reliability.retry import retry_fetch
from lmtap.core.services.archive import extract_binary
from lmtap.core.services.fetch import fetch, verify_digest
from lmtap.core.services.host import HostPlatform
from lmtap.core.services.installer import directory_lock, ensure_bin_dir, install_binary, remove_binary
from lmtap.core.services.resolver import Resolution, find_formula, resolve
from lmtap.core.services.smoke_test import SmokeTestResult, smoke_test

logger = logging.getLogger(__name__)

Fetcher = Callable[[str, float], bytes]


@dataclass
class InstallResult:
    """Outcome of a successful install."""

    artifact: InstalledArtifact
    resolution: Resolution
    smoke_test: SmokeTestResult | None = None
    stages: list[str] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "name": self.artifact.name,
            "version": self.artifact.version,
            "platform": str(self.resolution.host),
            "binary_path": self.artifact.binary_path,
            "sha256": self.artifact.sha256,
            "stages": self.stages,
            "smoke_test": self.smoke_test.to_dict() if self.smoke_test else None,
            "duration_ms": self.duration_ms,
        }


@dataclass
class UninstallResult:
    name: str
    binary_path: str
    removed: bool

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "binary_path": self.binary_path, "removed": self.removed}


def run_install(
    name: str,
    version: str | None = None,
    *,
    settings: Settings | None = None,
    host: HostPlatform | None = None,
    retries: int = 0,
    skip_test: bool = False,
    fetcher: Fetcher | None = None,
) -> InstallResult:
    """Install ``name`` (optionally pinned to ``version``) for this host.

    Args:
        name: Formula name or alias.
        version: Exact version; None means newest published release.
        settings: Resolved settings (default: from environment).
        host: Platform override (default: detected).
        retries: Extra fetch attempts on transient failure.
        skip_test: Skip the post-install smoke test.
        fetcher: ``(url, timeout) -> bytes``; defaults to ``fetch``.

    Returns:
        InstallResult describing the installed artifact.

    Raises:
        TapError: The first failing stage's error, with package and
            version attached. Nothing is retried except the fetch.
    """
    settings = settings or Settings.resolve()
    fetcher = fetcher or fetch
    audit = AuditWriter(settings.audit_path)
    started = time.monotonic()
    stages: list[str] = []
    entry = AuditEntry(operation="install", package=name, version=version or "")

    try:
        # ── Resolve ──
        stages.append("resolve")
        tap = load_tap(settings.tap_dir)
        resolution = resolve(tap, name, version, host)
        descriptor, variant = resolution.descriptor, resolution.variant
        entry.package, entry.version = descriptor.name, descriptor.version
        entry.platform = str(resolution.host)

        # ── Fetch ──
        stages.append("fetch")
        if variant.is_placeholder:
            # Nothing real can hash to the sentinel; don't download.
            raise PlaceholderDigest(
                "Release has a placeholder sha256 (unpublished); refusing to install",
                expected=variant.expected_digest,
            )
        payload = retry_fetch(
            lambda: fetcher(variant.url, settings.fetch_timeout),
            retries=retries,
        )

        # ── Verify ──
        stages.append("verify")
        digest = verify_digest(payload, variant.expected_digest)
        entry.sha256 = digest

        # ── Install ──
        stages.append("install")
        binary = extract_binary(payload, descriptor.install.member_for(descriptor.binary_name))
        ensure_bin_dir(settings.bin_dir)

        # Placement, smoke test and receipt form one unit per bin dir.
        with directory_lock(settings.bin_dir):
            path = install_binary(binary, settings.bin_dir, descriptor.binary_name, lock=False)
            entry.binary_path = str(path)

            artifact = InstalledArtifact(
                name=descriptor.name,
                version=descriptor.version,
                binary_name=descriptor.binary_name,
                binary_path=str(path),
                source_variant=variant,
                sha256=digest,
                binary_sha256=hashlib.sha256(binary).hexdigest(),
            )

            # ── Smoke test ──
            test_result = None
            if not skip_test:
                stages.append("test")
                try:
                    test_result = smoke_test(path, descriptor.test, timeout=settings.test_timeout)
                except VerificationFailed:
                    _discard(path, settings.receipts_dir, descriptor.binary_name)
                    raise

            try:
                _store_receipt(artifact, settings.receipts_dir)
            except InstallError:
                _discard(path, settings.receipts_dir, descriptor.binary_name)
                raise

    except TapError as e:
        e.attach(entry.package, entry.version)
        logger.info("Install of %s failed at %s: %s", e.subject, e.stage, e.message)
        _record_failure(audit, entry, started, stages, e.stage, type(e).__name__, e.message)
        raise
    except Exception as e:
        stage = stages[-1] if stages else "resolve"
        _record_failure(audit, entry, started, stages, stage, type(e).__name__, str(e))
        raise

    duration_ms = int((time.monotonic() - started) * 1000)
    entry.status, entry.stage, entry.duration_ms = "ok", stages[-1], duration_ms
    entry.context = {"stages": stages, "retries": retries, "skip_test": skip_test}
    audit.write(entry)
    logger.info("Installed %s %s → %s", artifact.name, artifact.version, artifact.binary_path)

    return InstallResult(
        artifact=artifact,
        resolution=resolution,
        smoke_test=test_result,
        stages=stages,
        duration_ms=duration_ms,
    )


def run_uninstall(name: str, *, settings: Settings | None = None) -> UninstallResult:
    """Remove an installed binary and its receipt.

    The binary path comes from the receipt when there is one, else
    ``bin_dir/<binary>``.
    """
    settings = settings or Settings.resolve()
    formula = find_formula(load_tap(settings.tap_dir), name)
    receipt = load_receipt(settings.receipts_dir, formula.binary)
    path = Path(receipt.binary_path) if receipt else settings.bin_dir / formula.binary

    removed = False
    try:
        if path.parent.is_dir():
            with directory_lock(path.parent):
                removed = remove_binary(path, lock=False)
                _drop_receipt(settings.receipts_dir, formula.binary)
        else:
            _drop_receipt(settings.receipts_dir, formula.binary)
    except TapError as e:
        raise e.attach(formula.name, receipt.version if receipt else "")

    AuditWriter(settings.audit_path).write(
        AuditEntry(
            operation="uninstall",
            package=formula.name,
            version=receipt.version if receipt else "",
            binary_path=str(path),
            status="ok",
            stage="uninstall",
            context={"removed": removed},
        )
    )
    return UninstallResult(name=formula.name, binary_path=str(path), removed=removed)


def run_check(name: str, *, settings: Settings | None = None) -> tuple[InstalledArtifact | None, SmokeTestResult]:
    """Re-run the smoke test against an already-installed binary.

    Raises:
        VerificationFailed: If the binary is missing, differs from the
            receipt, or fails the smoke test.
    """
    settings = settings or Settings.resolve()
    formula = find_formula(load_tap(settings.tap_dir), name)
    receipt = load_receipt(settings.receipts_dir, formula.binary)
    path = Path(receipt.binary_path) if receipt else settings.bin_dir / formula.binary
    version = receipt.version if receipt else ""

    try:
        if not path.is_file():
            raise VerificationFailed(f"Not installed: {path} does not exist")
        if receipt and receipt.binary_sha256:
            actual = hashlib.sha256(path.read_bytes()).hexdigest()
            if actual != receipt.binary_sha256:
                raise VerificationFailed(
                    f"{path} has changed since install (sha256 {actual}, "
                    f"receipt says {receipt.binary_sha256})"
                )
        release = formula.get(version) if version else formula.latest(published_only=False)
        spec = release.test if release else None
        result = smoke_test(path, spec, timeout=settings.test_timeout)
    except TapError as e:
        raise e.attach(formula.name, version)

    return receipt, result


def _discard(path: Path, receipts_dir: Path, binary_name: str) -> None:
    """Take a binary that failed after placement back off the PATH.

    The caller holds the bin directory lock.
    """
    logger.info("Removing %s after failed install", path)
    try:
        remove_binary(path, lock=False)
        _drop_receipt(receipts_dir, binary_name)
    except InstallError as e:
        logger.error("Could not clean up %s: %s", path, e.message)


def _store_receipt(artifact: InstalledArtifact, receipts_dir: Path) -> None:
    try:
        save_receipt(artifact, receipts_dir)
    except OSError as e:
        raise InstallError(f"Cannot write receipt in {receipts_dir}: {e}") from e


def _drop_receipt(receipts_dir: Path, binary_name: str) -> bool:
    try:
        return delete_receipt(receipts_dir, binary_name)
    except OSError as e:
        raise InstallError(f"Cannot remove receipt in {receipts_dir}: {e}") from e


def _record_failure(
    audit: AuditWriter,
    entry: AuditEntry,
    started: float,
    stages: list[str],
    stage: str,
    error_type: str,
    message: str,
) -> None:
    entry.status = "failed"
    entry.stage = stage
    entry.error_type = error_type
    entry.error = message
    entry.duration_ms = int((time.monotonic() - started) * 1000)
    entry.context = {"stages": stages}
    audit.write(entry)
