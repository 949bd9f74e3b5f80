"""
InstalledArtifact — the receipt written after a verified install.

Stored as JSON under ``<state_dir>/receipts/<binary>.json``. Keyed by
binary name rather than formula name, so two formulae that ship the
same binary (``lm`` and ``lunchmoney-cli``) share one identity.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from lmtap.core.models.formula import PlatformVariant


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class InstalledArtifact(BaseModel):
    """A binary placed on disk from a verified variant."""

    model_config = ConfigDict(frozen=True)

    schema_version: int = 1

    name: str
    version: str
    binary_name: str
    binary_path: str
    source_variant: PlatformVariant
    sha256: str                    # of the downloaded artifact
    binary_sha256: str = ""        # of the file written to binary_path
    installed_at: str = Field(default_factory=_now_iso)
