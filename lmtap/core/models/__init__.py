"""
Domain models — Pydantic types for the tap.

All models are re-exported here for convenient access:

    from lmtap.core.models import Formula, PackageDescriptor, PlatformVariant
"""

from lmtap.core.models.formula import (
    PLACEHOLDER_DIGEST,
    Formula,
    InstallStep,
    PackageDescriptor,
    PlatformVariant,
    SmokeTestSpec,
)
from lmtap.core.models.receipt import InstalledArtifact

__all__ = [
    # formula.py
    "Formula",
    "InstallStep",
    "PackageDescriptor",
    "PLACEHOLDER_DIGEST",
    "PlatformVariant",
    "SmokeTestSpec",
    # receipt.py
    "InstalledArtifact",
]
