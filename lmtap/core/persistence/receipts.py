"""
Receipt persistence — atomic read/write for InstalledArtifact.

One JSON file per installed binary in ``<state_dir>/receipts``.
Writes are atomic (write to temp file, then rename) so a crash
mid-write never leaves a half-written receipt.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from lmtap.core.models.receipt import InstalledArtifact

logger = logging.getLogger(__name__)


def receipt_path(receipts_dir: Path, binary_name: str) -> Path:
    return receipts_dir / f"{binary_name}.json"


def load_receipt(receipts_dir: Path, binary_name: str) -> InstalledArtifact | None:
    """Load the receipt for a binary.

    Returns:
        The receipt, or None if missing or unreadable.
    """
    path = receipt_path(receipts_dir, binary_name)
    if not path.is_file():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return InstalledArtifact.model_validate(data)
    except json.JSONDecodeError as e:
        logger.warning("Corrupt receipt %s: %s; ignoring", path, e)
        return None
    except Exception as e:
        logger.warning("Cannot load receipt %s: %s; ignoring", path, e)
        return None


def list_receipts(receipts_dir: Path) -> list[InstalledArtifact]:
    """All readable receipts, sorted by binary name."""
    if not receipts_dir.is_dir():
        return []
    receipts = []
    for path in sorted(receipts_dir.glob("*.json")):
        receipt = load_receipt(receipts_dir, path.stem)
        if receipt is not None:
            receipts.append(receipt)
    return receipts


def save_receipt(receipt: InstalledArtifact, receipts_dir: Path) -> Path:
    """Save a receipt (atomic write), replacing any previous one.

    Returns:
        Path of the written receipt.
    """
    path = receipt_path(receipts_dir, receipt.binary_name)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = receipt.model_dump(mode="json")
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    # Atomic write: temp file in same directory, then rename
    try:
        _fd, tmp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".receipt_",
            suffix=".tmp",
        )
        tmp = Path(tmp_path)
        try:
            with open(_fd, "w", encoding="utf-8") as f:
                f.write(content)
            tmp.replace(path)
            logger.debug("Receipt saved to %s", path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except Exception as e:
        logger.error("Failed to save receipt to %s: %s", path, e)
        raise
    return path


def delete_receipt(receipts_dir: Path, binary_name: str) -> bool:
    """Remove a receipt. Returns True if one existed."""
    path = receipt_path(receipts_dir, binary_name)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    logger.debug("Receipt removed: %s", path)
    return True
