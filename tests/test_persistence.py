"""
Tests for receipts and the audit ledger.
"""

from pathlib import Path

from lmtap.core.models import PlatformVariant
from lmtap.core.models.receipt import InstalledArtifact
from lmtap.core.persistence.audit import AuditEntry, AuditWriter
from lmtap.core.persistence.receipts import (
    delete_receipt,
    list_receipts,
    load_receipt,
    receipt_path,
    save_receipt,
)

DIGEST = "a96b83cca913a977aa12158545af0a3a410cd74d57113fcab76f7aaa47836cd6"


def _receipt(binary: str = "lm", version: str = "0.1.1") -> InstalledArtifact:
    return InstalledArtifact(
        name=binary,
        version=version,
        binary_name=binary,
        binary_path=f"/tmp/bin/{binary}",
        source_variant=PlatformVariant(
            arch="arm64",
            url=f"https://example.com/v{version}/{binary}-darwin-arm64.tar.gz",
            sha256=DIGEST,
        ),
        sha256=DIGEST,
    )


class TestReceipts:
    def test_save_and_load(self, tmp_path: Path):
        original = _receipt()
        path = save_receipt(original, tmp_path)
        assert path == receipt_path(tmp_path, "lm")

        loaded = load_receipt(tmp_path, "lm")
        assert loaded == original
        assert loaded.source_variant.expected_digest == DIGEST

    def test_saved_as_json_with_sha256_key(self, tmp_path: Path):
        path = save_receipt(_receipt(), tmp_path)
        text = path.read_text()
        assert '"sha256"' in text
        assert '"schema_version": 1' in text

    def test_overwrite(self, tmp_path: Path):
        save_receipt(_receipt(version="0.1.0"), tmp_path)
        save_receipt(_receipt(version="0.1.1"), tmp_path)
        assert load_receipt(tmp_path, "lm").version == "0.1.1"
        assert [p.name for p in tmp_path.iterdir()] == ["lm.json"]

    def test_missing(self, tmp_path: Path):
        assert load_receipt(tmp_path, "lm") is None

    def test_corrupt_is_ignored(self, tmp_path: Path):
        (tmp_path / "lm.json").write_text("{not json")
        assert load_receipt(tmp_path, "lm") is None

    def test_invalid_shape_is_ignored(self, tmp_path: Path):
        (tmp_path / "lm.json").write_text('{"name": "lm"}')
        assert load_receipt(tmp_path, "lm") is None

    def test_list(self, tmp_path: Path):
        save_receipt(_receipt("lm"), tmp_path)
        save_receipt(_receipt("other"), tmp_path)
        (tmp_path / "broken.json").write_text("[]")
        assert [r.binary_name for r in list_receipts(tmp_path)] == ["lm", "other"]

    def test_list_missing_dir(self, tmp_path: Path):
        assert list_receipts(tmp_path / "nope") == []

    def test_delete(self, tmp_path: Path):
        save_receipt(_receipt(), tmp_path)
        assert delete_receipt(tmp_path, "lm") is True
        assert delete_receipt(tmp_path, "lm") is False


class TestAuditWriter:
    def test_append_and_read(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "state" / "audit.ndjson")
        writer.write(AuditEntry(operation="install", package="lm", version="0.1.1", status="ok"))
        writer.write(AuditEntry(operation="uninstall", package="lm", status="ok"))

        entries = writer.read_all()
        assert [e.operation for e in entries] == ["install", "uninstall"]
        assert entries[0].timestamp

    def test_read_recent(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "audit.ndjson")
        for i in range(5):
            writer.write(AuditEntry(operation="install", version=f"0.1.{i}"))
        assert [e.version for e in writer.read_recent(2)] == ["0.1.3", "0.1.4"]
        assert writer.read_recent(0) == []

    def test_missing_file(self, tmp_path: Path):
        assert AuditWriter(tmp_path / "audit.ndjson").read_all() == []

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        path = tmp_path / "audit.ndjson"
        writer = AuditWriter(path)
        writer.write(AuditEntry(operation="install", package="lm"))
        with path.open("a") as f:
            f.write("garbage\n\n")
        writer.write(AuditEntry(operation="uninstall", package="lm"))
        assert [e.operation for e in writer.read_all()] == ["install", "uninstall"]

    def test_write_failure_does_not_raise(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        AuditWriter(blocker / "audit.ndjson").write(AuditEntry(operation="install"))
