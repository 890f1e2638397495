"""
Tests for the ephemeral artifact store.
"""

import pytest

from backend.app.core.exceptions import NotFoundError, TransientInfraError
from backend.app.services.artifact_store import ArtifactStore, artifact_filename, format_bytes


class TestSaveAndGet:
    """Tests for storing and reading archives."""

    def test_save_then_get_returns_same_bytes(self, store):
        record = store.save("job-1", b"zip-bytes")

        assert record.filename == "export-job-1.zip"
        assert record.size_bytes == 9
        assert store.get(record.filename) == b"zip-bytes"

    def test_expiry_is_creation_plus_ttl(self, store, clock):
        record = store.save("job-1", b"data")

        assert record.created_at == clock.now()
        assert (record.expires_at - record.created_at).total_seconds() == 3600

    def test_second_save_overwrites_first(self, store):
        """Saving the same job twice keeps only the latest archive."""
        store.save("job-1", b"first")
        store.save("job-1", b"second attempt")

        assert store.get("export-job-1.zip") == b"second attempt"
        assert [r.filename for r in store.list_artifacts()] == ["export-job-1.zip"]

    def test_no_temp_files_left_behind(self, store):
        store.save("job-1", b"data")

        assert [p.name for p in store.directory.iterdir()] == ["export-job-1.zip"]

    def test_save_failure_is_transient(self, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("x")
        store = ArtifactStore(blocker)

        with pytest.raises(TransientInfraError):
            store.save("job-1", b"data")


class TestExpiry:
    """Expired artifacts are reaped when touched or swept."""

    def test_get_after_ttl_raises_and_reaps(self, store, clock):
        store.save("job-1", b"data")
        clock.advance(3601)

        with pytest.raises(NotFoundError):
            store.get("export-job-1.zip")
        assert not (store.directory / "export-job-1.zip").exists()

    def test_exists_after_ttl_is_false_and_reaps(self, store, clock):
        store.save("job-1", b"data")
        assert store.exists("export-job-1.zip")

        clock.advance(3600)

        assert not store.exists("export-job-1.zip")
        assert not (store.directory / "export-job-1.zip").exists()

    def test_sweep_removes_only_expired(self, store, clock):
        store.save("old", b"old")
        clock.advance(3000)
        store.save("new", b"new")
        clock.advance(700)

        assert store.sweep() == 1
        assert [r.filename for r in store.list_artifacts()] == ["export-new.zip"]

    def test_sweep_on_missing_directory(self, tmp_path):
        assert ArtifactStore(tmp_path / "missing").sweep() == 0

    def test_is_expired(self, store, clock):
        record = store.save("job-1", b"data")
        assert not store.is_expired(record)
        clock.advance(3600)
        assert store.is_expired(record)


class TestFilenames:
    """Only names the store itself produces are ever resolved."""

    @pytest.mark.parametrize(
        "filename",
        ["../secrets.zip", "export-../x.zip", "other.zip", "export-job.tar", "export-a/b.zip"],
    )
    def test_invalid_names_are_not_found(self, store, filename):
        assert store.path_for(filename) is None
        with pytest.raises(NotFoundError):
            store.get(filename)
        assert store.delete(filename) is False

    def test_unknown_name_is_not_found(self, store):
        with pytest.raises(NotFoundError):
            store.get("export-missing.zip")

    def test_delete(self, store):
        store.save("job-1", b"data")

        assert store.delete("export-job-1.zip") is True
        assert store.delete("export-job-1.zip") is False

    def test_artifact_filename(self):
        assert artifact_filename("3f2a") == "export-3f2a.zip"


class TestFormatBytes:
    def test_format_bytes(self):
        assert format_bytes(0) == "0 B"
        assert format_bytes(512) == "512.0 B"
        assert format_bytes(2048) == "2.0 KB"
