"""End-to-end tests for SyncEngine and SyncWorker.

Every test runs a real synchronisation between two temporary trees.
Unreadable files are simulated by patching the checksum function the
engine hashes with.
"""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path

import pytest

from conftest import crc, list_tree, write_tree
from synchive.config_schema import RunConfiguration
from synchive.errors import ConfigurationError, IntegrityError
from synchive.sync import engine as engine_module
from synchive.sync.engine import SyncEngine, SyncWorker, check_roots
from synchive.sync.events import NullListener
from synchive.sync.manifest import Manifest
from synchive.sync.models import AuditCategory, RunStatus, SyncAction
from synchive.sync.scanner import (
    AUDIT_FILE_NAME,
    LEFTOVER_DIR_NAME,
    MANIFEST_FILE_NAME,
)


class RecordingListener(NullListener):
    """Collects every event; optionally cancels on a chosen audit line."""

    def __init__(self, cancel_on: str | None = None) -> None:
        self.audit = []
        self.progress = []
        self.statuses = []
        self.cancel_on = cancel_on
        self.engine: SyncEngine | None = None

    def on_audit(self, entry):
        self.audit.append(entry)
        if self.cancel_on and entry.message.startswith(self.cancel_on):
            self.engine.cancel()

    def on_progress(self, snapshot):
        self.progress.append(snapshot)

    def on_status(self, status):
        self.statuses.append(status)


@pytest.fixture
def unreadable(monkeypatch):
    """Set of absolute paths whose bytes cannot be read."""
    paths: set[Path] = set()
    real = engine_module.compute_checksum

    def fake(path, *args, **kwargs):
        if Path(path).resolve() in paths:
            raise IntegrityError(str(path), "unable to read: Permission denied")
        return real(path, *args, **kwargs)

    monkeypatch.setattr("synchive.sync.engine.compute_checksum", fake)

    class Paths:
        def add(self, path: Path) -> None:
            paths.add(path.resolve())

    return Paths()


def user_files(root: Path) -> dict[str, bytes]:
    """Destination contents minus manifest, audit trail and leftovers."""
    return {
        rel: data
        for rel, data in list_tree(root).items()
        if rel not in (MANIFEST_FILE_NAME, AUDIT_FILE_NAME)
        and not rel.startswith(LEFTOVER_DIR_NAME + "/")
    }


def assert_manifest_complete(destination: Path) -> None:
    expected = {rel: crc(data) for rel, data in user_files(destination).items()}
    assert Manifest.load(destination).to_dict() == expected


def audit_lines(destination: Path) -> list[str]:
    path = destination / AUDIT_FILE_NAME
    if not path.exists():
        return []
    return path.read_text(encoding="utf-8").splitlines()


class TestCheckRoots:
    """Tests for run root validation."""

    def test_missing_source(self, tmp_path):
        with pytest.raises(ConfigurationError, match="does not exist"):
            check_roots(tmp_path / "nope", tmp_path / "dest")

    def test_same_directory(self, source):
        with pytest.raises(ConfigurationError, match="same"):
            check_roots(source, source)

    def test_destination_inside_source(self, source):
        with pytest.raises(ConfigurationError, match="nested"):
            check_roots(source, source / "backup")

    def test_source_inside_destination(self, destination):
        (destination / "src").mkdir()
        with pytest.raises(ConfigurationError, match="nested"):
            check_roots(destination / "src", destination)

    def test_destination_is_file(self, source, tmp_path):
        target = tmp_path / "file.txt"
        target.write_text("x")
        with pytest.raises(ConfigurationError, match="not a directory"):
            check_roots(source, target)

    def test_siblings_ok(self, source, destination):
        check_roots(source, destination)


class TestConfigurationFailure:
    """Tests for runs refused before any file is touched."""

    def test_nested_roots_fail_before_io(self, source):
        write_tree(source, {"a.txt": b"a"})
        listener = RecordingListener()
        engine = SyncEngine(source, source / "backup", listener=listener)

        with pytest.raises(ConfigurationError):
            engine.run()

        assert listener.statuses == [RunStatus.FAILED]
        assert listener.audit == []
        assert not (source / "backup").exists()

    def test_missing_source(self, tmp_path, destination):
        engine = SyncEngine(tmp_path / "missing", destination)
        with pytest.raises(ConfigurationError):
            engine.run()
        assert list_tree(destination) == {}


class TestBasicSync:
    """Tests for copy, rename, skip and quarantine decisions."""

    def test_copy_into_empty_destination(self, source, destination, config):
        write_tree(source, {"photo.jpg": b"jpeg bytes", "docs/a.txt": b"text"})

        report = SyncEngine(source, destination, config).run()

        assert report.status == RunStatus.SUCCESS
        assert len(report.copied) == 2
        assert user_files(destination) == {
            "photo.jpg": b"jpeg bytes",
            "docs/a.txt": b"text",
        }
        assert report.manifest_written
        assert_manifest_complete(destination)

    def test_copy_with_embedding(self, source, destination, embed_config):
        data = b"jpeg bytes"
        write_tree(source, {"photo.jpg": data})

        report = SyncEngine(source, destination, embed_config).run()

        expected = f"photo [{crc(data).upper()}].jpg"
        assert report.copied[0].target_path == expected
        assert user_files(destination) == {expected: data}
        assert_manifest_complete(destination)

    def test_embedding_respects_extension_filter(self, source, destination):
        write_tree(source, {"photo.jpg": b"p", "notes.txt": b"n"})
        config = RunConfiguration(
            embed_checksum_in_filename=True,
            extension_filter=".jpg",
            progress_interval=0.0,
        )

        SyncEngine(source, destination, config).run()

        assert set(user_files(destination)) == {
            f"photo [{crc(b'p').upper()}].jpg",
            "notes.txt",
        }

    def test_rename_in_place(self, source, destination, config):
        write_tree(source, {"a.txt": b"same bytes"})
        write_tree(destination, {"old_a.txt": b"same bytes"})

        report = SyncEngine(source, destination, config).run()

        assert report.status == RunStatus.SUCCESS
        assert [(r.destination_path, r.target_path) for r in report.renamed] == [
            ("old_a.txt", "a.txt")
        ]
        assert report.copied == []
        assert user_files(destination) == {"a.txt": b"same bytes"}
        assert_manifest_complete(destination)

    def test_orphan_quarantined(self, source, destination, config):
        write_tree(source, {"keep.txt": b"k"})
        write_tree(destination, {"keep.txt": b"k", "old/stale.txt": b"s"})

        report = SyncEngine(source, destination, config).run()

        assert [r.target_path for r in report.quarantined] == [
            "~leftovers/old/stale.txt"
        ]
        assert list_tree(destination)["~leftovers/old/stale.txt"] == b"s"
        assert user_files(destination) == {"keep.txt": b"k"}
        assert "old/stale.txt" not in Manifest.load(destination)

    def test_changed_file_replaced(self, source, destination, config):
        """Same path, different bytes: old file quarantined, new one copied."""
        write_tree(source, {"a.txt": b"new"})
        write_tree(destination, {"a.txt": b"old"})

        report = SyncEngine(source, destination, config).run()

        assert report.status == RunStatus.SUCCESS
        assert user_files(destination) == {"a.txt": b"new"}
        assert list_tree(destination)["~leftovers/a.txt"] == b"old"

    def test_duplicate_sources_share_one_destination_file(
        self, source, destination, config
    ):
        write_tree(source, {"a.txt": b"dup", "b.txt": b"dup"})
        write_tree(destination, {"b.txt": b"dup"})

        report = SyncEngine(source, destination, config).run()

        assert [r.relative_path for r in report.skipped] == ["b.txt"]
        assert [r.relative_path for r in report.copied] == ["a.txt"]
        assert user_files(destination) == {"a.txt": b"dup", "b.txt": b"dup"}

    def test_leftover_partial_copy_not_quarantined(
        self, source, destination, config
    ):
        write_tree(source, {"docs/a.txt": b"a"})
        write_tree(destination, {"docs/.a.txt.synchive-partial": b"hal"})

        report = SyncEngine(source, destination, config).run()

        assert report.quarantined == []
        assert list_tree(destination)["docs/a.txt"] == b"a"
        assert "docs/.a.txt.synchive-partial" not in list_tree(destination)
        assert_manifest_complete(destination)

    def test_destination_created(self, source, tmp_path, config):
        write_tree(source, {"a.txt": b"a"})
        destination = tmp_path / "new" / "backup"

        SyncEngine(source, destination, config).run()

        assert user_files(destination) == {"a.txt": b"a"}

    def test_mismatched_filename_checksum_warned(
        self, source, destination, config
    ):
        write_tree(source, {"x [DEADBEEF].txt": b"not deadbeef"})

        report = SyncEngine(source, destination, config).run()

        assert report.status == RunStatus.SUCCESS
        assert any(
            "does not match content checksum" in line
            for line in audit_lines(destination)
        )


class TestIdempotence:
    """Tests for repeated runs."""

    def test_second_run_only_skips(self, source, destination, embed_config):
        write_tree(
            source,
            {"photo.jpg": b"p", "a/b.txt": b"b", "c [0000ABCD].bin": b"c"},
        )
        write_tree(destination, {"orphan.txt": b"o"})
        SyncEngine(source, destination, embed_config).run()
        first = list_tree(destination)

        report = SyncEngine(source, destination, embed_config).run()

        assert report.status == RunStatus.SUCCESS
        assert {r.action for r in report.results} == {SyncAction.SKIP}
        assert len(report.skipped) == 3
        after = list_tree(destination)
        assert {k: v for k, v in after.items() if k != AUDIT_FILE_NAME} == {
            k: v for k, v in first.items() if k != AUDIT_FILE_NAME
        }

    def test_audit_trail_appends_across_runs(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        SyncEngine(source, destination, config).run()
        first = audit_lines(destination)

        SyncEngine(source, destination, config).run()
        second = audit_lines(destination)

        assert second[: len(first)] == first
        assert len(second) > len(first)

    def test_drift_since_last_run_warned(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        SyncEngine(source, destination, config).run()
        (destination / "a.txt").write_bytes(b"tampered")

        report = SyncEngine(source, destination, config).run()

        assert any(
            "changed since last run" in line for line in audit_lines(destination)
        )
        assert user_files(destination) == {"a.txt": b"a"}
        assert report.status == RunStatus.SUCCESS

    def test_missing_since_last_run_warned(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        SyncEngine(source, destination, config).run()
        (destination / "a.txt").unlink()

        SyncEngine(source, destination, config).run()

        assert any(
            "listed in the previous manifest but missing" in line
            for line in audit_lines(destination)
        )
        assert user_files(destination) == {"a.txt": b"a"}

    def test_garbage_manifest_ignored(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        (destination / MANIFEST_FILE_NAME).write_bytes(b"\xff\xfe\x00garbage")

        report = SyncEngine(source, destination, config).run()

        assert report.status == RunStatus.SUCCESS
        assert Manifest.load(destination).to_dict() == {"a.txt": crc(b"a")}

    def test_unreadable_manifest_is_only_a_warning(
        self, source, destination, config, monkeypatch
    ):
        class LockedManifest(Manifest):
            @classmethod
            def load(cls, destination_root):
                raise PermissionError(13, "Permission denied")

        write_tree(source, {"a.txt": b"a"})
        monkeypatch.setattr(engine_module, "Manifest", LockedManifest)

        report = SyncEngine(source, destination, config).run()

        assert report.status == RunStatus.SUCCESS
        assert any(
            "previous manifest unreadable" in line
            for line in audit_lines(destination)
        )
        assert Manifest.load(destination).get("a.txt") == crc(b"a")


@pytest.mark.skipif(
    sys.platform != "linux", reason="needs byte-string filenames"
)
class TestUndecodableNames:
    """Tests for source names that are not valid UTF-8."""

    def test_run_completes_and_records_name(self, source, destination, config):
        name = os.fsdecode(b"bad\xff.txt")
        write_tree(source, {"good.txt": b"g"})
        (source / name).write_bytes(b"b")

        report = SyncEngine(source, destination, config).run()

        assert report.status == RunStatus.SUCCESS
        assert report.manifest_written
        assert (destination / name).read_bytes() == b"b"
        assert Manifest.load(destination).get(name) == crc(b"b")
        raw = (destination / MANIFEST_FILE_NAME).read_bytes()
        assert b"bad\xff.txt\t" in raw
        assert audit_lines(destination)[-1].endswith(
            "2 copied, 0 renamed, 0 quarantined, 0 unchanged, 0 errors"
        )
        assert any("bad\\udcff.txt" in line for line in audit_lines(destination))


class TestUnreadableFiles:
    """Tests for per-file read failures."""

    def test_unreadable_source(self, source, destination, config, unreadable):
        write_tree(source, {"good.txt": b"g", "bad.txt": b"b"})
        unreadable.add(source / "bad.txt")

        report = SyncEngine(source, destination, config).run()

        assert report.status == RunStatus.COMPLETED_WITH_ERRORS
        assert [r.relative_path for r in report.errors] == ["bad.txt"]
        assert report.errors[0].error_type == "IntegrityError"
        assert user_files(destination) == {"good.txt": b"g"}
        errors = [
            line
            for line in audit_lines(destination)
            if "IntegrityError" in line
        ]
        assert len(errors) == 1
        assert "bad.txt" in errors[0]
        assert Manifest.load(destination).to_dict() == {"good.txt": crc(b"g")}

    def test_unreadable_source_keeps_destination_copy(
        self, source, destination, config, unreadable
    ):
        write_tree(source, {"bad.txt": b"current"})
        write_tree(destination, {"bad.txt": b"older backup"})
        unreadable.add(source / "bad.txt")

        report = SyncEngine(source, destination, config).run()

        assert report.quarantined == []
        assert user_files(destination) == {"bad.txt": b"older backup"}

    def test_unreadable_destination_left_alone(
        self, source, destination, config, unreadable
    ):
        write_tree(source, {"a.txt": b"a"})
        write_tree(destination, {"locked.txt": b"l"})
        unreadable.add(destination / "locked.txt")

        report = SyncEngine(source, destination, config).run()

        assert report.status == RunStatus.COMPLETED_WITH_ERRORS
        assert report.quarantined == []
        assert user_files(destination) == {"a.txt": b"a", "locked.txt": b"l"}
        assert "locked.txt" not in Manifest.load(destination)


class TestTrustedFilenames:
    """Tests for the embedded-checksum fast path."""

    def test_matching_names_not_hashed(self, source, destination, unreadable):
        name = "clip [1234ABCD].mov"
        write_tree(source, {name: b"s"})
        write_tree(destination, {name: b"d"})
        unreadable.add(source / name)
        unreadable.add(destination / name)
        config = RunConfiguration(
            trust_filename_checksums=True, progress_interval=0.0
        )

        report = SyncEngine(source, destination, config).run()

        assert report.status == RunStatus.SUCCESS
        assert [r.relative_path for r in report.skipped] == [name]
        assert Manifest.load(destination).to_dict() == {name: "1234abcd"}

    def test_disabled_by_default(self, source, destination, config):
        name = "clip [1234ABCD].mov"
        write_tree(source, {name: b"s"})
        write_tree(destination, {name: b"d"})

        report = SyncEngine(source, destination, config).run()

        assert report.skipped == []
        assert user_files(destination) == {name: b"s"}


class TestDryRun:
    """Tests for dry runs."""

    def test_changes_nothing(self, source, destination, config):
        write_tree(source, {"a.txt": b"a", "b.txt": b"b"})
        write_tree(destination, {"old_b.txt": b"b", "stale.txt": b"s"})
        before = list_tree(destination)

        report = SyncEngine(source, destination, config).run(dry_run=True)

        assert report.dry_run
        assert report.status == RunStatus.SUCCESS
        assert list_tree(destination) == before
        assert not report.manifest_written
        assert {r.action for r in report.results} == {
            SyncAction.COPY,
            SyncAction.RENAME_IN_PLACE,
            SyncAction.QUARANTINE,
        }

    def test_does_not_create_destination(self, source, tmp_path, config):
        write_tree(source, {"a.txt": b"a"})
        destination = tmp_path / "not-yet"

        report = SyncEngine(source, destination, config).run(dry_run=True)

        assert not destination.exists()
        assert [r.target_path for r in report.copied] == ["a.txt"]

    def test_narrates_to_listener(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        listener = RecordingListener()

        SyncEngine(source, destination, config, listener).run(dry_run=True)

        assert any(e.message == "Would copy a.txt" for e in listener.audit)
        assert listener.statuses == [RunStatus.SUCCESS]


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancel_before_run(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        cancel = threading.Event()
        cancel.set()

        report = SyncEngine(source, destination, config, cancel_event=cancel).run()

        assert report.status == RunStatus.CANCELLED
        assert not (destination / MANIFEST_FILE_NAME).exists()
        assert user_files(destination) == {}

    def test_cancel_between_copies(self, source, destination, config):
        write_tree(source, {"a.txt": b"a", "b.txt": b"b", "c.txt": b"c"})
        listener = RecordingListener(cancel_on="Copied")
        engine = SyncEngine(source, destination, config, listener)
        listener.engine = engine

        report = engine.run()

        assert report.status == RunStatus.CANCELLED
        assert listener.statuses == [RunStatus.CANCELLED]
        assert len(user_files(destination)) == 1
        assert not report.manifest_written
        assert not (destination / MANIFEST_FILE_NAME).exists()
        assert any("Run cancelled" in line for line in audit_lines(destination))

    def test_cancel_keeps_previous_manifest(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        SyncEngine(source, destination, config).run()
        manifest_before = (destination / MANIFEST_FILE_NAME).read_bytes()

        write_tree(source, {"b.txt": b"b", "c.txt": b"c"})
        listener = RecordingListener(cancel_on="Copied")
        engine = SyncEngine(source, destination, config, listener)
        listener.engine = engine
        engine.run()

        assert (destination / MANIFEST_FILE_NAME).read_bytes() == manifest_before


class TestEvents:
    """Tests for listener notifications."""

    def test_progress_covers_hashing_and_copying(
        self, source, destination, config
    ):
        write_tree(source, {"a.bin": b"x" * 100})
        listener = RecordingListener()

        report = SyncEngine(source, destination, config, listener).run()

        assert report.bytes_processed == 200
        final = listener.progress[-1]
        assert final.total_bytes == 200
        assert final.percent == 100.0
        assert final.current_path is None

    def test_percent_never_decreases(self, source, destination, config):
        write_tree(source, {"big.bin": b"x" * 100_000})
        listener = RecordingListener()

        SyncEngine(source, destination, config, listener).run()

        percents = [snap.percent for snap in listener.progress]
        assert percents == sorted(percents)
        assert percents[-1] == 100.0

    def test_total_trimmed_to_planned_copies(self, source, destination, config):
        """Files that are already in place are not counted as copy work."""
        write_tree(source, {"same.bin": b"s" * 50, "new.bin": b"n" * 30})
        write_tree(destination, {"same.bin": b"s" * 50})
        listener = RecordingListener()

        report = SyncEngine(source, destination, config, listener).run()

        percents = [snap.percent for snap in listener.progress]
        assert percents == sorted(percents)
        assert report.bytes_processed == 50 + 50 + 30 + 30
        assert listener.progress[-1].total_bytes == report.bytes_processed

    def test_final_status_line_audited(self, source, destination, config):
        write_tree(source, {"a.bin": b"x" * 100})

        SyncEngine(source, destination, config).run()

        status = [
            line for line in audit_lines(destination) if "Read Speed:" in line
        ]
        assert len(status) == 1
        assert "Read: 200 B |" in status[0]
        assert status[0].endswith("100.0%")

    def test_audit_mirrors_file(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        listener = RecordingListener()

        SyncEngine(source, destination, config, listener).run()

        lines = audit_lines(destination)
        assert len(lines) == len(listener.audit)
        assert listener.audit[0].category == AuditCategory.RUN
        assert listener.audit[-1].message.startswith("Finished with status success")
        assert listener.statuses == [RunStatus.SUCCESS]


class TestSyncWorker:
    """Tests for running the engine on a background thread."""

    def test_join_returns_report(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        worker = SyncWorker(SyncEngine(source, destination, config))
        worker.start()

        report = worker.join(timeout=30)

        assert report is not None
        assert report.status == RunStatus.SUCCESS
        assert not worker.is_alive()

    def test_dry_run_flag_passed(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        worker = SyncWorker(SyncEngine(source, destination, config), dry_run=True)
        worker.start()
        assert worker.join(timeout=30).dry_run
        assert user_files(destination) == {}

    def test_join_reraises_configuration_error(self, source):
        worker = SyncWorker(SyncEngine(source, source))
        worker.start()
        with pytest.raises(ConfigurationError):
            worker.join(timeout=30)

    def test_cancel(self, source, destination, config):
        write_tree(source, {"a.txt": b"a"})
        engine = SyncEngine(source, destination, config)
        worker = SyncWorker(engine)
        worker.cancel()
        worker.start()
        assert worker.join(timeout=30).status == RunStatus.CANCELLED


class TestForcedCollision:
    """Distinct contents sharing one checksum are handled the same way
    on every run."""

    def test_same_decisions_every_run(self, source, destination, config, monkeypatch):
        monkeypatch.setattr(
            "synchive.sync.engine.compute_checksum",
            lambda path, *args, **kwargs: "0000c0de",
        )
        write_tree(source, {"a.txt": b"first", "b.txt": b"second"})
        write_tree(destination, {"x.txt": b"third"})

        plans = []
        for _ in range(2):
            report = SyncEngine(source, destination, config).run(dry_run=True)
            plans.append(
                [
                    (r.action, r.relative_path, r.destination_path, r.target_path)
                    for r in report.results
                ]
            )

        assert plans[0] == plans[1]
        assert plans[0][0] == (
            SyncAction.RENAME_IN_PLACE, "a.txt", "x.txt", "a.txt"
        )
        assert plans[0][1] == (SyncAction.COPY, "b.txt", None, "b.txt")
