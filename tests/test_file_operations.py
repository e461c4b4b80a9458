"""Tests for the file operation executor."""

import errno
import os
import shutil
from pathlib import Path
from unittest.mock import Mock

import pytest

from floatsort.core import file_operations
from floatsort.core.activity_log import InMemoryActivityLog, OperationType
from floatsort.core.file_operations import (
    FileOperationExecutor,
    OutcomeKind,
    generate_copy_name,
)
from floatsort.core.rule_engine import RuleEngine
from floatsort.exceptions import FileOperationError
from floatsort.models.file_info import FileInfo
from floatsort.models.rules import (
    ConflictStrategy,
    CopyToAction,
    DeleteAction,
    ExtensionCondition,
    MoveToAction,
    NameRegexCondition,
    RenameAction,
    Rule,
)


def make_rule(action, strategy=ConflictStrategy.SKIP, conditions=None):
    return Rule(
        id="rule",
        name="Test Rule",
        action=action,
        conditions=tuple(conditions or (ExtensionCondition(("txt",)),)),
        conflict_strategy=strategy,
    )


@pytest.fixture
def source(tmp_path):
    """Create a source file inside a watch folder."""
    watch = tmp_path / "watch"
    watch.mkdir()
    path = watch / "x.txt"
    path.write_text("new content")
    return path


@pytest.fixture
def activity():
    return InMemoryActivityLog()


@pytest.fixture
def executor(activity):
    return FileOperationExecutor(activity_log=activity)


class TestGenerateCopyName:
    """Test conflict rename candidates."""

    def test_first_candidate(self, tmp_path):
        assert generate_copy_name(tmp_path / "x.txt") == tmp_path / "x (copy).txt"

    def test_numbered_candidates(self, tmp_path):
        (tmp_path / "x (copy).txt").touch()
        (tmp_path / "x (copy 2).txt").touch()

        assert generate_copy_name(tmp_path / "x.txt") == tmp_path / "x (copy 3).txt"

    def test_no_extension(self, tmp_path):
        assert generate_copy_name(tmp_path / "Makefile") == tmp_path / "Makefile (copy)"

    def test_exhaustion_is_an_error(self, tmp_path):
        (tmp_path / "x (copy).txt").touch()
        (tmp_path / "x (copy 2).txt").touch()

        with pytest.raises(FileOperationError):
            generate_copy_name(tmp_path / "x.txt", max_attempts=2)


class TestMoveAndCopy:
    """Test move and copy actions."""

    def test_move_creates_destination(self, executor, source, activity):
        result = executor.organize(FileInfo.from_path(source), make_rule(MoveToAction("Sorted/Text")))

        target = source.parent / "Sorted" / "Text" / "x.txt"
        assert result.is_success()
        assert result.value().kind == OutcomeKind.MOVED
        assert result.value().destination == target
        assert target.read_text() == "new content"
        assert not source.exists()

        entry = activity.entries[-1]
        assert entry.operation == OperationType.MOVE
        assert entry.success
        assert entry.rule_name == "Test Rule"
        assert entry.destination == str(target)

    def test_copy_keeps_source(self, executor, source):
        result = executor.organize(FileInfo.from_path(source), make_rule(CopyToAction("Backup")))

        assert result.value().kind == OutcomeKind.COPIED
        assert source.exists()
        assert (source.parent / "Backup" / "x.txt").read_text() == "new content"
        assert not list((source.parent / "Backup").glob(".*.partial"))

    def test_absolute_destination(self, executor, source, tmp_path):
        target_dir = tmp_path / "elsewhere"

        executor.organize(FileInfo.from_path(source), make_rule(MoveToAction(str(target_dir))))

        assert (target_dir / "x.txt").exists()

    def test_regex_captures_in_destination(self, activity, tmp_path):
        watch = tmp_path / "watch"
        watch.mkdir()
        path = watch / "42-report.txt"
        path.write_text("data")
        rule = make_rule(MoveToAction("Archive/$1/${2}"), conditions=[NameRegexCondition(r"^(\d+)-(.+)\.txt$")])
        engine = RuleEngine([rule])
        executor = FileOperationExecutor(activity_log=activity, engine=engine)

        info = FileInfo.from_path(path)
        match = engine.find_matching_rule(info)
        result = executor.organize_match(info, match)

        assert result.value().destination == watch / "Archive" / "42" / "report" / "42-report.txt"

    def test_directory_move(self, executor, tmp_path):
        folder = tmp_path / "album"
        folder.mkdir()
        (folder / "track.txt").write_text("a")

        result = executor.organize(FileInfo.from_path(folder), make_rule(MoveToAction("Folders")))

        assert result.is_success()
        assert (tmp_path / "Folders" / "album" / "track.txt").exists()


class TestConflicts:
    """Test conflict strategies."""

    @pytest.fixture
    def existing(self, source):
        target_dir = source.parent / "Sorted"
        target_dir.mkdir()
        existing = target_dir / "x.txt"
        existing.write_text("old content")
        return existing

    def test_skip_leaves_both_files(self, executor, source, existing, activity):
        result = executor.organize(FileInfo.from_path(source), make_rule(MoveToAction("Sorted")))

        outcome = result.value()
        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.reason == "destination exists"
        assert source.read_text() == "new content"
        assert existing.read_text() == "old content"
        assert activity.entries[-1].detail == "destination exists"

    def test_overwrite_replaces(self, executor, source, existing):
        result = executor.organize(
            FileInfo.from_path(source), make_rule(MoveToAction("Sorted"), ConflictStrategy.OVERWRITE)
        )

        assert result.value().kind == OutcomeKind.MOVED
        assert existing.read_text() == "new content"
        assert not source.exists()

    def test_rename_uses_copy_suffix(self, executor, source, existing):
        rule = make_rule(MoveToAction("Sorted"), ConflictStrategy.RENAME)

        result = executor.organize(FileInfo.from_path(source), rule)

        renamed = existing.parent / "x (copy).txt"
        assert result.value().destination == renamed
        assert renamed.read_text() == "new content"
        assert existing.read_text() == "old content"

    def test_rename_twice_numbers_copies(self, executor, source, existing):
        rule = make_rule(CopyToAction("Sorted"), ConflictStrategy.RENAME)

        executor.organize(FileInfo.from_path(source), rule)
        result = executor.organize(FileInfo.from_path(source), rule)

        assert result.value().destination == existing.parent / "x (copy 2).txt"


class TestRenameAndDelete:
    """Test rename, delete and trash actions."""

    def test_rename_in_place(self, executor, source):
        result = executor.organize(FileInfo.from_path(source), make_rule(RenameAction("{name}-done.{ext}")))

        assert result.value().kind == OutcomeKind.RENAMED
        assert (source.parent / "x-done.txt").exists()
        assert not source.exists()

    def test_rename_onto_itself_is_skipped(self, executor, source):
        result = executor.organize(FileInfo.from_path(source), make_rule(RenameAction("{name}.{ext}")))

        assert result.value().kind == OutcomeKind.SKIPPED
        assert source.exists()

    def test_rename_into_missing_directory_fails(self, executor, source, activity):
        result = executor.organize(FileInfo.from_path(source), make_rule(RenameAction("nope/{name}.{ext}")))

        assert result.is_failure()
        assert isinstance(result.error(), FileOperationError)
        assert source.exists()
        assert not activity.entries[-1].success

    def test_delete(self, executor, source, activity):
        result = executor.organize(FileInfo.from_path(source), make_rule(DeleteAction()))

        assert result.value().kind == OutcomeKind.DELETED
        assert not source.exists()
        assert activity.entries[-1].operation == OperationType.DELETE

    def test_recycle_uses_send2trash(self, executor, source, activity, monkeypatch):
        trash = Mock()
        monkeypatch.setattr(file_operations, "send2trash", trash)

        result = executor.organize(FileInfo.from_path(source), make_rule(MoveToAction("{recycle}")))

        trash.assert_called_once_with(str(source))
        assert result.value().kind == OutcomeKind.TRASHED
        entry = activity.entries[-1]
        assert entry.operation == OperationType.TRASH
        assert entry.destination is None

    def test_copy_to_recycle_is_rejected(self, executor, source, activity, tmp_path, monkeypatch):
        cwd = tmp_path / "cwd"
        cwd.mkdir()
        monkeypatch.chdir(cwd)
        trash = Mock()
        monkeypatch.setattr(file_operations, "send2trash", trash)

        result = executor.organize(FileInfo.from_path(source), make_rule(CopyToAction("{recycle}")))

        assert result.is_failure()
        assert "trash" in str(result.error())
        assert source.exists()
        assert not (cwd / "{recycle}").exists()
        assert not (source.parent / "{recycle}").exists()
        trash.assert_not_called()
        entry = activity.entries[-1]
        assert entry.operation == OperationType.COPY
        assert not entry.success
        assert entry.destination is None


class TestFailures:
    """Test failure reporting and the cross-device fallback."""

    def test_missing_source(self, executor, source, activity):
        info = FileInfo.from_path(source)
        source.unlink()

        result = executor.organize(info, make_rule(MoveToAction("Sorted")))

        assert result.is_failure()
        assert "no longer exists" in str(result.error())
        assert activity.failures()

    def test_cross_device_move_falls_back_to_copy(self, executor, source, monkeypatch):
        real_replace = os.replace

        def replace(src, dst):
            if Path(src) == source:
                raise OSError(errno.EXDEV, "Invalid cross-device link")
            return real_replace(src, dst)

        monkeypatch.setattr(file_operations.os, "replace", replace)

        result = executor.organize(FileInfo.from_path(source), make_rule(MoveToAction("Sorted")))

        assert result.value().kind == OutcomeKind.MOVED
        assert (source.parent / "Sorted" / "x.txt").read_text() == "new content"
        assert not source.exists()

    def test_failed_cross_device_copy_keeps_source(self, executor, source, monkeypatch):
        def replace(src, dst):
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        def copy2(src, dst):
            Path(dst).write_text("partial")
            raise OSError(errno.ENOSPC, "No space left on device")

        monkeypatch.setattr(file_operations.os, "replace", replace)
        monkeypatch.setattr(file_operations.shutil, "copy2", copy2)

        result = executor.organize(FileInfo.from_path(source), make_rule(MoveToAction("Sorted")))

        assert result.is_failure()
        assert "source kept" in str(result.error())
        assert source.read_text() == "new content"
        assert list((source.parent / "Sorted").iterdir()) == []

    def test_failed_source_delete_after_copy_is_reported(self, executor, source, monkeypatch):
        real_replace = os.replace

        def replace(src, dst):
            if Path(src) == source:
                raise OSError(errno.EXDEV, "Invalid cross-device link")
            return real_replace(src, dst)

        def remove(path):
            raise PermissionError(errno.EACCES, "Permission denied")

        monkeypatch.setattr(file_operations.os, "replace", replace)
        monkeypatch.setattr(FileOperationExecutor, "_remove", staticmethod(remove))

        result = executor.organize(FileInfo.from_path(source), make_rule(MoveToAction("Sorted")))

        assert result.is_failure()
        assert "could not remove the source" in str(result.error())
        assert source.exists()
        assert (source.parent / "Sorted" / "x.txt").exists()

    def test_other_os_errors_become_failures(self, executor, source, monkeypatch):
        def replace(src, dst):
            raise PermissionError(errno.EACCES, "Permission denied")

        monkeypatch.setattr(file_operations.os, "replace", replace)

        result = executor.organize(FileInfo.from_path(source), make_rule(MoveToAction("Sorted")))

        assert result.is_failure()
        assert isinstance(result.error(), FileOperationError)

    def test_activity_log_errors_do_not_propagate(self, source):
        log = Mock()
        log.record.side_effect = RuntimeError("disk full")
        executor = FileOperationExecutor(activity_log=log)

        result = executor.organize(FileInfo.from_path(source), make_rule(CopyToAction("Copies")))

        assert result.is_success()
        log.record.assert_called_once()


class TestDestinationLocks:
    """Test the per-directory locks taken around writes."""

    def test_locks_are_released_after_use(self, executor, tmp_path):
        watch = tmp_path / "watch"
        watch.mkdir()
        for day in ("01", "02", "03"):
            path = watch / f"{day}.txt"
            path.write_text(day)
            result = executor.organize(FileInfo.from_path(path), make_rule(MoveToAction(f"2024/06/{day}")))
            assert result.is_success()

        assert executor._locks == {}

    def test_lock_is_released_when_the_write_fails(self, executor, source, monkeypatch):
        def fail(*args):
            raise OSError(errno.EACCES, "Permission denied")

        monkeypatch.setattr(file_operations.os, "replace", fail)

        result = executor.organize(FileInfo.from_path(source), make_rule(MoveToAction("Archive")))

        assert result.is_failure()
        assert executor._locks == {}
