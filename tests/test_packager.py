import shutil
import zipfile
from pathlib import Path

import pytest

from diag_converter.exceptions import CleanupWarning, PackagingError
from diag_converter.packager import (
    RetryPolicy,
    cleanup_working_dir,
    create_archive,
    output_archive_path,
    remove_empty_files,
)


def test_output_archive_path_is_sibling(tmp_path: Path) -> None:
    assert output_archive_path(tmp_path / "PC01.zip") == tmp_path / "PC01-processed.zip"


def test_remove_empty_files(tmp_path: Path) -> None:
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "empty.log").write_bytes(b"")
    (tmp_path / "keep.txt").write_text("x", encoding="utf-8")

    assert remove_empty_files(tmp_path) == 1
    assert not (tmp_path / "sub" / "empty.log").exists()
    assert (tmp_path / "keep.txt").exists()


def test_create_archive_stores_relative_paths(tmp_path: Path) -> None:
    source = tmp_path / "final"
    (source / "Logs").mkdir(parents=True)
    (source / "README.TXT").write_text("index", encoding="utf-8")
    (source / "Logs" / "setupact.log").write_text("log", encoding="utf-8")
    destination = tmp_path / "out.zip"

    assert create_archive(source, destination) == destination

    with zipfile.ZipFile(destination) as zf:
        assert sorted(zf.namelist()) == ["Logs/setupact.log", "README.TXT"]
    assert not (tmp_path / "out.zip.partial").exists()


def test_create_archive_refuses_existing_destination(tmp_path: Path) -> None:
    source = tmp_path / "final"
    source.mkdir()
    (source / "README.TXT").write_text("index", encoding="utf-8")
    destination = tmp_path / "out.zip"
    destination.write_bytes(b"old")

    with pytest.raises(PackagingError):
        create_archive(source, destination)
    assert destination.read_bytes() == b"old"

    create_archive(source, destination, overwrite=True)
    assert zipfile.is_zipfile(destination)


def test_retry_policy_retries_until_success() -> None:
    calls = []
    sleeps = []

    def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise PermissionError("locked")
        return "done"

    policy = RetryPolicy(max_attempts=5, delay_seconds=0.5)
    assert policy.call(flaky, sleep=sleeps.append) == "done"
    assert len(calls) == 3
    assert sleeps == [0.5, 0.5]


def test_retry_policy_reraises_after_last_attempt() -> None:
    sleeps = []

    def always_locked() -> None:
        raise PermissionError("locked")

    with pytest.raises(PermissionError):
        RetryPolicy(max_attempts=3, delay_seconds=1).call(always_locked, sleep=sleeps.append)
    assert sleeps == [1, 1]


def test_cleanup_working_dir_removes_tree(tmp_path: Path) -> None:
    work = tmp_path / "work"
    (work / "a").mkdir(parents=True)
    (work / "a" / "f.txt").write_text("x", encoding="utf-8")

    assert cleanup_working_dir(work, RetryPolicy(delay_seconds=0)) is None
    assert not work.exists()


def test_cleanup_working_dir_returns_warning_when_locked(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    work = tmp_path / "work"
    work.mkdir()
    attempts = []

    def locked_rmtree(path, *args, **kwargs):
        attempts.append(path)
        raise PermissionError("file in use")

    monkeypatch.setattr(shutil, "rmtree", locked_rmtree)

    warning = cleanup_working_dir(work, RetryPolicy(max_attempts=4), sleep=lambda _: None)

    assert isinstance(warning, CleanupWarning)
    assert warning.path == work
    assert len(attempts) == 4
    assert work.exists()
