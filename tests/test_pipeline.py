import shutil
import subprocess
import zipfile
from pathlib import Path

import pytest

import diag_converter.decoders as decoders
import diag_converter.pipeline as pipeline
from diag_converter.exceptions import ExtractionError, PackagingError
from diag_converter.packager import RetryPolicy
from diag_converter.pipeline import prepare_working_dir, run_pipeline

EVENT_XML = (
    "<Event xmlns='http://schemas.microsoft.com/win/2004/08/events/event'><System>"
    "<Provider Name='EventLog'/><EventID>6005</EventID><Level>4</Level>"
    "<TimeCreated SystemTime='2024-03-01T09:00:00.000Z'/></System>"
    "<RenderingInfo Culture='en-US'><Message>The Event log service was started."
    "</Message><Level>Information</Level></RenderingInfo></Event>\n"
)

SETUPDIAG_XML = (
    "<SetupDiagReportData>"
    "<Error><Code>0x1</Code><Message>one</Message></Error>"
    "<Error><Code>0x2</Code><Message>two</Message></Error>"
    "<Error><Code>0x3</Code><Message>three</Message></Error>"
    "</SetupDiagReportData>"
)

NO_RETRY = RetryPolicy(max_attempts=1, delay_seconds=0)


@pytest.fixture
def fake_decoders(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(shutil, "which", lambda tool: f"C:\\Windows\\System32\\{tool}.exe")

    def fake_run(command, **kwargs):
        if command[0] == "wevtutil":
            return subprocess.CompletedProcess(command, 0, stdout=EVENT_XML, stderr="")
        if command[0] == "tracerpt":
            raise subprocess.CalledProcessError(1, command, stderr="Trace is damaged")
        raise AssertionError(f"unexpected command {command}")

    monkeypatch.setattr(decoders.subprocess, "run", fake_run)


def _bundle(path: Path) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("Registry/policy.reg", "Windows Registry Editor Version 5.00\r\n")
        zf.writestr("empty.evtx", b"")
        zf.writestr("notes.txt", "No Results - Error")
        zf.writestr("unknown.dat", b"x" * 50)
        zf.writestr("SetupDiagResults.xml", SETUPDIAG_XML)
        zf.writestr("EventLogs/System.evtx", b"ElfFile\x00" + b"\x00" * 32)
        zf.writestr("Traces/setup.etl", b"\x00" * 64)
    return path


def test_run_pipeline_produces_merged_archive(
    tmp_path: Path, fake_decoders: None
) -> None:
    archive = _bundle(tmp_path / "PC01.zip")

    result = run_pipeline(archive, work_root=tmp_path / "work", retry_policy=NO_RETRY)

    assert result.archive_path == tmp_path / "PC01-processed.zip"
    assert result.raw_files == 7
    assert result.conversion.total == 5
    assert result.conversion.converted == 3
    assert result.conversion.failed == 1
    assert result.conversion.empty == 1
    assert result.warnings == []
    assert not result.work_dir.exists()

    with zipfile.ZipFile(result.archive_path) as zf:
        names = sorted(zf.namelist())
        readme = zf.read("README.TXT").decode("utf-8")

    assert names == [
        "README.TXT",
        "SetupDiagResults.csv",
        "System.evtx.csv",
        "Traces/setup.etl",
        "policy.reg.csv",
        "unknown.dat",
    ]
    assert "Source archive: PC01.zip" in readme
    assert readme.rstrip().endswith("unknown.dat")


def test_run_pipeline_rejects_existing_output(tmp_path: Path) -> None:
    archive = _bundle(tmp_path / "PC01.zip")
    (tmp_path / "PC01-processed.zip").write_bytes(b"old")

    with pytest.raises(PackagingError):
        run_pipeline(archive, work_root=tmp_path / "work")
    assert not (tmp_path / "work").exists() or not any((tmp_path / "work").iterdir())


def test_run_pipeline_keeps_work_dir_on_packaging_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, fake_decoders: None
) -> None:
    archive = _bundle(tmp_path / "PC01.zip")

    def failing_create_archive(source_dir, destination, overwrite=False):
        raise PackagingError("disk full")

    monkeypatch.setattr(pipeline, "create_archive", failing_create_archive)

    with pytest.raises(PackagingError) as excinfo:
        run_pipeline(archive, work_root=tmp_path / "work", retry_policy=NO_RETRY)

    work_dir = excinfo.value.work_dir
    assert work_dir is not None
    assert (work_dir / "final" / "README.TXT").exists()


def test_run_pipeline_cleans_up_after_extraction_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    archive = _bundle(tmp_path / "PC01.zip")

    def broken_extract(archive_path, destination):
        raise ExtractionError("corrupt")

    monkeypatch.setattr(pipeline, "extract_archive", broken_extract)

    with pytest.raises(ExtractionError):
        run_pipeline(archive, work_root=tmp_path / "work", retry_policy=NO_RETRY)
    assert list((tmp_path / "work").iterdir()) == []


def test_prepare_working_dir_removes_leftovers(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("COMPUTERNAME", "PC 01")
    leftover = tmp_path / "diag-converter-PC_01"
    leftover.mkdir()
    (leftover / "stale.txt").write_text("old", encoding="utf-8")

    work_dir = prepare_working_dir(tmp_path, NO_RETRY)

    assert work_dir == leftover
    assert list(work_dir.iterdir()) == []
