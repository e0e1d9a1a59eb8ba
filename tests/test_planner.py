from pathlib import Path
from typing import List

import pytest

from diag_converter.adapters import ConversionOutcome
from diag_converter.converter import ConversionResult, convert_all
from diag_converter.exceptions import MergeError
from diag_converter.extractor import RawFile, discover_raw_files
from diag_converter.planner import (
    CopyAction,
    FileOrigin,
    MergePlan,
    SkipReason,
    apply_plan,
    plan_merge,
)


def _paths(plan: MergePlan) -> List[str]:
    return [e.relative_path for e in plan.entries]


def _converted(raw: RawFile, out_dir: Path, name: str) -> ConversionResult:
    return ConversionResult(
        source=raw, outcome=ConversionOutcome.CONVERTED, produced_path=out_dir / name
    )


def test_converted_registry_export_supersedes_raw(tmp_path: Path) -> None:
    raw = RawFile("policy.reg", ".reg", 10, "REGEDIT4")
    result = _converted(raw, tmp_path / "out", "policy.reg.csv")

    plan = plan_merge([raw], [result], tmp_path / "raw")

    assert _paths(plan) == ["policy.reg.csv"]
    assert plan.entries[0].origin == FileOrigin.CONVERTED
    assert plan.skipped == {"policy.reg": SkipReason.SUPERSEDED}


def test_zero_length_event_log_is_dropped(tmp_path: Path) -> None:
    raw = RawFile("empty.evtx", ".evtx", 0)
    result = ConversionResult(source=raw, outcome=ConversionOutcome.EMPTY)

    plan = plan_merge([raw], [result], tmp_path)

    assert plan.entries == []
    assert plan.skipped == {"empty.evtx": SkipReason.ZERO_LENGTH}


def test_sentinel_text_file_is_suppressed(tmp_path: Path) -> None:
    raw = RawFile("notes.txt", ".txt", 18, "No Results - Error")

    plan = plan_merge([raw], [], tmp_path)

    assert plan.entries == []
    assert plan.skipped == {"notes.txt": SkipReason.SENTINEL}


def test_sentinel_xml_report_is_suppressed(tmp_path: Path) -> None:
    raw = RawFile("Reports/Compat.xml", ".xml", 40, "<Report>No Results - Error</Report>")

    plan = plan_merge([raw], [], tmp_path)

    assert plan.entries == []
    assert plan.skipped == {"Reports/Compat.xml": SkipReason.SENTINEL}


def test_sentinel_registry_export_without_result_is_suppressed(tmp_path: Path) -> None:
    raw = RawFile("Registry/Run.reg", ".reg", 18, "no results - error")

    plan = plan_merge([raw], [], tmp_path)

    assert plan.entries == []
    assert plan.skipped == {"Registry/Run.reg": SkipReason.SENTINEL}


def test_sentinel_past_sample_window_is_suppressed(tmp_path: Path) -> None:
    root = tmp_path / "raw"
    root.mkdir()
    (root / "report.txt").write_bytes(b"x" * (70 * 1024) + b"\nNo Results - Error\n")
    (root / "Run.reg").write_bytes(
        b"\xff\xfe" + ("y" * (40 * 1024) + "No Results - Error").encode("utf-16-le")
    )

    raw_files = discover_raw_files(root)
    plan = plan_merge(raw_files, [], root)

    assert plan.entries == []
    assert plan.skipped == {
        "Run.reg": SkipReason.SENTINEL,
        "report.txt": SkipReason.SENTINEL,
    }


def test_converted_result_without_output_path_is_ignored(tmp_path: Path) -> None:
    raw = RawFile("System.evtx", ".evtx", 10)
    result = ConversionResult(source=raw, outcome=ConversionOutcome.CONVERTED)

    plan = plan_merge([raw], [result], tmp_path)

    assert _paths(plan) == ["System.evtx"]
    assert plan.converted_count == 0


def test_sentinel_only_applies_to_textual_types(tmp_path: Path) -> None:
    raw = RawFile("dump.bin", ".bin", 18, "No Results - Error")

    plan = plan_merge([raw], [], tmp_path)

    assert _paths(plan) == ["dump.bin"]


def test_unknown_file_passes_through_at_relative_path(tmp_path: Path) -> None:
    raw = RawFile("Logs/Panther/unknown.dat", ".dat", 50)

    plan = plan_merge([raw], [], tmp_path)

    assert _paths(plan) == ["Logs/Panther/unknown.dat"]
    assert plan.entries[0].origin == FileOrigin.RAW_PASSTHROUGH
    assert plan.actions == [
        CopyAction(tmp_path / "Logs/Panther/unknown.dat", "Logs/Panther/unknown.dat")
    ]


def test_failed_conversion_falls_back_to_raw(tmp_path: Path) -> None:
    raw = RawFile("System.evtx", ".evtx", 4096)
    result = ConversionResult(
        source=raw, outcome=ConversionOutcome.FAILED, error_message="wevtutil failed"
    )

    plan = plan_merge([raw], [result], tmp_path)

    assert _paths(plan) == ["System.evtx"]


def test_setupdiag_scenario_converts_and_excludes_xml(tmp_path: Path) -> None:
    src = tmp_path / "src"
    src.mkdir()
    errors = "".join(
        f"<Error><Code>0x{i}</Code><Message>failure {i}</Message></Error>" for i in range(3)
    )
    (src / "SetupDiagResults.xml").write_text(
        f"<SetupDiagReportData>{errors}</SetupDiagReportData>", encoding="utf-8"
    )
    raw_files = discover_raw_files(src)
    summary = convert_all(raw_files, src, tmp_path / "out")

    plan = plan_merge(raw_files, summary.results, src)
    apply_plan(plan, tmp_path / "final")

    assert _paths(plan) == ["SetupDiagResults.csv"]
    lines = (tmp_path / "final" / "SetupDiagResults.csv").read_text(encoding="utf-8").splitlines()
    assert lines[0] == "Timestamp,Code,Phase,Operation,Message"
    assert len(lines) == 4


def test_no_file_appears_both_converted_and_raw(tmp_path: Path) -> None:
    raws = [
        RawFile("a.reg", ".reg", 5, "x"),
        RawFile("b.evtx", ".evtx", 5),
        RawFile("c.etl", ".etl", 5),
        RawFile("d.txt", ".txt", 5, "fine"),
    ]
    results = [
        _converted(raws[0], tmp_path, "a.reg.csv"),
        ConversionResult(source=raws[1], outcome=ConversionOutcome.FAILED),
        _converted(raws[2], tmp_path, "c.etl.csv"),
    ]

    plan = plan_merge(raws, results, tmp_path)

    assert _paths(plan) == ["a.reg.csv", "c.etl.csv", "b.evtx", "d.txt"]
    converted_sources = {r.source.relative_path for r in results if r.success}
    raw_paths = {e.relative_path for e in plan.entries if e.origin == FileOrigin.RAW_PASSTHROUGH}
    assert not converted_sources & raw_paths


def test_planning_is_idempotent(tmp_path: Path) -> None:
    raws = [
        RawFile("z/late.txt", ".txt", 3, "abc"),
        RawFile("a.reg", ".reg", 5, "x"),
        RawFile("README.TXT", ".txt", 4, "mine"),
    ]
    results = [_converted(raws[1], tmp_path, "a.reg.csv")]

    first = plan_merge(raws, results, tmp_path)
    second = plan_merge(list(reversed(raws)), results, tmp_path)

    assert first == second


def test_manifest_name_is_reserved(tmp_path: Path) -> None:
    raw = RawFile("readme.txt", ".txt", 4, "mine")

    plan = plan_merge([raw], [], tmp_path)

    assert _paths(plan) == ["readme (2).txt"]


def test_apply_plan_copies_files(tmp_path: Path) -> None:
    src = tmp_path / "src"
    (src / "sub").mkdir(parents=True)
    (src / "sub" / "unknown.dat").write_bytes(b"x" * 50)
    raw_files = discover_raw_files(src)

    plan = plan_merge(raw_files, [], src)
    copied = apply_plan(plan, tmp_path / "final")

    assert copied == 1
    assert (tmp_path / "final" / "sub" / "unknown.dat").read_bytes() == b"x" * 50


def test_apply_plan_raises_merge_error_on_io_failure(tmp_path: Path) -> None:
    plan = MergePlan()
    plan.actions.append(CopyAction(tmp_path / "missing.dat", "missing.dat"))

    with pytest.raises(MergeError):
        apply_plan(plan, tmp_path / "final")
