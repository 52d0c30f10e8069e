#!/usr/bin/env python3
# tests/unit/test_pipeline.py

"""
Unit tests for the pipeline driver.

External tools are replaced by RecordingRunner, which records the order in
which stages are invoked and can simulate a failing stage.
"""

import json
import logging
from unittest.mock import patch

import pytest

from chipmap.scripts.pipeline import StageFailedError, remove_intermediates, run_pipeline
from chipmap.scripts.species_registry import UnsupportedSpeciesError
from chipmap.scripts.stages import STAGE_ORDER, artifact_paths
from tests.helpers import RecordingRunner, write_fastq

pytestmark = pytest.mark.unit


def _run(tmp_path, config, runner, **kwargs):
    kwargs.setdefault("collect_stats", False)
    return run_pipeline(
        fastq_path=str(tmp_path / "mouse_Nanog.fastq.gz"),
        sample_name="mNanog",
        species="mouse",
        config=config,
        output_dir=str(tmp_path / "out"),
        runner=runner,
        **kwargs,
    )


def test_end_to_end_mouse(tmp_path, test_config, recording_runner, no_tool_probe):
    result = _run(tmp_path, test_config, recording_runner)

    assert recording_runner.order == list(STAGE_ORDER)
    assert result["stages"] == list(STAGE_ORDER)
    assert result["final_bam"].endswith("mNanog_trimmed_single_end_aln_sorted_uni_mapped.bam")

    align = recording_runner.command_for("align")
    assert align[align.index("-x") + 1] == test_config["reference_data"]["bowtie2_index_mouse"]

    summary = json.loads((tmp_path / "out" / "mNanog_pipeline_summary.json").read_text())
    assert summary["status"] == "success"
    assert summary["species"] == "mouse"
    assert [step["step"] for step in summary["steps"]] == list(STAGE_ORDER)
    assert all(step["returncode"] == 0 for step in summary["steps"])


def test_human_selects_human_index(tmp_path, test_config, recording_runner, no_tool_probe):
    run_pipeline(
        fastq_path="h.fastq.gz",
        sample_name="hS1",
        species="human",
        config=test_config,
        output_dir=str(tmp_path),
        runner=recording_runner,
        collect_stats=False,
    )
    align = recording_runner.command_for("align")
    assert align[align.index("-x") + 1] == test_config["reference_data"]["bowtie2_index_human"]


def test_align_runs_after_trim_and_filter_after_sort(tmp_path, test_config, recording_runner, no_tool_probe):
    _run(tmp_path, test_config, recording_runner)
    order = recording_runner.order
    assert order.index("trim") < order.index("align")
    assert order.index("sort") < order.index("filter")


def test_filter_stage_stdout_goes_to_final_bam(tmp_path, test_config, recording_runner, no_tool_probe):
    result = _run(tmp_path, test_config, recording_runner)
    filter_call = recording_runner.calls[-1]
    assert filter_call["stage"] == "filter"
    assert filter_call["stdout_file"] == result["final_bam"]


def test_align_failure_halts_pipeline(tmp_path, test_config, no_tool_probe):
    runner = RecordingRunner(fail_on="align", returncode=255)

    with pytest.raises(StageFailedError) as exc:
        _run(tmp_path, test_config, runner)

    assert exc.value.stage == "align"
    assert exc.value.returncode == 255
    assert "align" in str(exc.value)
    assert runner.order == ["quality_report", "trim", "align"]

    summary = json.loads((tmp_path / "out" / "mNanog_pipeline_summary.json").read_text())
    assert summary["status"] == "failed at align"
    assert summary["steps"][-1]["step"] == "align"
    assert summary["steps"][-1]["returncode"] == 255


@pytest.mark.parametrize("failing_stage", STAGE_ORDER)
def test_no_stage_runs_after_a_failure(tmp_path, test_config, no_tool_probe, failing_stage):
    runner = RecordingRunner(fail_on=failing_stage)
    with pytest.raises(StageFailedError):
        _run(tmp_path, test_config, runner)
    assert runner.order == list(STAGE_ORDER[: STAGE_ORDER.index(failing_stage) + 1])


def test_unsupported_species_invokes_nothing(tmp_path, test_config, recording_runner, no_tool_probe):
    with pytest.raises(UnsupportedSpeciesError):
        run_pipeline(
            fastq_path="x.fastq.gz",
            sample_name="S1",
            species="rat",
            config=test_config,
            output_dir=str(tmp_path / "out"),
            runner=recording_runner,
        )
    assert recording_runner.calls == []
    no_tool_probe.assert_not_called()
    assert not (tmp_path / "out").exists()


def test_dry_run_executes_nothing(tmp_path, test_config, recording_runner, no_tool_probe, capsys):
    result = _run(tmp_path, test_config, recording_runner, dry_run=True)
    assert recording_runner.calls == []
    assert not (tmp_path / "out").exists()

    printed = capsys.readouterr().out.strip().splitlines()
    assert len(printed) == len(STAGE_ORDER)
    assert printed[0].startswith("fastqc ")
    assert printed[-1].endswith("mNanog_trimmed_single_end_aln_sorted_uni_mapped.bam")
    assert result["summary_file"] is None


def test_stage_timeout_passed_to_runner(tmp_path, test_config, recording_runner, no_tool_probe):
    _run(tmp_path, test_config, recording_runner, stage_timeout=3600)
    assert {call["timeout"] for call in recording_runner.calls} == {3600}


def test_intermediates_retained_by_default(tmp_path, test_config, recording_runner, no_tool_probe):
    out = tmp_path / "out"
    out.mkdir()
    paths = artifact_paths("mNanog", str(out))
    for key in ("trimmed_fastq", "unsorted_sam", "unsorted_bam", "sorted_bam"):
        open(paths[key], "w").close()

    _run(tmp_path, test_config, recording_runner)

    for key in ("trimmed_fastq", "unsorted_sam", "unsorted_bam", "sorted_bam", "final_bam"):
        assert (tmp_path / "out" / paths[key].split("/")[-1]).exists()


def test_delete_intermediates(tmp_path, test_config, recording_runner, no_tool_probe):
    out = tmp_path / "out"
    out.mkdir()
    paths = artifact_paths("mNanog", str(out))
    for key in ("trimmed_fastq", "unsorted_sam", "unsorted_bam", "sorted_bam"):
        open(paths[key], "w").close()

    _run(tmp_path, test_config, recording_runner, delete_intermediates=True)

    for key in ("trimmed_fastq", "unsorted_sam", "unsorted_bam", "sorted_bam"):
        assert not (out / paths[key].split("/")[-1]).exists()
    assert (out / "mNanog_trimmed_single_end_aln_sorted_uni_mapped.bam").exists()


def test_intermediates_kept_after_failure(tmp_path, test_config, no_tool_probe):
    out = tmp_path / "out"
    out.mkdir()
    paths = artifact_paths("mNanog", str(out))
    open(paths["trimmed_fastq"], "w").close()

    with pytest.raises(StageFailedError):
        _run(tmp_path, test_config, RecordingRunner(fail_on="convert"), delete_intermediates=True)
    assert (out / "mNanog_Trimmomatic_trimmed.fastq.gz").exists()


def test_remove_intermediates_skips_missing_files(tmp_path):
    paths = artifact_paths("S1", str(tmp_path))
    open(paths["sorted_bam"], "w").close()
    assert remove_intermediates(paths) == [paths["sorted_bam"]]


def test_validate_input_rejects_missing_fastq(tmp_path, test_config, recording_runner, no_tool_probe):
    with pytest.raises(ValueError, match="does not exist"):
        _run(tmp_path, test_config, recording_runner, validate_input=True)
    assert recording_runner.calls == []


def test_validate_input_accepts_fastq(tmp_path, test_config, recording_runner, no_tool_probe):
    fastq = write_fastq(tmp_path / "reads.fastq")
    run_pipeline(
        fastq_path=str(fastq),
        sample_name="S1",
        species="human",
        config=test_config,
        output_dir=str(tmp_path / "out"),
        runner=recording_runner,
        validate_input=True,
        collect_stats=False,
    )
    assert recording_runner.order == list(STAGE_ORDER)


def test_summary_formats_written(tmp_path, test_config, recording_runner, no_tool_probe):
    _run(tmp_path, test_config, recording_runner, summary_formats=["csv", "tsv"])
    assert (tmp_path / "out" / "mNanog_pipeline_summary.csv").exists()
    tsv_lines = (tmp_path / "out" / "mNanog_pipeline_summary.tsv").read_text().splitlines()
    assert len(tsv_lines) == len(STAGE_ORDER) + 1


def test_alignment_stats_collected(tmp_path, test_config, recording_runner, no_tool_probe):
    counts = {"total": 10, "mapped": 10, "unmapped": 0, "duplicate": 0, "multi_mapped": 0, "unique": 10}
    with patch("chipmap.scripts.pipeline.write_bam_stats", return_value=counts) as stats:
        result = _run(tmp_path, test_config, recording_runner, collect_stats=True)

    stats.assert_called_once()
    assert stats.call_args[0][0] == result["final_bam"]
    assert result["alignment_stats"] == counts
    summary = json.loads((tmp_path / "out" / "mNanog_pipeline_summary.json").read_text())
    assert summary["alignment_stats"]["unique"] == 10


def test_unreadable_final_bam_still_succeeds(tmp_path, test_config, recording_runner, no_tool_probe, caplog):
    out = tmp_path / "out"
    out.mkdir()
    paths = artifact_paths("mNanog", str(out))
    for key in ("trimmed_fastq", "unsorted_sam", "unsorted_bam", "sorted_bam"):
        open(paths[key], "w").close()

    # RecordingRunner writes a placeholder final BAM that pysam cannot open.
    with caplog.at_level(logging.WARNING):
        result = _run(tmp_path, test_config, recording_runner, collect_stats=True, delete_intermediates=True)

    assert result["alignment_stats"] is None
    assert "Could not collect alignment statistics" in caplog.text
    summary = json.loads((out / "mNanog_pipeline_summary.json").read_text())
    assert summary["status"] == "success"
    assert summary["pipeline_end"]
    assert summary["alignment_stats"] is None
    assert "Cannot open BAM" in summary["alignment_stats_error"]
    for key in ("trimmed_fastq", "unsorted_sam", "unsorted_bam", "sorted_bam"):
        assert not (out / paths[key].split("/")[-1]).exists()
