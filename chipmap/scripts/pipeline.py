#!/usr/bin/env python3
# chipmap/scripts/pipeline.py

import logging
import os
import timeit
from datetime import datetime, timezone

from chipmap.scripts.alignment_stats import write_bam_stats
from chipmap.scripts.species_registry import resolve_run_config
from chipmap.scripts.stages import INTERMEDIATE_ARTIFACTS, artifact_paths, build_stages
from chipmap.scripts.summary import (
    convert_summary_to_csv,
    convert_summary_to_tsv,
    end_summary,
    record_step,
    start_summary,
    write_summary,
)
from chipmap.scripts.utils import (
    check_sample_name,
    create_output_directory,
    get_tool_versions,
    run_command,
    validate_fastq_file,
)
from chipmap.version import STAGE_PROTOCOL_VERSION
from chipmap.version import __version__ as VERSION


class StageFailedError(RuntimeError):
    """An external stage exited non-zero; the remaining stages were not run."""

    def __init__(self, stage, returncode, log_file=None):
        self.stage = stage
        self.returncode = returncode
        self.log_file = log_file
        message = f"Stage '{stage}' failed with exit code {returncode}"
        if log_file:
            message += f" (see {log_file})"
        super().__init__(message)


def remove_intermediates(paths):
    """
    Delete intermediate artifacts of a finished run.

    Args:
        paths (dict): Artifact key -> path, as returned by artifact_paths().

    Returns:
        list: Paths that were removed.
    """
    removed = []
    for key in INTERMEDIATE_ARTIFACTS:
        path = paths[key]
        if os.path.exists(path):
            os.remove(path)
            removed.append(path)
            logging.info(f"Removed intermediate file: {path}")
    return removed


def run_pipeline(
    fastq_path,
    sample_name,
    species,
    config,
    output_dir=".",
    runner=None,
    stage_timeout=None,
    delete_intermediates=False,
    dry_run=False,
    validate_input=False,
    summary_formats=None,
    collect_stats=True,
):
    """
    Run the single-end ChIP-Seq pipeline from raw FASTQ to uniquely mapped BAM.

    Stages run strictly one after another. The first stage that exits
    non-zero stops the run; nothing after it is invoked.

    Args:
        fastq_path (str): Raw single-end FASTQ(.gz) file.
        sample_name (str): Sample identifier used to name every artifact.
        species (str): "human" or "mouse".
        config (dict): Configuration dictionary.
        output_dir (str, optional): Directory receiving all artifacts. Default is ".".
        runner (callable, optional): Executes one stage. Called as
            ``runner(command, log_file, stdout_file=..., timeout=...)`` and must
            return a CommandResult. Defaults to run_command.
        stage_timeout (float, optional): Per-stage wall-clock limit in seconds.
        delete_intermediates (bool, optional): Remove intermediate artifacts after success.
        dry_run (bool, optional): Print the commands instead of running them.
        validate_input (bool, optional): Check the FASTQ file before running.
        summary_formats (list, optional): Extra summary formats ('csv', 'tsv').
        collect_stats (bool, optional): Count reads in the final BAM with pysam.

    Returns:
        dict: ``final_bam``, ``summary_file``, ``stages`` (names run, in order)
            and ``alignment_stats`` (None when not collected).

    Raises:
        UnsupportedSpeciesError: If the species is not human or mouse.
        ValueError: If input validation is requested and fails.
        StageFailedError: If an external stage exits non-zero.
    """
    # Species gate: evaluated once, before any file or tool is touched.
    run_config = resolve_run_config(species, config)

    if runner is None:
        runner = run_command
    summary_formats = summary_formats or []

    check_sample_name(sample_name)
    if validate_input:
        validate_fastq_file(fastq_path)

    stages = build_stages(fastq_path, sample_name, run_config, output_dir)
    paths = artifact_paths(sample_name, output_dir)

    if dry_run:
        logging.info("Dry run: commands are printed, not executed.")
        for stage in stages:
            print(stage.command_line())
        return {
            "final_bam": paths["final_bam"],
            "summary_file": None,
            "stages": [],
            "alignment_stats": None,
        }

    create_output_directory(output_dir)

    tool_versions = get_tool_versions(run_config.tools)
    logging.info(f"chipmap {VERSION} started with tool versions: {tool_versions}")

    summary = start_summary(
        version=VERSION,
        input_files={"fastq": os.path.basename(str(fastq_path))},
        protocol_version=STAGE_PROTOCOL_VERSION,
        tool_versions=tool_versions,
    )
    summary["sample_name"] = sample_name
    summary["species"] = run_config.species
    summary["genome_index"] = run_config.genome_index
    summary_file_path = os.path.join(output_dir, f"{sample_name}_pipeline_summary.json")

    overall_start = timeit.default_timer()
    completed = []

    for number, stage in enumerate(stages, start=1):
        log_file = os.path.join(output_dir, f"{sample_name}_{stage.name}.log")
        logging.info(f"Stage {number}/{len(stages)}: {stage.description}")
        logging.info(f"Executing {stage.name} with command: {stage.command_line()}")

        stage_start = datetime.now(timezone.utc)
        result = runner(stage.command, log_file, stdout_file=stage.stdout_path, timeout=stage_timeout)
        stage_end = datetime.now(timezone.utc)

        record_step(
            summary,
            stage.name,
            stage.output,
            stage.command_line(),
            result.returncode,
            stage_start,
            stage_end,
            write_summary_path=summary_file_path,
        )

        if not result.success:
            logging.error(
                f"Stage '{stage.name}' failed with exit code {result.returncode}; "
                f"see {result.log_file}. Remaining stages were not run."
            )
            end_summary(summary, status=f"failed at {stage.name}")
            write_summary(summary, summary_file_path)
            raise StageFailedError(stage.name, result.returncode, result.log_file)

        completed.append(stage.name)
        logging.info(f"Stage '{stage.name}' completed.")

    alignment_stats = None
    if collect_stats:
        stats_path = os.path.join(output_dir, f"{sample_name}_uni_mapped_stats.json")
        # An unreadable final BAM does not fail a run whose stages all succeeded.
        try:
            alignment_stats = write_bam_stats(paths["final_bam"], stats_path)
        except (ValueError, OSError) as e:
            logging.warning(f"Could not collect alignment statistics: {e}")
            summary["alignment_stats_error"] = str(e)
        summary["alignment_stats"] = alignment_stats

    if delete_intermediates:
        summary["removed_intermediates"] = remove_intermediates(paths)

    end_summary(summary)
    write_summary(summary, summary_file_path)
    if "csv" in summary_formats:
        convert_summary_to_csv(summary, os.path.join(output_dir, f"{sample_name}_pipeline_summary.csv"))
    if "tsv" in summary_formats:
        convert_summary_to_tsv(summary, os.path.join(output_dir, f"{sample_name}_pipeline_summary.tsv"))

    elapsed = timeit.default_timer() - overall_start
    logging.info(f"Pipeline finished in {elapsed:.1f} seconds. Final BAM: {paths['final_bam']}")

    return {
        "final_bam": paths["final_bam"],
        "summary_file": summary_file_path,
        "stages": completed,
        "alignment_stats": alignment_stats,
    }
