#!/usr/bin/env python3
# chipmap/scripts/stages.py

"""
Stage descriptors for the single-end ChIP-Seq alignment pipeline.

Stages exchange data only through files on disk. Every artifact name is a
pure function of the sample name, and each stage reads exactly the file the
previous stage declared as its output:

    fastq -> fastqc (report, side artifact)
    fastq -> Trimmomatic -> <S>_Trimmomatic_trimmed.fastq.gz
          -> bowtie2     -> <S>_trimmed_single_end_aln_unsorted.sam
          -> samtools    -> <S>_trimmed_single_end_aln_unsorted.bam
          -> sambamba    -> <S>_trimmed_single_end_aln_sorted.bam
          -> sambamba    -> <S>_trimmed_single_end_aln_sorted_uni_mapped.bam

The flags below are fixed. Changing any of them changes pipeline output and
requires bumping STAGE_PROTOCOL_VERSION in chipmap/version.py.
"""

import os
import shlex
from typing import NamedTuple, Optional

from chipmap.scripts.utils import format_command

ARTIFACT_SUFFIXES = {
    "trimmed_fastq": "_Trimmomatic_trimmed.fastq.gz",
    "unsorted_sam": "_trimmed_single_end_aln_unsorted.sam",
    "unsorted_bam": "_trimmed_single_end_aln_unsorted.bam",
    "sorted_bam": "_trimmed_single_end_aln_sorted.bam",
    "final_bam": "_trimmed_single_end_aln_sorted_uni_mapped.bam",
}

# Artifacts that only feed the next stage.
INTERMEDIATE_ARTIFACTS = ("trimmed_fastq", "unsorted_sam", "unsorted_bam", "sorted_bam")

TRIMMOMATIC_STEPS = (
    "LEADING:3",
    "TRAILING:3",
    "SLIDINGWINDOW:4:15",
    "MINLEN:36",
)
ILLUMINACLIP_SETTINGS = "2:30:10"

# Drops multi-mappers (XS tag present), unmapped reads and marked duplicates.
UNIQUE_READ_FILTER = "[XS] == null and not unmapped and not duplicate"

STAGE_ORDER = ("quality_report", "trim", "align", "convert", "sort", "filter")


class Stage(NamedTuple):
    """One external invocation of the pipeline."""

    name: str
    description: str
    command: list
    inputs: tuple
    output: Optional[str]
    stdout_path: Optional[str] = None

    def command_line(self) -> str:
        return format_command(self.command, self.stdout_path)


def artifact_names(sample_name):
    """
    File names of every pipeline artifact for a sample.

    Args:
        sample_name (str): Sample identifier given on the command line.

    Returns:
        dict: Artifact key -> file name.
    """
    return {key: f"{sample_name}{suffix}" for key, suffix in ARTIFACT_SUFFIXES.items()}


def artifact_paths(sample_name, output_dir="."):
    """Artifact key -> path inside ``output_dir``; bare names for the current directory."""
    names = artifact_names(sample_name)
    if output_dir in (None, "", "."):
        return names
    return {key: os.path.join(output_dir, name) for key, name in names.items()}


def build_stages(fastq_path, sample_name, run_config, output_dir="."):
    """
    Build the ordered list of stages for one run.

    Args:
        fastq_path (str): Raw single-end FASTQ(.gz) file.
        sample_name (str): Sample identifier used to name all artifacts.
        run_config (RunConfig): Resolved species configuration and tool commands.
        output_dir (str): Directory receiving every artifact.

    Returns:
        list[Stage]: Stages in execution order.
    """
    paths = artifact_paths(sample_name, output_dir)
    tools = run_config.tools
    threads = str(run_config.threads)
    fastq_path = str(fastq_path)

    return [
        Stage(
            name="quality_report",
            description="FastQC read quality report",
            command=shlex.split(tools["fastqc"]) + [fastq_path],
            inputs=(fastq_path,),
            output=None,
        ),
        Stage(
            name="trim",
            description="Trimmomatic single-end adapter and quality trimming",
            command=shlex.split(tools["trimmomatic"])
            + [
                "SE",
                "-phred33",
                fastq_path,
                paths["trimmed_fastq"],
                f"ILLUMINACLIP:{run_config.adapter_file}:{ILLUMINACLIP_SETTINGS}",
                *TRIMMOMATIC_STEPS,
            ],
            inputs=(fastq_path,),
            output=paths["trimmed_fastq"],
        ),
        Stage(
            name="align",
            description="Bowtie2 local alignment to the reference genome",
            command=shlex.split(tools["bowtie2"])
            + [
                "-p", threads,
                "-q",
                "--local",
                "-x", run_config.genome_index,
                "-U", paths["trimmed_fastq"],
                "-S", paths["unsorted_sam"],
            ],
            inputs=(paths["trimmed_fastq"],),
            output=paths["unsorted_sam"],
        ),
        Stage(
            name="convert",
            description="samtools SAM to BAM conversion",
            command=shlex.split(tools["samtools"])
            + ["view", "-h", "-S", "-b", "-o", paths["unsorted_bam"], paths["unsorted_sam"]],
            inputs=(paths["unsorted_sam"],),
            output=paths["unsorted_bam"],
        ),
        Stage(
            name="sort",
            description="sambamba coordinate sort",
            command=shlex.split(tools["sambamba"])
            + ["sort", "-t", threads, "-o", paths["sorted_bam"], paths["unsorted_bam"]],
            inputs=(paths["unsorted_bam"],),
            output=paths["sorted_bam"],
        ),
        Stage(
            name="filter",
            description="sambamba filter for uniquely mapped, non-duplicate reads",
            command=shlex.split(tools["sambamba"])
            + ["view", "-h", "-t", threads, "-f", "bam", "-F", UNIQUE_READ_FILTER, paths["sorted_bam"]],
            inputs=(paths["sorted_bam"],),
            output=paths["final_bam"],
            stdout_path=paths["final_bam"],
        ),
    ]
