#!/usr/bin/env python3
# chipmap/cli.py
# chipmap CLI entry point

import argparse
import json
import logging
import sys
from pathlib import Path

from chipmap.scripts.pipeline import StageFailedError, run_pipeline
from chipmap.scripts.species_registry import UnsupportedSpeciesError, list_species, normalize_species
from chipmap.scripts.utils import load_config, setup_logging
from chipmap.version import __version__ as VERSION

USAGE = "%(prog)s [options] <fastq.gz_file> <sample_name> <species>"

# argparse messages for a missing or surplus positional argument.
ARGUMENT_COUNT_ERRORS = ("the following arguments are required", "unrecognized arguments")

EPILOG = (
    "example: %(prog)s mouse_Nanog.fastq.gz mNanog mouse\n"
    "Produces <sample_name>_trimmed_single_end_aln_sorted_uni_mapped.bam. "
    "Sample names should contain only letters, digits or underscores."
)


class PipelineArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with exit status 1."""

    def error(self, message):
        self.print_usage(sys.stderr)
        text = f"{self.prog}: error: {message}\n"
        if message.startswith(ARGUMENT_COUNT_ERRORS):
            text += "Please call the program with exactly 3 arguments in the right order.\n"
        self.exit(1, text)


def build_parser():
    parser = PipelineArgumentParser(
        prog="chipmap",
        usage=USAGE,
        description=(
            "chipmap: turn a single-end ChIP-Seq FASTQ file into a sorted BAM of "
            "uniquely mapped reads (FastQC, Trimmomatic, Bowtie2, samtools, sambamba)."
        ),
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("fastq_path", help="Single-end reads in FASTQ(.gz) format.")
    parser.add_argument("sample_name", help="Sample name used to name every output file.")
    parser.add_argument("species", help=f"One of: {', '.join(list_species())}.")

    parser.add_argument(
        "-l",
        "--log-level",
        help="Set the logging level (e.g., DEBUG, INFO, WARNING, ERROR)",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    parser.add_argument(
        "-f", "--log-file", help="Set the log output file (default is <output-dir>/<sample_name>_pipeline.log)"
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument(
        "--config-path",
        type=Path,
        default=None,
        help=(
            "Path to the configuration file (config.json). "
            "If not provided, the default config will be used."
        ),
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        type=str,
        default=None,
        help="Directory for all output files (default: current directory).",
    )
    parser.add_argument(
        "--stage-timeout",
        type=float,
        default=None,
        help="Abort a stage that runs longer than this many seconds.",
    )
    parser.add_argument(
        "--delete-intermediates",
        action="store_true",
        help="Delete the trimmed FASTQ and the unsorted/unfiltered SAM/BAM files after a successful run.",
    )
    parser.add_argument(
        "-n",
        "--dry-run",
        action="store_true",
        help="Print the commands instead of running them.",
    )
    parser.add_argument(
        "--validate-input",
        action="store_true",
        help="Check that the FASTQ file exists and is well formed before running.",
    )
    parser.add_argument(
        "--summary-formats",
        nargs="+",
        choices=["csv", "tsv"],
        default=None,
        help="Additional formats for the pipeline summary (JSON is always written).",
    )
    parser.add_argument(
        "--skip-stats",
        action="store_true",
        help="Do not count reads in the final BAM.",
    )
    return parser


def main(argv=None):
    """
    Parse arguments, set up logging and run the pipeline.

    Exit status: 0 on success, 1 for usage, species, configuration or input
    errors, otherwise the exit status of the failing external tool.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config_path)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"chipmap: failed to load configuration: {exc}", file=sys.stderr)
        sys.exit(1)

    def get_conf(key, fallback):
        return config.get("default_values", {}).get(key, fallback)

    if args.log_level:
        log_level_value = getattr(logging, args.log_level.upper(), logging.INFO)
    else:
        log_level_value = getattr(
            logging,
            config.get("cli_defaults", {}).get("log_level", "INFO").upper(),
            logging.INFO,
        )

    # Console only until the species has been accepted; no files are created before that.
    setup_logging(log_level=log_level_value)

    try:
        normalize_species(args.species)
    except UnsupportedSpeciesError as exc:
        logging.error(str(exc))
        sys.exit(1)

    if args.output_dir is None:
        args.output_dir = get_conf("output_dir", ".")
    if args.stage_timeout is None:
        args.stage_timeout = get_conf("stage_timeout", None)
    if not args.delete_intermediates:
        args.delete_intermediates = get_conf("delete_intermediates", False)
    if not args.validate_input:
        args.validate_input = get_conf("validate_input", False)
    if args.summary_formats is None:
        args.summary_formats = get_conf("summary_formats", [])

    if not args.dry_run:
        if args.log_file:
            log_file_value = args.log_file
        else:
            log_file_value = config.get("cli_defaults", {}).get("log_file") or (
                Path(args.output_dir) / f"{args.sample_name}_pipeline.log"
            )
        log_file_path = Path(log_file_value)
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            setup_logging(log_level=log_level_value, log_file=str(log_file_path))
        except OSError as exc:
            logging.critical(f"Cannot write log file {log_file_path}: {exc}")
            sys.exit(1)
        logging.debug(f"Logging has been set up with level {log_level_value} and log_file {log_file_path}")

    try:
        run_pipeline(
            fastq_path=args.fastq_path,
            sample_name=args.sample_name,
            species=args.species,
            config=config,
            output_dir=args.output_dir,
            stage_timeout=args.stage_timeout,
            delete_intermediates=args.delete_intermediates,
            dry_run=args.dry_run,
            validate_input=args.validate_input,
            summary_formats=args.summary_formats,
            collect_stats=not args.skip_stats,
        )
    except StageFailedError as exc:
        logging.critical(str(exc))
        sys.exit(exc.returncode if exc.returncode > 0 else 1)
    except KeyError as exc:
        logging.critical(f"Invalid configuration, missing entry: {exc}")
        sys.exit(1)
    except ValueError as exc:
        logging.critical(str(exc))
        sys.exit(1)
    except OSError as exc:
        logging.critical(f"File system error: {exc}")
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
