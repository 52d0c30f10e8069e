"""
chipmap/scripts/summary.py

This module provides functions to record and summarize pipeline stages.
Each stage is recorded with start and end times, the exact command line,
its return code, the declared result file and an MD5 checksum of that file.

The summary object also carries the chipmap version, the stage protocol
version, the input files, the tool versions and the pipeline end time.
"""

import hashlib
import json
from datetime import datetime, timezone

import pandas as pd

SUMMARY_COLUMNS = ["step", "start", "end", "command", "returncode", "result_file", "md5sum"]


def _now():
    return datetime.now(timezone.utc)


def start_summary(version=None, input_files=None, protocol_version=None, tool_versions=None):
    """
    Initializes a new pipeline summary.

    Args:
        version (str, optional): chipmap version. Defaults to "unknown" if not provided.
        input_files (dict, optional): Dictionary of input files. Defaults to empty dict.
        protocol_version (str, optional): Version of the fixed stage flag sets.
        tool_versions (dict, optional): Versions of the external tools.

    Returns:
        dict: A summary dictionary with pipeline start timestamp and an empty steps list.
    """
    return {
        "pipeline_start": _now().isoformat(),
        "version": version if version is not None else "unknown",
        "stage_protocol_version": protocol_version if protocol_version is not None else "unknown",
        "input_files": input_files if input_files is not None else {},
        "tool_versions": tool_versions if tool_versions is not None else {},
        "steps": [],
    }


def end_summary(summary, status="success"):
    """
    Adds the pipeline end timestamp and final status to the summary.

    Args:
        summary (dict): The summary dictionary to update.
        status (str): "success" or a short failure description.
    """
    summary["pipeline_end"] = _now().isoformat()
    summary["status"] = status


def md5sum(file_path):
    """
    Calculates the MD5 checksum of the given file.

    Args:
        file_path (str): Path to the file.

    Returns:
        str: MD5 hash of the file's contents, or None if the file cannot be read.
    """
    if not file_path:
        return None
    hash_md5 = hashlib.md5()
    try:
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                hash_md5.update(chunk)
        return hash_md5.hexdigest()
    except OSError:
        return None


def record_step(
    summary, step_name, result_file, command, returncode, start_time, end_time, write_summary_path=None
):
    """
    Records a pipeline stage in the summary.

    Optionally, if write_summary_path is provided, the summary is immediately
    written to that file so a failed run still leaves a trace of what ran.

    Args:
        summary (dict): The summary dictionary to update.
        step_name (str): Name of the pipeline stage.
        result_file (str or None): Artifact declared by the stage.
        command (str): Command line that was executed.
        returncode (int or None): Exit status, None for dry runs.
        start_time (datetime): Start time of the stage.
        end_time (datetime): End time of the stage.
        write_summary_path (str, optional): File path to write the summary after recording.
    """
    record = {
        "step": step_name,
        "start": start_time.isoformat(),
        "end": end_time.isoformat(),
        "command": command,
        "returncode": returncode,
        "result_file": result_file,
        "md5sum": md5sum(result_file) if returncode == 0 else None,
    }
    summary["steps"].append(record)

    if write_summary_path is not None:
        write_summary(summary, write_summary_path)


def write_summary(summary, output_path):
    """
    Writes the summary dictionary to a JSON file.

    Args:
        summary (dict): The summary dictionary.
        output_path (str): Path where the summary JSON will be written.
    """
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=4)


def summary_to_dataframe(summary):
    """One row per recorded stage, columns as in SUMMARY_COLUMNS."""
    return pd.DataFrame(summary.get("steps", []), columns=SUMMARY_COLUMNS)


def convert_summary_to_csv(summary, output_csv_path):
    """
    Converts the summary steps into a CSV file.

    Args:
        summary (dict): The summary dictionary.
        output_csv_path (str): Path where the CSV file will be written.
    """
    summary_to_dataframe(summary).to_csv(output_csv_path, index=False)


def convert_summary_to_tsv(summary, output_tsv_path):
    """
    Converts the summary steps into a TSV file.

    Args:
        summary (dict): The summary dictionary.
        output_tsv_path (str): Path where the TSV file will be written.
    """
    summary_to_dataframe(summary).to_csv(output_tsv_path, sep="\t", index=False)
