#!/usr/bin/env python3
# chipmap/scripts/utils.py

import gzip
import importlib.resources as pkg_resources
import json
import logging
import os
import shlex
import subprocess
from typing import NamedTuple

import regex
from Bio import SeqIO

# Shell conventions for "command not found" and "timed out".
COMMAND_NOT_FOUND = 127
COMMAND_TIMED_OUT = 124

SAMPLE_NAME_PATTERN = regex.compile(r"^[\p{L}\p{N}_]+$")


class CommandResult(NamedTuple):
    """Outcome of one external invocation."""

    returncode: int
    log_file: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


def format_command(command, stdout_file=None):
    """
    Render an argv list as a copy-pasteable shell line.

    Args:
        command (list): Program and arguments.
        stdout_file (str, optional): File the program's stdout is redirected to.

    Returns:
        str: The quoted command line.
    """
    line = shlex.join(str(part) for part in command)
    if stdout_file:
        line += f" > {shlex.quote(str(stdout_file))}"
    return line


def run_command(command, log_file, stdout_file=None, timeout=None):
    """
    Helper function to run an external command and log its output.

    The command's stderr always goes to ``log_file``. Its stdout goes to
    ``stdout_file`` when given (the equivalent of ``> file`` in a shell),
    otherwise it is interleaved with stderr in ``log_file``.

    Args:
        command (list): The program and its arguments.
        log_file (str): The path to the log file where output will be logged.
        stdout_file (str, optional): Path receiving the command's stdout.
        timeout (float, optional): Wall-clock limit in seconds. None waits forever.

    Returns:
        CommandResult: Return code and log file of the invocation.
    """
    command = [str(part) for part in command]
    logging.debug(f"Running command: {format_command(command, stdout_file)}")

    with open(log_file, "w") as lf:
        out_handle = open(stdout_file, "wb") if stdout_file else None
        try:
            try:
                process = subprocess.Popen(
                    command,
                    stdout=out_handle if out_handle else lf,
                    stderr=lf if out_handle else subprocess.STDOUT,
                )
            except (FileNotFoundError, PermissionError) as e:
                lf.write(f"{e}\n")
                logging.error(f"Cannot execute {command[0]}: {e}")
                returncode = COMMAND_NOT_FOUND
            else:
                try:
                    returncode = process.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
                    lf.write(f"Timed out after {timeout} seconds\n")
                    logging.error(f"Command timed out after {timeout} seconds: {command[0]}")
                    returncode = COMMAND_TIMED_OUT
        finally:
            if out_handle:
                out_handle.close()

    if returncode != 0:
        logging.debug(f"Command failed ({returncode}): {format_command(command, stdout_file)}")
    else:
        with open(log_file) as lf:
            for line in lf:
                logging.debug(line.rstrip())

    return CommandResult(returncode=returncode, log_file=str(log_file))


def setup_logging(log_level=logging.INFO, log_file=None):
    """
    Sets up logging for the application.

    Args:
        log_level (int): Logging level (e.g., logging.INFO).
        log_file (str, optional): Path to a log file. If None, logs are printed to console.
    """
    logger = logging.getLogger()
    logger.setLevel(log_level)

    # Clear existing handlers so we don't duplicate logs
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)


def create_output_directory(output_dir):
    """
    Creates the pipeline output directory if needed.

    Args:
        output_dir (str): Directory receiving all pipeline artifacts.

    Returns:
        str: The directory path.
    """
    try:
        if not os.path.exists(output_dir):
            os.makedirs(output_dir)
            logging.info(f"Created directory: {output_dir}")
        else:
            logging.debug(f"Directory already exists: {output_dir}")
    except OSError as e:
        logging.error(f"Failed to create directory {output_dir}: {e}")
        raise
    return output_dir


def load_config(config_path=None):
    """
    Load the configuration file with fallback to the default package config.

    Args:
        config_path (str or Path, optional): Path to the user-provided config file.

    Returns:
        dict: The loaded configuration dictionary.

    Raises:
        FileNotFoundError: If a config path is given but does not exist.
        json.JSONDecodeError: If the config file is not valid JSON.
    """
    if config_path is not None:
        if not os.path.exists(config_path):
            logging.error(f"Config file not found: {config_path}")
            raise FileNotFoundError(f"Config file not found: {config_path}")
        try:
            with open(config_path, encoding="utf-8") as config_file:
                config = json.load(config_file)
        except json.JSONDecodeError as e:
            logging.error(f"Error decoding JSON from the config file: {e}")
            raise
        logging.debug(f"Configuration loaded from {config_path}")
        return config

    with pkg_resources.files("chipmap").joinpath("config.json").open("r", encoding="utf-8") as f:
        config = json.load(f)
    logging.debug("Loaded default config from package data.")
    return config


def get_tool_version(command, version_flag):
    """
    Runs a command to get the version of a tool and returns the parsed version string.

    Args:
        command (str): The command as configured (e.g., "java -jar trimmomatic.jar").
        version_flag (str): The flag that makes the tool print its version.

    Returns:
        str: The parsed version string or 'unknown' if parsing fails.
    """
    try:
        full_command = shlex.split(command) + shlex.split(version_flag)
        result = subprocess.run(full_command, capture_output=True, text=True)
        output = result.stdout.strip() or result.stderr.strip()
        first_line = output.split("\n")[0]

        if "fastqc" in command.lower():
            # "FastQC v0.11.9"
            if first_line.startswith("FastQC"):
                return first_line.split(" ")[1].lstrip("v")
            return "unknown"
        if "bowtie2" in command:
            # ".../bowtie2-align-s version 2.4.1"
            if " version " in first_line:
                return first_line.split(" version ")[1].strip()
            return "unknown"
        if "sambamba" in command:
            # "sambamba 0.7.0"
            for line in output.split("\n"):
                if line.startswith("sambamba "):
                    return line.split(" ")[1]
            return "unknown"
        if "samtools" in command:
            # "samtools 1.10"
            if first_line.startswith("samtools"):
                return first_line.split(" ")[1]
            return "unknown"
        if "trimmomatic" in command.lower():
            # Trimmomatic prints the bare version, e.g. "0.39"
            return first_line if first_line else "unknown"
        return "unknown"

    except FileNotFoundError:
        logging.error(f"Command not found: {command}")
        return "unknown"
    except PermissionError:
        logging.error(f"Permission denied: {command}")
        return "unknown"
    except IndexError as e:
        logging.error(f"Failed to parse version for {command}: {e}")
        return "unknown"


def get_tool_versions(tools):
    """
    Retrieves the versions of the configured tools.

    Args:
        tools (Mapping): Tool key -> command string, as in config["tools"].

    Returns:
        dict: Tool keys mapped to version strings.
    """
    version_flags = {
        "fastqc": "--version",
        "trimmomatic": "-version",
        "bowtie2": "--version",
        "samtools": "--version",
        "sambamba": "--version",
    }

    return {
        tool: get_tool_version(command, version_flags.get(tool, "--version"))
        for tool, command in tools.items()
    }


def check_sample_name(sample_name):
    """
    Check the sample name against the letters/digits/underscore convention.

    Only warns: legacy runs with unconventional names must keep working.

    Returns:
        bool: True if the name follows the convention.
    """
    if SAMPLE_NAME_PATTERN.match(sample_name):
        return True
    logging.warning(
        f"Sample name '{sample_name}' should contain only letters, digits or "
        "underscores; output file names may be awkward to handle."
    )
    return False


def validate_fastq_file(file_path):
    """
    Validates the FASTQ file for existence, correct extension, and basic formatting.

    Args:
        file_path (str): Path to the FASTQ file.

    Raises:
        ValueError: If any validation check fails.
    """
    if not file_path:
        logging.error("No FASTQ file provided.")
        raise ValueError("No FASTQ file provided.")

    if not os.path.isfile(file_path):
        logging.error(f"FASTQ file does not exist: {file_path}")
        raise ValueError(f"FASTQ file does not exist: {file_path}")

    valid_extensions = (".fastq", ".fastq.gz", ".fq", ".fq.gz")
    if not str(file_path).endswith(valid_extensions):
        logging.error(f"Invalid FASTQ file extension for file: {file_path}")
        raise ValueError(f"Invalid FASTQ file extension for file: {file_path}")

    open_func = gzip.open if str(file_path).endswith(".gz") else open
    try:
        with open_func(file_path, "rt") as handle:
            first_record = next(SeqIO.parse(handle, "fastq"), None)
    except (ValueError, OSError) as e:
        logging.error(f"Error validating FASTQ file {file_path}: {e}")
        raise ValueError(f"Malformed FASTQ file {file_path}: {e}") from e

    if first_record is None:
        logging.error(f"FASTQ file is empty: {file_path}")
        raise ValueError(f"FASTQ file is empty: {file_path}")

    logging.info(f"FASTQ file validated successfully: {file_path}")
