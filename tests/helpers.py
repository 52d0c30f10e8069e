"""
Shared test helpers for chipmap.

The pipeline accepts an injected stage runner. RecordingRunner stands in
for the external tools: it records which stage ran, in which order, and can
be told to fail a given stage with a given exit code.
"""

from pathlib import Path

from chipmap.scripts.stages import STAGE_ORDER
from chipmap.scripts.utils import CommandResult


def stage_from_log_file(log_file):
    """Recover the stage name from a '<sample>_<stage>.log' path."""
    stem = Path(log_file).stem
    for name in STAGE_ORDER:
        if stem.endswith(f"_{name}"):
            return name
    raise AssertionError(f"Unexpected stage log file: {log_file}")


class RecordingRunner:
    """Fake runner recording every invocation instead of executing it."""

    def __init__(self, fail_on=None, returncode=1):
        self.fail_on = fail_on
        self.returncode = returncode
        self.calls = []

    @property
    def order(self):
        return [call["stage"] for call in self.calls]

    def command_for(self, stage):
        for call in self.calls:
            if call["stage"] == stage:
                return call["command"]
        raise AssertionError(f"Stage {stage} was not run")

    def __call__(self, command, log_file, stdout_file=None, timeout=None):
        stage = stage_from_log_file(log_file)
        self.calls.append(
            {
                "stage": stage,
                "command": list(command),
                "log_file": str(log_file),
                "stdout_file": stdout_file,
                "timeout": timeout,
            }
        )
        Path(log_file).write_text(f"{stage} ran\n")
        if stage == self.fail_on:
            return CommandResult(returncode=self.returncode, log_file=str(log_file))
        if stdout_file:
            Path(stdout_file).write_bytes(b"")
        return CommandResult(returncode=0, log_file=str(log_file))


def write_fastq(path, records=2):
    """Write a tiny uncompressed FASTQ file with ``records`` reads."""
    lines = []
    for i in range(records):
        lines += [f"@read{i}", "ACGTACGTAC", "+", "IIIIIIIIII"]
    Path(path).write_text("\n".join(lines) + "\n")
    return Path(path)
