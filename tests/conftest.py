"""
Shared fixtures for all tests.
Place this `conftest.py` in your `tests/` directory.
"""

import logging
from unittest.mock import patch

import pytest

from chipmap.scripts.utils import load_config
from tests.helpers import RecordingRunner

logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external tools")


# ============================================================================
# Fixtures
# ============================================================================
@pytest.fixture(scope="session")
def default_config():
    """The configuration shipped as package data."""
    return load_config(None)


@pytest.fixture
def test_config(tmp_path):
    """
    Configuration with site-specific paths pointed into a temporary directory.

    Tool commands are kept as shipped; tests never execute them.
    """
    config = load_config(None)
    config["reference_data"] = {
        "bowtie2_index_human": str(tmp_path / "index" / "GRCh38.97"),
        "bowtie2_index_mouse": str(tmp_path / "index" / "GRCm38.97"),
    }
    config["adapters"] = {"trimmomatic_se": str(tmp_path / "adapters" / "TruSeq3-SE.fa")}
    return config


@pytest.fixture(autouse=True)
def restore_root_logging():
    """setup_logging() replaces the root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def recording_runner():
    return RecordingRunner()


@pytest.fixture
def no_tool_probe():
    """Skip probing the external tools for their versions."""
    with patch("chipmap.scripts.pipeline.get_tool_versions", return_value={}) as probe:
        yield probe


def pytest_collection_modifyitems(config, items):
    """
    Hook called after test collection. Shows how many tests were collected.
    """
    logger.info(f"Collected {len(items)} test(s)")
