"""
Pytest configuration.

A real sample can be checked by setting XM_SAMPLE_FILE and XM_SAMPLE_SHA256
(hash of the recovered audio) in the environment or the .env file.
"""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

from builders import build_xm, make_m4a

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")


@pytest.fixture
def m4a_audio() -> bytes:
    return make_m4a()


@pytest.fixture
def xm_container(m4a_audio) -> bytes:
    container, _ = build_xm(m4a_audio)
    return container


@pytest.fixture
def sample_file():
    """Path and expected audio hash of a real .xm sample, if configured."""
    path = os.environ.get("XM_SAMPLE_FILE")
    expected = os.environ.get("XM_SAMPLE_SHA256")
    if not path or not expected:
        pytest.skip("XM_SAMPLE_FILE / XM_SAMPLE_SHA256 not set")
    return Path(path), expected.lower()
