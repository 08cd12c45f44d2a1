import os
import sys

import pytest

# Make codr and the shared fakes importable without installing the package
_TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.dirname(os.path.dirname(_TESTS_DIR)))
sys.path.insert(0, _TESTS_DIR)

from codr_fakes import make_config  # noqa: E402


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def config(project):
    return make_config(project)
