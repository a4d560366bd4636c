"""Pytest configuration for issuetree tests.

Ensures the in-repo `src` directory is on `sys.path` so the package can be
imported without an editable install (`pip install -e .`), and forces mock
mode so no test ever reaches the real GitHub API.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    # Prepend so that 'python -m issuetree' finds local package first
    sys.path.insert(0, str(SRC))

os.environ.setdefault("ISSUETREE_MOCK", "1")

# Subprocesses started by tests can import the in-repo package too
py_path = os.environ.get("PYTHONPATH", "")
parts = [p for p in py_path.split(os.pathsep) if p]
if str(SRC) not in parts:
    parts.insert(0, str(SRC))
    os.environ["PYTHONPATH"] = os.pathsep.join(parts)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    import issuetree.logging as issuetree_logging  # noqa: PLC0415

    for var in (
        "ISSUETREE_GITHUB_TOKEN",
        "GITHUB_TOKEN",
        "GH_TOKEN",
        "GITHUB_ACCESS_TOKEN",
        "GH_ACCESS_TOKEN",
        "GITHUB_PAT",
        "ISSUETREE_QUIET",
    ):
        # set first so teardown also drops values a test loads from a .env file
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)
    monkeypatch.setenv("ISSUETREE_MOCK", "1")
    # handlers bind sys.stderr at construction; rebuild per test under capture
    monkeypatch.setattr(issuetree_logging, "_GLOBAL", None)


@pytest.fixture
def mock_github():
    from issuetree.core import reset_mock_client  # noqa: PLC0415

    return reset_mock_client()
