"""
Test configuration: repo root on sys.path plus isolation guards.

Every test runs with BLOCKCAL_HOME / BLOCKCAL_DATA pointed at a temp dir so
nothing can read or write the user's real ~/.blockcal.
"""

import sys
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import blockcal and tests.fixtures
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from blockcal.planner import Planner  # noqa: E402
from blockcal.settings import EngineSettings  # noqa: E402
from blockcal.store import TextStore  # noqa: E402
from tests.fixtures import NOW  # noqa: E402


@pytest.fixture(autouse=True)
def isolate_home(tmp_path, monkeypatch):
    """Automatically keep all tests away from the real app home."""
    monkeypatch.setenv("BLOCKCAL_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("BLOCKCAL_DATA", str(tmp_path / "data"))
    monkeypatch.delenv("BLOCKCAL_CONFIG", raising=False)


@pytest.fixture
def store(tmp_path):
    s = TextStore(tmp_path / "data")
    s.ensure_folders()
    return s


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def planner(store, settings):
    """Planner over a temp store with a fixed clock."""
    return Planner(store=store, settings=settings, clock=lambda: NOW)
