from pathlib import Path
import sys

import pytest

# Ensure repository root is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tests.fake_storage import FakeStorage  # noqa: E402


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list:
    """Record reconciler sleeps instead of waiting."""

    from disk_state import reconciler

    sleeps: list = []
    monkeypatch.setattr(reconciler.time, "sleep", sleeps.append)
    return sleeps
