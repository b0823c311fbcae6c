import os
import sys
import tempfile
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="nekolc_test_")
os.environ.setdefault("STORAGE_PATH", _test_tmp_dir)
os.environ.setdefault("DATABASE_TYPE", "file")
os.environ.setdefault("ENABLE_AUTH", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("AUTH_USERNAME", "operator")
os.environ.setdefault("AUTH_PASSWORD", "Operator-Password-42")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from nekolc.service.runtime import reset_runtime_for_tests  # noqa: E402

TEST_SECRET = "s1"
START_TIME = 1_700_000_000


class FakeClock:
    """Manually advanced unix-seconds clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_runtime_state(tmp_path, monkeypatch):
    # Each test gets its own file ledger
    monkeypatch.setenv("STORAGE_PATH", str(tmp_path / "data"))
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()
