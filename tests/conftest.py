import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the environment before any import that might build settings or the runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# The test client talks plain http, so secure cookies would never be sent back
os.environ.setdefault("SECURE_COOKIES", "false")
os.environ.setdefault("ARGON2_MEMORY_COST", "8192")
os.environ.setdefault("ARGON2_TIME_COST", "1")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from authgate.service.credentials import Email  # noqa: E402
from authgate.service.passwords import PasswordHasher  # noqa: E402
from authgate.service.runtime import reset_runtime_for_tests  # noqa: E402
from authgate.storage.memory import MemoryStore  # noqa: E402


class FakeClock:
    """Settable wall clock for expiry tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    def __init__(self, *, delivered: bool = True) -> None:
        self.delivered = delivered
        self.sent = []

    async def send_two_factor_code(self, recipient, code, *, expires_in_seconds=600):
        self.sent.append((recipient, code))
        return self.delivered


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def hasher():
    pw_hasher = PasswordHasher(time_cost=1, memory_cost=8192, parallelism=1, workers=2)
    yield pw_hasher
    pw_hasher.shutdown(wait=True)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def alice():
    return Email.parse("alice@example.com")


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
