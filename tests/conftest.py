import os
import sys

import pytest

# Ensure repository root is on sys.path so `import reqctx` works when running pytest.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)


@pytest.fixture(autouse=True)
def _isolate_registry(monkeypatch):
    """Give every test an empty context registry and default settings.

    The registry is process-wide, so session contexts created by one test would
    otherwise be reused (with their values) by the next.
    """

    from reqctx.context.registry import reset_registry
    from reqctx.core.settings import settings as app_settings

    monkeypatch.setattr(app_settings, "APP_ENV", "test", raising=False)
    monkeypatch.setattr(app_settings, "MODE", "session", raising=False)
    monkeypatch.setattr(app_settings, "EXPIRY_SECONDS", None, raising=False)
    reset_registry()
    yield
    reset_registry()


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
