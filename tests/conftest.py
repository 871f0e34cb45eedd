import pytest

from dockplan.dsl import healthcheck, service, stage
from dockplan.fingerprint import MemoryContentReader
from dockplan.planner import CacheInvalidationEngine
from dockplan.store import FingerprintStore
from dockplan.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(debug=False))
    yield


@pytest.fixture
def reader():
    return MemoryContentReader({
        "requirements.txt": b"click\npydantic\n",
        "src/app/__init__.py": b"",
        "src/app/main.py": b"print('hi')\n",
        "README.md": b"# app\n",
    })


@pytest.fixture
def store():
    return FingerprintStore()


@pytest.fixture
def engine(store, reader):
    return CacheInvalidationEngine(store, reader)


@pytest.fixture
def abc_stages():
    """A has file inputs; B and C both copy from A."""
    return [
        stage("A", "RUN pip install -r requirements.txt", base="python:3.12-slim", files=["requirements.txt"]),
        stage("B", "COPY --from=A /deps /deps", copy_from=["A"]),
        stage("C", "COPY --from=A /deps /deps", copy_from=["A"]),
    ]


@pytest.fixture
def fast_check():
    """Health check that probes back to back."""
    def make(retries=3, start_period=0.0, timeout=0.0):
        return healthcheck("true", interval=0, timeout=timeout, retries=retries, start_period=start_period)
    return make


@pytest.fixture
def web_stack(fast_check):
    return [
        service("db", healthcheck=fast_check()),
        service("api", needs=["db"], healthcheck=fast_check()),
        service("web", needs=["api"], healthcheck=fast_check()),
    ]
