"""
Pytest configuration and fixtures for kgflow tests.
"""

import sys
from pathlib import Path

import pytest

# Add the repository root to path for imports
# This allows `from kgflow.store import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from kgflow.clock import Clock  # noqa: E402
from kgflow.durable import DurableIO  # noqa: E402
from kgflow.observability import EngineMetrics  # noqa: E402
from kgflow.store import QuadStore, parse_turtle  # noqa: E402
from kgflow.workflow import HandlerEnv, MemoryFileSystem, TemplateRenderer  # noqa: E402

from .support import COMMITS_TTL, FIXED_NOW  # noqa: E402


@pytest.fixture
def clock():
    """Clock fixed at 2024-01-01T00:00:00Z."""
    return Clock(FIXED_NOW)


@pytest.fixture
def store():
    """Empty quad store."""
    return QuadStore()


@pytest.fixture
def commit_store():
    """Store holding two commits and their authors."""
    return parse_turtle(COMMITS_TTL)


@pytest.fixture
def memory_fs():
    """In-memory filesystem rooted at /work."""
    return MemoryFileSystem()


@pytest.fixture
def metrics():
    """Metrics object isolated from the process-wide one."""
    return EngineMetrics()


@pytest.fixture
def durable(tmp_path, clock):
    """Durable I/O rooted in a temporary directory."""
    durable = DurableIO(tmp_path / ".kgflow", clock=clock, lock_deadline_ms=200)
    yield durable
    durable.close()


@pytest.fixture
def handler_env(commit_store, memory_fs, clock):
    """Handler environment over the commit store and an in-memory filesystem."""
    return HandlerEnv(
        store=commit_store,
        renderer=TemplateRenderer(clock=clock),
        fs=memory_fs,
        clock=clock,
        default_timeout_s=5.0,
    )
