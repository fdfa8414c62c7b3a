"""
Pytest configuration and shared fixtures.
"""

import os
import sys
from pathlib import Path

import pytest

sys.path.append(os.path.join(os.getcwd(), "src"))
sys.path.append(os.path.dirname(__file__))

from embedsearch.engine.config import InstanceConfig  # noqa: E402
from embedsearch.instances.manager import InstanceManager  # noqa: E402
from fake_engine import FakeCluster, FakeLauncher  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> None:
    """Set up test environment variables."""
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("ENGINE_ENV", "development")


@pytest.fixture
def test_data_dir(tmp_path) -> Path:
    """Create a temporary data directory for tests."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    return data_dir


@pytest.fixture
def instance_config(test_data_dir) -> InstanceConfig:
    """Instance config with short timeouts."""
    return InstanceConfig(
        data_directory=test_data_dir,
        readiness_timeout=1.0,
        shutdown_timeout=0.5,
        request_timeout=1.0,
    )


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def launcher(cluster) -> FakeLauncher:
    return FakeLauncher(cluster)


@pytest.fixture
async def manager(tmp_path, cluster, launcher):
    """Instance manager wired to fake engines."""
    manager = InstanceManager(
        launcher=launcher,
        transport=cluster.transport,
        data_root=tmp_path / "instances",
    )
    yield manager
    await manager.shutdown()


@pytest.fixture
async def instance(manager):
    return await manager.get_or_create_instance("test")


@pytest.fixture
def movies(instance):
    return instance.index("movies")
