"""Fixtures for gke-deploy tests."""

from pathlib import Path

import pytest

from gke_deploy.config import Clients
from gke_deploy.source import ConfigResolver

from .fakes import (
    GCS_OBJECTS,
    FakeCluster,
    FakeCredentials,
    FakeRegistry,
    FakeStorage,
)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage(dict(GCS_OBJECTS))


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def clients(
    registry: FakeRegistry,
    storage: FakeStorage,
    cluster: FakeCluster,
    credentials: FakeCredentials,
) -> Clients:
    """Clients wired to the test doubles."""
    return Clients(
        resolver=ConfigResolver(storage),
        registry=registry,
        cluster=cluster,
        credentials=credentials,
    )


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Root directory that prepare outputs are written to."""
    return tmp_path / "output"
