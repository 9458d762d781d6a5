from __future__ import annotations

from pathlib import Path

import pytest

from fileproxy.common.settings import FileProxySettings
from tests.utils.harness import FakeClock


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage_path(tmp_path: Path) -> Path:
    return tmp_path / "files-metadata"


@pytest.fixture
def settings(storage_path: Path) -> FileProxySettings:
    return FileProxySettings(
        storage_path=storage_path,
        basic_auth_username="proxy-user",
        basic_auth_password="proxy-pass",
        throttle_limit=0,
        metrics_token="metrics-secret",
        upstream_timeout_seconds=5.0,
    )
