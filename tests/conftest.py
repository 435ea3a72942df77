"""Shared pytest setup for feishu-bridge.

Tests run against ``src/feishu_bridge`` even when a different copy of the
package is installed in the active environment.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

UNIT_TEST_TIMEOUT_SECONDS = 120

_SRC_DIR = str(Path(__file__).resolve().parents[1] / "src")


def pytest_configure() -> None:
    if _SRC_DIR not in sys.path:
        sys.path.insert(0, _SRC_DIR)


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Cap every test not marked ``integration`` with a pytest-timeout limit."""
    timeout = pytest.mark.timeout(UNIT_TEST_TIMEOUT_SECONDS)
    for item in items:
        if item.get_closest_marker("integration") is None:
            item.add_marker(timeout)


@pytest.fixture()
def feishu_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FEISHU_APP_ID", "cli_test_app")
    monkeypatch.setenv("FEISHU_APP_SECRET", "test-secret")


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """The bridge is built on asyncio; run anyio-marked tests on asyncio only."""
    return "asyncio"
