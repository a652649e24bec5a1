"""
Shared pytest fixtures and configuration for actionspine tests.

This module provides:
- Settings cache isolation (no ACTIONSPINE_* env leaks between tests)
- A fresh ActionRegister per test, closed after the test
- Handler factories that record call order

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments:

    @pytest.mark.asyncio
    async def test_something(register, recorder, calls):
        register.register("save", recorder("a"))
"""

import sys
from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
import pytest_asyncio

# Ensure actionspine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from actionspine.core.settings import ActionSpineSettings, reset_settings
from actionspine.execution.dispatcher import ActionRegister


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "e2e" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Settings / Register Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """
    Drop ACTIONSPINE_* variables and the cached settings around each test.

    Tests that need a setting use ``monkeypatch.setenv`` and then
    ``reset_settings()``.
    """
    import os

    for key in list(os.environ):
        if key.startswith("ACTIONSPINE_"):
            monkeypatch.delenv(key)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> ActionSpineSettings:
    """Settings with defaults only (no .env file)."""
    return ActionSpineSettings(_env_file=None)


@pytest_asyncio.fixture
async def register(settings: ActionSpineSettings) -> AsyncGenerator[ActionRegister, None]:
    """Fresh register; background handler invocations are drained afterwards."""
    reg = ActionRegister(name="test", settings=settings)
    yield reg
    await reg.aclose()


# =============================================================================
# Handler Helpers
# =============================================================================


@pytest.fixture
def calls() -> list[str]:
    """Shared list that recording handlers append their label to."""
    return []


@pytest.fixture
def recorder(calls: list[str]):
    """
    Factory for sync handlers that append ``label`` to ``calls``.

        register.register("save", recorder("a", result=1))
    """

    def make(label: str, result=None):
        def handler(payload, controller):
            calls.append(label)
            return result

        return handler

    return make
