"""Pytest configuration for MLX OpCheck tests."""

import pytest

from mlx_opcheck.config import clear_thread_verify_config
from mlx_opcheck.engine import Engine
from mlx_opcheck.imperative import Imperative
from mlx_opcheck.utils.logging import has_metal_kernels


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow running")
    config.addinivalue_line(
        "markers",
        "cross_dispatch: marks tests that compare the generic and accelerated operator paths",
    )
    config.addinivalue_line("markers", "metal: marks tests that need Metal kernels")


@pytest.fixture(autouse=True)
def clean_engine_state():
    """Fresh engine queue, training flag and verify config for every test."""
    Engine.reset()
    imperative = Imperative.get()
    previous = imperative.set_is_training(False)
    clear_thread_verify_config()

    yield

    Engine.get().wait_for_all()
    imperative.set_is_training(previous)
    clear_thread_verify_config()


@pytest.fixture
def metal_available() -> bool:
    """Check if Metal kernels can be launched."""
    return has_metal_kernels(force_recheck=True)


@pytest.fixture
def skip_without_metal(metal_available: bool) -> None:
    """Skip test if Metal is not available."""
    if not metal_available:
        pytest.skip("Metal kernels not available")
