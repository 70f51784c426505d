"""Verification configuration for mlx-opcheck.

Holds the comparison tolerances and synthetic-data settings used by the
verification predicates and drivers in :mod:`mlx_opcheck.testing`.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from typing import Iterator

from mlx_opcheck.constants import DEFAULT_ATOL, DEFAULT_INIT_MAX_VALUE, DEFAULT_RTOL


@dataclass(frozen=True)
class VerifyConfig:
    """Configuration for operator verification.

    Attributes:
        rtol: Relative tolerance for tolerance-bounded comparisons.
        atol: Absolute tolerance for tolerance-bounded comparisons.
        init_max_value: Synthetic arrays are filled with integers in
            ``[-init_max_value, init_max_value)``.
        seed: Seed for the random fill pattern (numpy Generator).
        log_verify_messages: Log "Verifying: ..." lines at INFO.

    Example:
        >>> from mlx_opcheck.config import VerifyConfig, set_verify_config
        >>> set_verify_config(VerifyConfig(rtol=1e-4))
    """

    rtol: float = DEFAULT_RTOL
    atol: float = DEFAULT_ATOL
    init_max_value: int = DEFAULT_INIT_MAX_VALUE
    seed: int = 42
    log_verify_messages: bool = True


# Thread-local storage so concurrent test workers don't clobber each other
_thread_local = threading.local()

# Global default configuration (used when thread-local is not set)
_global_default_config = VerifyConfig()

_global_config_lock = threading.Lock()


def get_verify_config() -> VerifyConfig:
    """Get the current verification config for this thread.

    Returns thread-local config if set, otherwise global default.
    """
    return getattr(_thread_local, "config", _global_default_config)


def set_verify_config(config: VerifyConfig) -> None:
    """Set the verification config for this thread only."""
    _thread_local.config = config


def set_global_verify_config(config: VerifyConfig) -> None:
    """Set the global default verification config.

    Affects all threads that haven't set a thread-local config.
    """
    global _global_default_config
    with _global_config_lock:
        _global_default_config = config


def clear_thread_verify_config() -> None:
    """Clear thread-local config, reverting to global default."""
    if hasattr(_thread_local, "config"):
        del _thread_local.config


@contextmanager
def verify_context(**overrides) -> Iterator[VerifyConfig]:
    """Temporarily override verification settings for this thread.

    Args:
        **overrides: VerifyConfig fields to replace.

    Raises:
        TypeError: If an override does not name a VerifyConfig field.

    Example:
        >>> with verify_context(rtol=1e-3, atol=1e-4):
        ...     check_op_ex(forward_attrs, backward_attrs)
    """
    valid = {f.name for f in fields(VerifyConfig)}
    unknown = set(overrides) - valid
    if unknown:
        raise TypeError(f"Unknown VerifyConfig fields: {sorted(unknown)}")

    had_local = hasattr(_thread_local, "config")
    old_config = get_verify_config()
    new_config = replace(old_config, **overrides)
    set_verify_config(new_config)
    try:
        yield new_config
    finally:
        if had_local:
            set_verify_config(old_config)
        else:
            clear_thread_verify_config()
