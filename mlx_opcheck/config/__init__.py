"""Configuration module for mlx-opcheck.

Provides runtime configuration for verification tolerances and synthetic data.
"""

from mlx_opcheck.config.settings import (
    VerifyConfig,
    clear_thread_verify_config,
    get_verify_config,
    set_global_verify_config,
    set_verify_config,
    verify_context,
)

__all__ = [
    "VerifyConfig",
    "clear_thread_verify_config",
    "get_verify_config",
    "set_global_verify_config",
    "set_verify_config",
    "verify_context",
]
