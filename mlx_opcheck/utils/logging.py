"""Logging for mlx-opcheck.

Everything the package reports goes through the ``mlx_opcheck`` logger,
whose level is read once from MLX_OPCHECK_LOG_LEVEL (default WARNING).

Two dispatch events are logged here:

- a Metal element-wise kernel could not launch and the accelerated path
  used the equivalent MLX primitive instead (:func:`log_fallback`);
- an accelerated operator kernel raised, which aborts the invocation
  (:func:`log_dispatch_failure`).
"""

import logging
import os
import sys
import threading
from typing import Optional, Sequence

import mlx.core as mx

LOGGER_NAME = "mlx_opcheck"
LOG_LEVEL_ENV = "MLX_OPCHECK_LOG_LEVEL"

_logger: Optional[logging.Logger] = None
_logger_lock = threading.Lock()
_fallback_seen: set[str] = set()  # Metal kernels that have already fallen back
_metal_available: Optional[bool] = None

_VALID_LEVELS = ("CRITICAL", "DEBUG", "ERROR", "INFO", "WARNING")


def _level_from_env() -> int:
    name = os.environ.get(LOG_LEVEL_ENV, "WARNING").upper()
    if name not in _VALID_LEVELS:
        print(
            f"Warning: Invalid {LOG_LEVEL_ENV}='{name}'. "
            f"Valid values: {', '.join(_VALID_LEVELS)}. Defaulting to WARNING.",
            file=sys.stderr,
        )
        name = "WARNING"
    return getattr(logging, name)


def get_logger() -> logging.Logger:
    """Get the package logger, configuring it on first use (thread-safe)."""
    global _logger
    if _logger is None:
        with _logger_lock:
            if _logger is None:
                logger = logging.getLogger(LOGGER_NAME)
                logger.setLevel(_level_from_env())
                if not logger.handlers:
                    handler = logging.StreamHandler()
                    handler.setFormatter(logging.Formatter("%(name)s - %(levelname)s - %(message)s"))
                    logger.addHandler(handler)
                _logger = logger
    return _logger


def _describe(exception: BaseException) -> str:
    return f"{type(exception).__name__}: {exception}"


def log_fallback(kernel: str, exception: Exception, context: Optional[str] = None) -> None:
    """Log a Metal kernel replaced by its MLX primitive.

    The first fallback of each kernel is logged at WARNING, later ones at
    DEBUG.

    Args:
        kernel: Name of the Metal kernel that could not run.
        exception: What the launch raised.
        context: Optional detail such as the input shapes.
    """
    with _logger_lock:
        first = kernel not in _fallback_seen
        _fallback_seen.add(kernel)

    parts = [f"{kernel}: Metal kernel failed ({_describe(exception)})"]
    if first:
        parts.append(" (first occurrence, further fallbacks logged at DEBUG)")
    if context:
        parts.append(f" | context: {context}")
    parts.append(", running MLX primitive")
    get_logger().log(logging.WARNING if first else logging.DEBUG, "".join(parts))


def log_dispatch_failure(
    op_name: str, exception: BaseException, input_shapes: Sequence[Sequence[int]]
) -> None:
    """Log an accelerated operator kernel that raised during dispatch."""
    get_logger().error(
        "%s: accelerated kernel failed (%s) | inputs: %s",
        op_name,
        _describe(exception),
        [tuple(s) for s in input_shapes],
    )


def has_metal_kernels(force_recheck: bool = False) -> bool:
    """Whether ``mx.fast.metal_kernel`` can compile and launch here.

    Linux builds of MLX expose the API without a Metal device, so the
    device check is part of the answer. The result is cached.
    """
    global _metal_available
    if _metal_available is None or force_recheck:
        _metal_available = hasattr(mx.fast, "metal_kernel") and mx.metal.is_available()
    return _metal_available


def should_use_metal(size: int, use_metal: bool = True) -> bool:
    """Whether an element-wise kernel over ``size`` elements should run on Metal."""
    return use_metal and size > 0 and has_metal_kernels()
