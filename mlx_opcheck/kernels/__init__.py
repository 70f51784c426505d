"""Metal kernels for the accelerated operator path.

The kernels use ``mx.fast.metal_kernel`` to run element-wise operators on
Apple Silicon GPUs. The wrappers (``copy``, ``relu``, ``relu_backward``,
``add``) fall back to fused MLX primitives when Metal is unavailable.

Usage:
    from mlx_opcheck.kernels import relu, fast_relu

    out = relu(x)          # Metal if available, else mx.maximum
    out = fast_relu(x)     # Metal only
"""

from mlx_opcheck.kernels._registry import KernelCache, clear_kernel_cache, get_kernel
from mlx_opcheck.kernels.elementwise import (
    add,
    copy,
    fast_add,
    fast_copy,
    fast_relu,
    fast_relu_backward,
    relu,
    relu_backward,
)

__all__ = [
    "KernelCache",
    "clear_kernel_cache",
    "get_kernel",
    "add",
    "copy",
    "fast_add",
    "fast_copy",
    "fast_relu",
    "fast_relu_backward",
    "relu",
    "relu_backward",
]
