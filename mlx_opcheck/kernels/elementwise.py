"""Element-wise Metal kernels used by the accelerated operator path.

Each ``fast_*`` function launches a Metal kernel over the flattened input.
Their non-``fast`` wrappers fall back to single fused MLX primitives when
Metal is unavailable (e.g. Linux CPU builds of MLX).
"""

import mlx.core as mx

from mlx_opcheck.kernels._registry import get_kernel
from mlx_opcheck.utils import has_metal_kernels, log_fallback, should_use_metal
from mlx_opcheck.utils.exceptions import MetalKernelError


def _compute_1d_grid(size: int, threadgroup_size: int = 256) -> tuple:
    """Compute 1D Metal grid and threadgroup for given size."""
    num_groups = (size + threadgroup_size - 1) // threadgroup_size
    grid = (num_groups * threadgroup_size, 1, 1)
    threadgroup = (threadgroup_size, 1, 1)
    return grid, threadgroup


def _get_copy_kernel():
    source = """
        uint idx = thread_position_in_grid.x;
        uint size = x_shape[0];
        if (idx >= size) return;
        out[idx] = x[idx];
    """
    return get_kernel(
        "copy",
        lambda: mx.fast.metal_kernel(
            name="copy",
            input_names=["x"],
            output_names=["out"],
            source=source,
        ),
    )


def _get_relu_kernel():
    source = """
        uint idx = thread_position_in_grid.x;
        uint size = x_shape[0];
        if (idx >= size) return;
        float v = x[idx];
        out[idx] = v > 0.0f ? v : 0.0f;
    """
    return get_kernel(
        "relu_forward",
        lambda: mx.fast.metal_kernel(
            name="relu_forward",
            input_names=["x"],
            output_names=["out"],
            source=source,
        ),
    )


def _get_relu_backward_kernel():
    source = """
        uint idx = thread_position_in_grid.x;
        uint size = grad_shape[0];
        if (idx >= size) return;
        out[idx] = x[idx] > 0.0f ? grad[idx] : 0.0f;
    """
    return get_kernel(
        "relu_backward",
        lambda: mx.fast.metal_kernel(
            name="relu_backward",
            input_names=["grad", "x"],
            output_names=["out"],
            source=source,
        ),
    )


def _get_add_kernel():
    source = """
        uint idx = thread_position_in_grid.x;
        uint size = a_shape[0];
        if (idx >= size) return;
        out[idx] = a[idx] + b[idx];
    """
    return get_kernel(
        "elemwise_add",
        lambda: mx.fast.metal_kernel(
            name="elemwise_add",
            input_names=["a", "b"],
            output_names=["out"],
            source=source,
        ),
    )


def _launch(kernel_factory, arrays, like: mx.array) -> mx.array:
    if not has_metal_kernels():
        raise MetalKernelError("Metal kernels are not available on this device")
    kernel = kernel_factory()
    size = like.size
    grid, threadgroup = _compute_1d_grid(size)
    outputs = kernel(
        inputs=[a.reshape(-1) for a in arrays],
        grid=grid,
        threadgroup=threadgroup,
        output_shapes=[(size,)],
        output_dtypes=[like.dtype],
        stream=mx.default_stream(mx.default_device()),
    )
    return outputs[0].reshape(like.shape)


def fast_copy(x: mx.array) -> mx.array:
    """Metal copy of ``x``."""
    return _launch(_get_copy_kernel, [x], x)


def fast_relu(x: mx.array) -> mx.array:
    """Metal ReLU: max(x, 0)."""
    return _launch(_get_relu_kernel, [x], x)


def fast_relu_backward(grad: mx.array, x: mx.array) -> mx.array:
    """Metal ReLU gradient: grad where x > 0, else 0.

    Raises:
        ValueError: If grad and x shapes don't match.
    """
    if grad.shape != x.shape:
        raise ValueError(f"grad and x must have same shape, got {grad.shape} and {x.shape}")
    return _launch(_get_relu_backward_kernel, [grad, x], grad)


def fast_add(a: mx.array, b: mx.array) -> mx.array:
    """Metal element-wise a + b.

    Raises:
        ValueError: If a and b shapes don't match.
    """
    if a.shape != b.shape:
        raise ValueError(f"a and b must have same shape, got {a.shape} and {b.shape}")
    return _launch(_get_add_kernel, [a, b], a)


def copy(x: mx.array, use_metal: bool = True) -> mx.array:
    if should_use_metal(x.size, use_metal):
        try:
            return fast_copy(x)
        except Exception as e:
            log_fallback("copy", e, f"x.shape={x.shape}")
    return mx.contiguous(x)


def relu(x: mx.array, use_metal: bool = True) -> mx.array:
    if should_use_metal(x.size, use_metal):
        try:
            return fast_relu(x)
        except Exception as e:
            log_fallback("relu", e, f"x.shape={x.shape}")
    return mx.maximum(x, 0)


def relu_backward(grad: mx.array, x: mx.array, use_metal: bool = True) -> mx.array:
    if should_use_metal(grad.size, use_metal):
        try:
            return fast_relu_backward(grad, x)
        except Exception as e:
            log_fallback("relu_backward", e, f"grad.shape={grad.shape}, x.shape={x.shape}")
    return grad * (x > 0).astype(grad.dtype)


def add(a: mx.array, b: mx.array, use_metal: bool = True) -> mx.array:
    if should_use_metal(a.size, use_metal):
        try:
            return fast_add(a, b)
        except Exception as e:
            log_fallback("elemwise_add", e, f"a.shape={a.shape}, b.shape={b.shape}")
    return mx.add(a, b)
