"""Element-wise addition and its gradient."""

from mlx_opcheck import kernels
from mlx_opcheck.ops.registry import register_op

elemwise_add = register_op(
    "elemwise_add", num_inputs=2, description="Element-wise sum of two arrays of equal shape."
)
_backward_add = register_op(
    "_backward_add", num_outputs=2, description="Gradient of elemwise_add for both inputs."
)


def _check_shapes(a, b):
    if a.shape != b.shape:
        raise ValueError(f"elemwise_add: shape mismatch {a.shape} vs {b.shape}")


@elemwise_add.generic
def _add_generic(op_ctx, params, inputs, out_shapes):
    a, b = inputs
    _check_shapes(a, b)
    return [a.data() + b.data()]


@elemwise_add.accelerated
def _add_accelerated(op_ctx, params, inputs, out_shapes):
    a, b = inputs
    _check_shapes(a, b)
    return [kernels.add(a.data(), b.data())]


@_backward_add.generic
def _backward_add_generic(op_ctx, params, inputs, out_shapes):
    grad = inputs[0].data()
    return [grad, grad]


@_backward_add.accelerated
def _backward_add_accelerated(op_ctx, params, inputs, out_shapes):
    grad = inputs[0].data()
    return [kernels.copy(grad), kernels.copy(grad)]
