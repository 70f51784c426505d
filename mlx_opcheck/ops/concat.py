"""Concatenation along one axis and its gradient (split).

The generic kernels view every array as ``(num_blocks, block)`` where
``num_blocks = prod(shape[:dim])``; concatenation is then a join of the
rows, and the gradient a column split of the output gradient.
"""

from typing import List, Sequence, Tuple

import mlx.core as mx

from mlx_opcheck.ops.params import ConcatParam
from mlx_opcheck.ops.registry import register_op
from mlx_opcheck.utils.shapes import prod

concat = register_op(
    "concat",
    ConcatParam,
    num_inputs=lambda p: p.num_args,
    description="Concatenate num_args arrays along dim.",
)
_backward_concat = register_op(
    "_backward_Concat",
    ConcatParam,
    num_outputs=lambda p: p.num_args,
    description="Split the output gradient of concat back into num_args gradients.",
)


def _check_dim(shapes: Sequence[Tuple[int, ...]], dim: int) -> None:
    for shape in shapes:
        if dim >= len(shape):
            raise ValueError(f"concat: dim {dim} out of range for shape {shape}")
    ref = shapes[0]
    for shape in shapes[1:]:
        if len(shape) != len(ref) or any(
            a != b for i, (a, b) in enumerate(zip(shape, ref)) if i != dim
        ):
            raise ValueError(f"concat: incompatible shapes {ref} and {shape} along dim {dim}")


@concat.generic
def _concat_generic(op_ctx, params, inputs, out_shapes):
    dim = params.dim
    _check_dim([arr.shape for arr in inputs], dim)
    num_blocks = prod(inputs[0].shape[:dim])
    rows = [arr.data().reshape(num_blocks, -1) for arr in inputs]
    return [mx.concatenate(rows, axis=1).reshape(out_shapes[0])]


@concat.accelerated
def _concat_accelerated(op_ctx, params, inputs, out_shapes):
    _check_dim([arr.shape for arr in inputs], params.dim)
    return [mx.concatenate([arr.data() for arr in inputs], axis=params.dim)]


def _split_points(out_shapes: Sequence[Tuple[int, ...]], dim: int) -> List[int]:
    points = []
    total = 0
    for shape in out_shapes[:-1]:
        total += shape[dim]
        points.append(total)
    return points


@_backward_concat.generic
def _backward_concat_generic(op_ctx, params, inputs, out_shapes):
    dim = params.dim
    grad = inputs[0]
    _check_dim([grad.shape] + list(out_shapes), dim)
    num_blocks = prod(grad.shape[:dim])
    rows = grad.data().reshape(num_blocks, -1)
    results = []
    start = 0
    for shape in out_shapes:
        block = prod(shape[dim:])
        results.append(rows[:, start:start + block].reshape(shape))
        start += block
    return results


@_backward_concat.accelerated
def _backward_concat_accelerated(op_ctx, params, inputs, out_shapes):
    dim = params.dim
    grad = inputs[0]
    _check_dim([grad.shape] + list(out_shapes), dim)
    return mx.split(grad.data(), _split_points(out_shapes, dim), axis=dim)
