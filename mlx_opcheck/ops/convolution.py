"""N-d convolution (cross-correlation) and its gradient.

Inputs are ``(data, weight[, bias])`` with data ``(N, C, spatial...)`` and
weight ``(num_filter, C, kernel...)``. ``_backward_Convolution`` takes
``(out_grad, data, weight[, bias])`` and returns
``(data_grad, weight_grad[, bias_grad])``.

The generic kernels accumulate one ``(F, C) @ (N, C, P)`` matmul per kernel
offset. The accelerated kernels call ``mx.conv_general`` on channels-last
data and differentiate it with ``mx.vjp``. The helpers below are shared
with :mod:`mlx_opcheck.ops.deconvolution`.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import mlx.core as mx

from mlx_opcheck.ops import _window
from mlx_opcheck.ops.params import ConvolutionParam
from mlx_opcheck.ops.registry import register_op

convolution = register_op(
    "Convolution",
    ConvolutionParam,
    num_inputs=lambda p: 2 if p.no_bias else 3,
    description="Cross-correlate data with num_filter kernels.",
)
_backward_convolution = register_op(
    "_backward_Convolution",
    ConvolutionParam,
    num_inputs=lambda p: 3 if p.no_bias else 4,
    num_outputs=lambda p: 2 if p.no_bias else 3,
    description="Gradients of Convolution for data, weight and bias.",
)


def check_shapes(
    params: ConvolutionParam,
    data_shape: Tuple[int, ...],
    weight_shape: Tuple[int, ...],
    expected_weight: Tuple[int, ...],
) -> None:
    nd = params.spatial_ndim()
    if len(data_shape) != nd + 2:
        raise ValueError(f"kernel {params.kernel} needs a {nd + 2}-D input, got {data_shape}")
    if tuple(weight_shape) != tuple(expected_weight):
        raise ValueError(f"weight shape {weight_shape} does not match expected {expected_weight}")


def _flat(x: mx.array) -> mx.array:
    return x.reshape(x.shape[0], x.shape[1], -1)


def _bias_shape(nd: int, channels: int) -> Tuple[int, ...]:
    return (1, channels) + (1,) * nd


# =============================================================================
# Generic building blocks
# =============================================================================


def conv_forward_generic(
    x: mx.array, weight: mx.array, strides: Sequence[int], pads: Sequence[int]
) -> mx.array:
    kernel = weight.shape[2:]
    out_spatial = _window.output_spatial(x.shape[2:], kernel, pads, strides)
    padded = _window.pad_spatial(x, pads)
    out = None
    for offset in _window.window_offsets(kernel):
        patch = _flat(_window.strided_window(padded, offset, out_spatial, strides))
        contrib = weight[(slice(None), slice(None)) + offset] @ patch
        out = contrib if out is None else out + contrib
    return out.reshape((x.shape[0], weight.shape[0]) + tuple(out_spatial))


def conv_data_grad_generic(
    grad: mx.array,
    weight: mx.array,
    in_spatial: Sequence[int],
    strides: Sequence[int],
    pads: Sequence[int],
) -> mx.array:
    """Gradient of :func:`conv_forward_generic` with respect to its input."""
    kernel = weight.shape[2:]
    padded_spatial = tuple(w + 2 * p for w, p in zip(in_spatial, pads))
    grad_rows = _flat(grad)
    dx = None
    for offset in _window.window_offsets(kernel):
        w_t = weight[(slice(None), slice(None)) + offset]
        contrib = (w_t.T @ grad_rows).reshape((grad.shape[0], weight.shape[1]) + grad.shape[2:])
        placed = _window.place_window(contrib, offset, strides, padded_spatial)
        dx = placed if dx is None else dx + placed
    return _window.crop_spatial(dx, pads, in_spatial)


def conv_weight_grad_generic(
    grad: mx.array,
    x: mx.array,
    kernel: Sequence[int],
    strides: Sequence[int],
    pads: Sequence[int],
) -> mx.array:
    """Gradient of :func:`conv_forward_generic` with respect to its weight."""
    out_spatial = grad.shape[2:]
    padded = _window.pad_spatial(x, pads)
    grad_rows = _flat(grad)
    per_offset = []
    for offset in _window.window_offsets(kernel):
        patch = _flat(_window.strided_window(padded, offset, out_spatial, strides))
        per_offset.append(mx.sum(grad_rows @ patch.transpose(0, 2, 1), axis=0))
    stacked = mx.stack(per_offset, axis=-1)
    return stacked.reshape(stacked.shape[:2] + tuple(kernel))


def bias_grad(grad: mx.array) -> mx.array:
    axes = [0] + list(range(2, grad.ndim))
    return mx.sum(grad, axis=axes)


# =============================================================================
# Accelerated building blocks (channels-last)
# =============================================================================


def conv_forward_accelerated(
    x_cl: mx.array, weight_cl: mx.array, strides: Sequence[int], pads: Sequence[int]
) -> mx.array:
    return mx.conv_general(x_cl, weight_cl, stride=list(strides), padding=list(pads))


def conv_vjp_accelerated(
    x_cl: mx.array,
    weight_cl: mx.array,
    grad_cl: mx.array,
    strides: Sequence[int],
    pads: Sequence[int],
):
    """(input_grad, weight_grad), both channels-last."""

    def forward(x, w):
        return conv_forward_accelerated(x, w, strides, pads)

    _, (x_grad, w_grad) = mx.vjp(forward, [x_cl, weight_cl], [grad_cl])
    return x_grad, w_grad


# =============================================================================
# Kernels
# =============================================================================


def _expected_weight(params: ConvolutionParam, channels: int) -> Tuple[int, ...]:
    return (params.num_filter, channels) + tuple(params.kernel)


@convolution.generic
def _convolution_generic(op_ctx, params, inputs, out_shapes):
    x = inputs[0].data()
    weight = inputs[1].data()
    check_shapes(params, x.shape, weight.shape, _expected_weight(params, x.shape[1]))
    out = conv_forward_generic(x, weight, params.strides, params.pads)
    if not params.no_bias:
        out = out + inputs[2].data().reshape(_bias_shape(params.spatial_ndim(), params.num_filter))
    return [out]


@convolution.accelerated
def _convolution_accelerated(op_ctx, params, inputs, out_shapes):
    data, weight = inputs[0], inputs[1]
    check_shapes(params, data.shape, weight.shape, _expected_weight(params, data.shape[1]))
    out = conv_forward_accelerated(
        _window.channels_last_data(data),
        _window.to_channels_last(weight.data()),
        params.strides,
        params.pads,
    )
    if not params.no_bias:
        out = out + inputs[2].data()
    return [_window.to_channels_first(out)]


@_backward_convolution.generic
def _backward_convolution_generic(op_ctx, params, inputs, out_shapes):
    grad = inputs[0].data()
    x = inputs[1].data()
    weight = inputs[2].data()
    check_shapes(params, x.shape, weight.shape, _expected_weight(params, x.shape[1]))
    results = [
        conv_data_grad_generic(grad, weight, x.shape[2:], params.strides, params.pads),
        conv_weight_grad_generic(grad, x, params.kernel, params.strides, params.pads),
    ]
    if not params.no_bias:
        results.append(bias_grad(grad))
    return results


@_backward_convolution.accelerated
def _backward_convolution_accelerated(op_ctx, params, inputs, out_shapes):
    grad, data, weight = inputs[0], inputs[1], inputs[2]
    check_shapes(params, data.shape, weight.shape, _expected_weight(params, data.shape[1]))
    grad_cl = _window.channels_last_data(grad)
    x_grad, w_grad = conv_vjp_accelerated(
        _window.channels_last_data(data),
        _window.to_channels_last(weight.data()),
        grad_cl,
        params.strides,
        params.pads,
    )
    results = [_window.to_channels_first(x_grad), _window.to_channels_first(w_grad)]
    if not params.no_bias:
        results.append(mx.sum(grad_cl, axis=list(range(grad_cl.ndim - 1))))
    return results
