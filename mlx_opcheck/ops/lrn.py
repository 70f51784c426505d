"""Local response normalization across channels.

    norm = knorm + alpha / nsize * sum_{|j - c| <= nsize // 2} x[:, j] ** 2
    out  = x * norm ** -beta

The forward operator has two outputs: ``out`` and ``norm`` (the "tmp norm"
reused by the backward operator). ``_backward_LRN`` takes
``(out_grad, data, tmp_norm)``.
"""

import mlx.core as mx

from mlx_opcheck.ops.params import LRNParam
from mlx_opcheck.ops.registry import register_op

lrn = register_op(
    "LRN", LRNParam, num_outputs=2, description="Local response normalization over channels."
)
_backward_lrn = register_op(
    "_backward_LRN", LRNParam, num_inputs=3, description="Gradient of LRN."
)


def _check_input(x: mx.array) -> None:
    if x.ndim < 3:
        raise ValueError(f"LRN needs an (N, C, spatial...) input, got shape {x.shape}")


def _channel_window_sum(x: mx.array, nsize: int) -> mx.array:
    """Sum over a centered window of ``nsize`` channels (axis 1), zero padded."""
    half = nsize // 2
    widths = [(0, 0)] * x.ndim
    widths[1] = (half, half)
    padded = mx.pad(x, widths)
    channels = x.shape[1]
    total = padded[:, 0:channels]
    for j in range(1, nsize):
        total = total + padded[:, j:j + channels]
    return total


def _channel_window_conv(x: mx.array, nsize: int) -> mx.array:
    """Same as :func:`_channel_window_sum`, as a 1-D convolution with a ones
    kernel running along the channel axis."""
    channels = x.shape[1]
    moved = mx.moveaxis(x, 1, -1)
    rows = moved.reshape(-1, channels, 1)
    weight = mx.ones((1, nsize, 1), dtype=x.dtype)
    summed = mx.conv1d(rows, weight, padding=nsize // 2)
    return mx.moveaxis(summed.reshape(moved.shape), -1, 1)


def _accelerated_forward(params: LRNParam, x: mx.array):
    norm = params.knorm + (params.alpha / params.nsize) * _channel_window_conv(x * x, params.nsize)
    return x * mx.power(norm, -params.beta), norm


@lrn.generic
def _lrn_generic(op_ctx, params, inputs, out_shapes):
    x = inputs[0].data()
    _check_input(x)
    norm = params.knorm + (params.alpha / params.nsize) * _channel_window_sum(x * x, params.nsize)
    return [x * mx.power(norm, -params.beta), norm]


@lrn.accelerated
def _lrn_accelerated(op_ctx, params, inputs, out_shapes):
    x = inputs[0].data()
    _check_input(x)
    out, norm = _accelerated_forward(params, x)
    return [out, norm]


@_backward_lrn.generic
def _backward_lrn_generic(op_ctx, params, inputs, out_shapes):
    grad = inputs[0].data()
    x = inputs[1].data()
    norm = inputs[2].data()
    _check_input(x)
    scale = 2.0 * params.alpha * params.beta / params.nsize
    inner = _channel_window_sum(grad * x * mx.power(norm, -params.beta - 1.0), params.nsize)
    return [grad * mx.power(norm, -params.beta) - scale * x * inner]


@_backward_lrn.accelerated
def _backward_lrn_accelerated(op_ctx, params, inputs, out_shapes):
    grad = inputs[0].data()
    x = inputs[1].data()
    _check_input(x)
    _, vjps = mx.vjp(lambda z: _accelerated_forward(params, z)[0], [x], [grad])
    return [vjps[0]]
