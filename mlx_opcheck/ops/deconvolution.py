"""Transposed convolution (deconvolution) and its gradient.

Inputs are ``(data, weight[, bias])`` with data ``(N, C, spatial...)`` and
weight ``(C, num_filter, kernel...)``; each spatial output extent is
``stride * (w - 1) + kernel - 2 * pad``. Deconvolution is the input
gradient of a convolution whose weight is this weight, so both paths are
built from the convolution helpers: the forward pass of one is the data
gradient of the other and vice versa.
"""

import mlx.core as mx

from mlx_opcheck.ops import _window
from mlx_opcheck.ops.convolution import (
    bias_grad,
    check_shapes,
    conv_data_grad_generic,
    conv_forward_accelerated,
    conv_forward_generic,
    conv_weight_grad_generic,
)
from mlx_opcheck.ops.params import DeconvolutionParam
from mlx_opcheck.ops.registry import register_op
from mlx_opcheck.utils.shapes import calculate_width_deconv_output

deconvolution = register_op(
    "Deconvolution",
    DeconvolutionParam,
    num_inputs=lambda p: 2 if p.no_bias else 3,
    description="Transposed convolution with num_filter output channels.",
)
_backward_deconvolution = register_op(
    "_backward_Deconvolution",
    DeconvolutionParam,
    num_inputs=lambda p: 3 if p.no_bias else 4,
    num_outputs=lambda p: 2 if p.no_bias else 3,
    description="Gradients of Deconvolution for data, weight and bias.",
)


def _output_spatial(params: DeconvolutionParam, in_spatial):
    return tuple(
        calculate_width_deconv_output(w, k, p, s)
        for w, k, p, s in zip(in_spatial, params.kernel, params.pads, params.strides)
    )


def _check(params: DeconvolutionParam, data_shape, weight_shape) -> None:
    expected = (data_shape[1], params.num_filter) + tuple(params.kernel)
    check_shapes(params, data_shape, weight_shape, expected)
    if any(o < 1 for o in _output_spatial(params, data_shape[2:])):
        raise ValueError(f"Deconvolution: empty output for input {data_shape} and {params}")


def _add_bias(out: mx.array, bias: mx.array) -> mx.array:
    return out + bias.reshape((1, -1) + (1,) * (out.ndim - 2))


@deconvolution.generic
def _deconvolution_generic(op_ctx, params, inputs, out_shapes):
    x = inputs[0].data()
    weight = inputs[1].data()
    _check(params, x.shape, weight.shape)
    out = conv_data_grad_generic(
        x, weight, _output_spatial(params, x.shape[2:]), params.strides, params.pads
    )
    if not params.no_bias:
        out = _add_bias(out, inputs[2].data())
    return [out]


@deconvolution.accelerated
def _deconvolution_accelerated(op_ctx, params, inputs, out_shapes):
    data, weight = inputs[0], inputs[1]
    _check(params, data.shape, weight.shape)
    x_cl = _window.channels_last_data(data)
    weight_cl = _window.to_channels_last(weight.data())
    out_spatial = _output_spatial(params, data.shape[2:])
    primal = mx.zeros((data.shape[0],) + out_spatial + (params.num_filter,), dtype=x_cl.dtype)

    def conv(z):
        return conv_forward_accelerated(z, weight_cl, params.strides, params.pads)

    _, (out,) = mx.vjp(conv, [primal], [x_cl])
    out = _window.to_channels_first(out)
    if not params.no_bias:
        out = _add_bias(out, inputs[2].data())
    return [out]


@_backward_deconvolution.generic
def _backward_deconvolution_generic(op_ctx, params, inputs, out_shapes):
    grad = inputs[0].data()
    x = inputs[1].data()
    weight = inputs[2].data()
    _check(params, x.shape, weight.shape)
    results = [
        conv_forward_generic(grad, weight, params.strides, params.pads),
        conv_weight_grad_generic(x, grad, params.kernel, params.strides, params.pads),
    ]
    if not params.no_bias:
        results.append(bias_grad(grad))
    return results


@_backward_deconvolution.accelerated
def _backward_deconvolution_accelerated(op_ctx, params, inputs, out_shapes):
    grad, data, weight = inputs[0], inputs[1], inputs[2]
    _check(params, data.shape, weight.shape)
    grad_cl = _window.channels_last_data(grad)
    weight_cl = _window.to_channels_last(weight.data())

    def conv(w):
        return conv_forward_accelerated(grad_cl, w, params.strides, params.pads)

    data_grad, (weight_grad,) = mx.vjp(conv, [weight_cl], [_window.channels_last_data(data)])
    results = [_window.to_channels_first(data_grad[0]), _window.to_channels_first(weight_grad)]
    if not params.no_bias:
        results.append(mx.sum(grad_cl, axis=list(range(grad_cl.ndim - 1))))
    return results
