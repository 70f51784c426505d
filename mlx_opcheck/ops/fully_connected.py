"""Fully connected (dense) layer.

Inputs are ``(data, weight[, bias])`` with weight of shape
``(num_hidden, D)``. With ``flatten`` the data is viewed as ``(N, D)``;
otherwise the last axis is ``D`` and leading axes are kept.
``_backward_FullyConnected`` takes ``(out_grad, data, weight)`` and returns
``(data_grad, weight_grad[, bias_grad])``.
"""

import mlx.core as mx

from mlx_opcheck.ops.params import FullyConnectedParam
from mlx_opcheck.ops.registry import register_op

fully_connected = register_op(
    "FullyConnected",
    FullyConnectedParam,
    num_inputs=lambda p: 2 if p.no_bias else 3,
    description="out = data @ weight.T + bias",
)
_backward_fully_connected = register_op(
    "_backward_FullyConnected",
    FullyConnectedParam,
    num_inputs=3,
    num_outputs=lambda p: 2 if p.no_bias else 3,
    description="Gradients of FullyConnected for data, weight and bias.",
)


def _as_rows(params: FullyConnectedParam, x: mx.array, weight: mx.array) -> mx.array:
    if params.flatten:
        rows = x.reshape(x.shape[0], -1)
    else:
        rows = x.reshape(-1, x.shape[-1])
    if rows.shape[1] != weight.shape[1] or weight.shape[0] != params.num_hidden:
        raise ValueError(
            f"FullyConnected: data {x.shape} does not match weight {weight.shape} "
            f"for num_hidden={params.num_hidden}"
        )
    return rows


def _out_shape(params: FullyConnectedParam, x_shape):
    if params.flatten:
        return (x_shape[0], params.num_hidden)
    return tuple(x_shape[:-1]) + (params.num_hidden,)


@fully_connected.generic
def _fc_generic(op_ctx, params, inputs, out_shapes):
    x = inputs[0].data()
    weight = inputs[1].data()
    rows = _as_rows(params, x, weight)
    out = rows @ weight.T
    if not params.no_bias:
        out = out + inputs[2].data()
    return [out.reshape(_out_shape(params, x.shape))]


@fully_connected.accelerated
def _fc_accelerated(op_ctx, params, inputs, out_shapes):
    x = inputs[0].data()
    weight = inputs[1].data()
    rows = _as_rows(params, x, weight)
    if params.no_bias:
        out = mx.matmul(rows, weight.T)
    else:
        out = mx.addmm(inputs[2].data(), rows, weight.T)
    return [out.reshape(_out_shape(params, x.shape))]


@_backward_fully_connected.generic
def _backward_fc_generic(op_ctx, params, inputs, out_shapes):
    x = inputs[1].data()
    weight = inputs[2].data()
    rows = _as_rows(params, x, weight)
    grad = inputs[0].data().reshape(-1, params.num_hidden)
    data_grad = (grad @ weight).reshape(x.shape)
    weight_grad = grad.T @ rows
    if params.no_bias:
        return [data_grad, weight_grad]
    return [data_grad, weight_grad, mx.sum(grad, axis=0)]


@_backward_fully_connected.accelerated
def _backward_fc_accelerated(op_ctx, params, inputs, out_shapes):
    x = inputs[1].data()
    weight = inputs[2].data()
    rows = _as_rows(params, x, weight)
    grad = inputs[0].data().reshape(-1, params.num_hidden)
    bias = mx.zeros(grad.shape, dtype=grad.dtype)

    def forward(r, w):
        return mx.addmm(bias, r, w.T)

    _, (rows_grad, weight_grad) = mx.vjp(forward, [rows, weight], [grad])
    data_grad = rows_grad.reshape(x.shape)
    if params.no_bias:
        return [data_grad, weight_grad]
    return [data_grad, weight_grad, grad.sum(axis=0)]
