"""Activation functions and their gradients.

``_backward_Activation`` takes (out_grad, data) and differentiates with
respect to the forward input.
"""

import mlx.core as mx

from mlx_opcheck import kernels
from mlx_opcheck.ops.params import ActivationParam
from mlx_opcheck.ops.registry import register_op

activation = register_op(
    "Activation", ActivationParam, description="Apply an element-wise activation."
)
_backward_activation = register_op(
    "_backward_Activation", ActivationParam, num_inputs=2, description="Gradient of Activation."
)


def _sigmoid(x: mx.array) -> mx.array:
    return 1.0 / (1.0 + mx.exp(-x))


def _generic_forward(act_type: str, x: mx.array) -> mx.array:
    if act_type == "relu":
        return mx.where(x > 0, x, 0.0)
    if act_type == "sigmoid":
        return _sigmoid(x)
    if act_type == "tanh":
        return 2.0 * _sigmoid(2.0 * x) - 1.0
    if act_type == "softrelu":
        return mx.log(1.0 + mx.exp(x))
    return x / (1.0 + mx.abs(x))


def _generic_backward(act_type: str, grad: mx.array, x: mx.array) -> mx.array:
    if act_type == "relu":
        return mx.where(x > 0, grad, 0.0)
    if act_type == "sigmoid":
        s = _sigmoid(x)
        return grad * s * (1.0 - s)
    if act_type == "tanh":
        t = _generic_forward("tanh", x)
        return grad * (1.0 - t * t)
    if act_type == "softrelu":
        return grad * _sigmoid(x)
    denom = 1.0 + mx.abs(x)
    return grad / (denom * denom)


def _accelerated_forward(act_type: str, x: mx.array) -> mx.array:
    if act_type == "relu":
        return kernels.relu(x)
    if act_type == "sigmoid":
        return mx.sigmoid(x)
    if act_type == "tanh":
        return mx.tanh(x)
    if act_type == "softrelu":
        return mx.logaddexp(x, mx.zeros_like(x))
    return x / (1.0 + mx.abs(x))


@activation.generic
def _activation_generic(op_ctx, params, inputs, out_shapes):
    return [_generic_forward(params.act_type, inputs[0].data())]


@activation.accelerated
def _activation_accelerated(op_ctx, params, inputs, out_shapes):
    return [_accelerated_forward(params.act_type, inputs[0].data())]


@_backward_activation.generic
def _backward_activation_generic(op_ctx, params, inputs, out_shapes):
    grad, data = inputs
    return [_generic_backward(params.act_type, grad.data(), data.data())]


@_backward_activation.accelerated
def _backward_activation_accelerated(op_ctx, params, inputs, out_shapes):
    grad = inputs[0].data()
    x = inputs[1].data()
    if params.act_type == "relu":
        return [kernels.relu_backward(grad, x)]
    _, vjps = mx.vjp(lambda z: _accelerated_forward(params.act_type, z), [x], [grad])
    return [vjps[0]]
