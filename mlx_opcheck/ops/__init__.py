"""Operator definitions.

Importing this package registers every operator with the
:class:`~mlx_opcheck.ops.registry.OpRegistry`:

- ``_copy`` / ``_backward_copy``
- ``Activation`` / ``_backward_Activation``
- ``elemwise_add`` / ``_backward_add``
- ``concat`` / ``_backward_Concat``
- ``Pooling`` / ``_backward_Pooling``
- ``LRN`` / ``_backward_LRN``
- ``FullyConnected`` / ``_backward_FullyConnected``
- ``Convolution`` / ``_backward_Convolution``
- ``Deconvolution`` / ``_backward_Deconvolution``
"""

from mlx_opcheck.ops import (  # noqa: F401
    activation,
    concat,
    convolution,
    copy,
    deconvolution,
    elemwise,
    fully_connected,
    lrn,
    pooling,
)
from mlx_opcheck.ops.params import (
    ActivationParam,
    ConcatParam,
    ConvolutionParam,
    DeconvolutionParam,
    EmptyParam,
    FullyConnectedParam,
    LRNParam,
    OpParam,
    PoolingParam,
)
from mlx_opcheck.ops.registry import NodeAttrs, Op, OpRegistry, list_ops, register_op

__all__ = [
    "ActivationParam",
    "ConcatParam",
    "ConvolutionParam",
    "DeconvolutionParam",
    "EmptyParam",
    "FullyConnectedParam",
    "LRNParam",
    "OpParam",
    "PoolingParam",
    "NodeAttrs",
    "Op",
    "OpRegistry",
    "list_ops",
    "register_op",
]
