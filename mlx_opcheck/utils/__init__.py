"""Utility functions for mlx-opcheck."""

from mlx_opcheck.utils.exceptions import (
    ArityError,
    AttributeParseError,
    DispatchError,
    MetalKernelError,
    OpCheckError,
    OperatorNotFoundError,
    VerificationError,
)
from mlx_opcheck.utils.logging import (
    get_logger,
    has_metal_kernels,
    log_dispatch_failure,
    log_fallback,
    should_use_metal,
)
from mlx_opcheck.utils.shapes import (
    calculate_width_conv_output,
    calculate_width_deconv_output,
    calculate_width_pool_output,
    create_shape_string,
    get_block_size,
    get_dim,
    parse_shape_string,
    prod,
    scale_shape,
)

__all__: list[str] = [
    # Exceptions
    "ArityError",
    "AttributeParseError",
    "DispatchError",
    "MetalKernelError",
    "OpCheckError",
    "OperatorNotFoundError",
    "VerificationError",
    # Logging
    "get_logger",
    "has_metal_kernels",
    "log_dispatch_failure",
    "log_fallback",
    "should_use_metal",
    # Shapes
    "calculate_width_conv_output",
    "calculate_width_deconv_output",
    "calculate_width_pool_output",
    "create_shape_string",
    "get_block_size",
    "get_dim",
    "parse_shape_string",
    "prod",
    "scale_shape",
]
