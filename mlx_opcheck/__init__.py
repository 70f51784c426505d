"""MLX OpCheck: cross-dispatch verification for MLX operators.

Every operator has a generic path built from elementary MLX ops and an
accelerated path built from fused primitives (Metal kernels, native
convolution, addmm). The :mod:`mlx_opcheck.testing` drivers run both paths
through the imperative dispatcher on synthetic arrays in every layout
variant and check that they agree.
"""

from mlx_opcheck.constants import (
    ArrayTypes,
    DispatchMode,
    Layout,
    OpReqType,
)

from mlx_opcheck.context import Context
from mlx_opcheck.ndarray import NDArray, NDArrayAttrs
from mlx_opcheck.engine import Engine
from mlx_opcheck.imperative import Imperative, OpContext

# Operator registry
from mlx_opcheck.ops import (
    NodeAttrs,
    Op,
    list_ops,
    register_op,
)

# Configuration
from mlx_opcheck.config import (
    VerifyConfig,
    get_verify_config,
    verify_context,
)

from mlx_opcheck.utils.exceptions import (
    ArityError,
    AttributeParseError,
    DispatchError,
    OpCheckError,
    OperatorNotFoundError,
    VerificationError,
)

__version__ = "0.1.0"

__all__ = [
    # Enums
    "ArrayTypes",
    "DispatchMode",
    "Layout",
    "OpReqType",
    # Core
    "Context",
    "NDArray",
    "NDArrayAttrs",
    "Engine",
    "Imperative",
    "OpContext",
    "NodeAttrs",
    "Op",
    "list_ops",
    "register_op",
    # Config
    "VerifyConfig",
    "get_verify_config",
    "verify_context",
    # Errors
    "ArityError",
    "AttributeParseError",
    "DispatchError",
    "OpCheckError",
    "OperatorNotFoundError",
    "VerificationError",
]
