"""Centralized constants and enums for mlx-opcheck.

This module provides documented constants and type-safe enums used throughout
the codebase to ensure consistency and traceability.
"""

from enum import Enum, Flag


# =============================================================================
# ENUMS - Type-safe alternatives to string literals
# =============================================================================


class DispatchMode(str, Enum):
    """Execution path selected for an operator invocation.

    GENERIC: composition of elementary MLX ops (reference path)
    ACCELERATED: fused library primitives (Metal kernels, native conv/addmm)
    """

    GENERIC = "fcompute"
    ACCELERATED = "fcompute_ex"


class OpReqType(str, Enum):
    """Write semantics for one operator output.

    NULL: the output is not written
    WRITE_TO: overwrite the output buffer
    WRITE_INPLACE: the output buffer aliases an input and is overwritten
    ADD_TO: accumulate the result into the existing output content
    """

    NULL = "null"
    WRITE_TO = "write_to"
    WRITE_INPLACE = "write_inplace"
    ADD_TO = "add_to"


class Layout(str, Enum):
    """Physical storage order of an NDArray.

    DEFAULT: row-major in logical order (N, C, spatial...)
    CHANNELS_LAST: row-major in (N, spatial..., C) order, the layout
        native to MLX convolutions
    """

    DEFAULT = "default"
    CHANNELS_LAST = "channels_last"


class ArrayTypes(Flag):
    """Layout variants generated for operator inputs and outputs.

    Reshaped variants are views into a larger buffer. Reused variants are
    carved out of a larger allocation. The DIFF_DTYPE variant starts life
    with a different element type and is re-typed before use.
    """

    NONE = 0
    NORMAL = 1
    ACCEL = 2
    NORMAL_RESHAPED = 4
    ACCEL_RESHAPED = 8
    NORMAL_REUSED = 16
    ACCEL_REUSED = 32
    NORMAL_RESHAPED_REUSED = 64
    NORMAL_REUSED_DIFF_DTYPE = 128
    ALL = 255


# =============================================================================
# VERIFICATION TOLERANCES
# =============================================================================

# |a - b| <= atol + rtol * |b|
DEFAULT_RTOL = 1e-5
DEFAULT_ATOL = 1e-8

# Half-width of the integer fill range used for synthetic arrays. Small
# integers keep every product/sum in the conv and FC paths exactly
# representable in float32, so both dispatch paths agree bit for bit.
DEFAULT_INIT_MAX_VALUE = 5


# =============================================================================
# OPERATOR DEFAULTS
# =============================================================================

# LRN defaults: out = x * (knorm + alpha / nsize * sum(x^2)) ** -beta
LRN_DEFAULT_ALPHA = 1e-4
LRN_DEFAULT_BETA = 0.75
LRN_DEFAULT_KNORM = 2.0
