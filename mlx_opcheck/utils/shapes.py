"""Shape helpers shared by operator params, kernels and test generation."""

from __future__ import annotations

import math
from typing import Sequence, Tuple


def prod(shape: Sequence[int]) -> int:
    """Number of elements for a shape (1 for the empty shape)."""
    return math.prod(shape)


def create_shape_string(value: int, dim: int) -> str:
    """Build an attribute shape string with ``dim`` copies of ``value``.

    >>> create_shape_string(3, 2)
    '(3,3)'
    """
    return "(" + ",".join([str(value)] * dim) + ")"


def parse_shape_string(text: str) -> Tuple[int, ...]:
    """Parse an attribute shape string such as ``"(3, 3)"`` or ``"[2,2]"``.

    A bare integer parses to a 1-tuple.

    Raises:
        ValueError: If the string is not a list of integers.
    """
    stripped = text.strip()
    if stripped[:1] in "([" and stripped[-1:] in ")]":
        stripped = stripped[1:-1]
    parts = [p.strip() for p in stripped.split(",") if p.strip()]
    if not parts:
        return ()
    return tuple(int(p) for p in parts)


def calculate_width_conv_output(width: int, kernel: int, padding: int, stride: int) -> int:
    return (width - kernel + 2 * padding) // stride + 1


def calculate_width_deconv_output(width: int, kernel: int, padding: int, stride: int) -> int:
    return stride * (width - 1) + kernel - 2 * padding


def calculate_width_pool_output(width: int, kernel: int, padding: int, stride: int) -> int:
    return (width + 2 * padding - kernel) // stride + 1


def scale_shape(shape: Sequence[int], scale: Sequence[float]) -> Tuple[int, ...]:
    """Scale each leading dimension of ``shape`` by the matching factor.

    Dimensions beyond ``len(scale)`` are kept. Results are rounded to the
    nearest integer.
    """
    out = list(shape)
    for i, factor in enumerate(scale[: len(out)]):
        out[i] = int(round(out[i] * factor))
    return tuple(out)


def get_dim(in_shape: Sequence[int], out_shape: Sequence[int]) -> int:
    """Return the first axis on which two shapes of equal rank differ.

    Returns -1 if the shapes are identical.
    """
    if len(in_shape) != len(out_shape):
        raise ValueError(f"rank mismatch: {tuple(in_shape)} vs {tuple(out_shape)}")
    for i, (a, b) in enumerate(zip(in_shape, out_shape)):
        if a != b:
            return i
    return -1


def get_block_size(shape: Sequence[int], dim: int) -> int:
    """Contiguous element count of one block starting at axis ``dim``."""
    return prod(shape[dim:])
