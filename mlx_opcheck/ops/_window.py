"""Sliding-window helpers shared by pooling and (de)convolution kernels.

All helpers work on channels-first arrays of shape (N, C, spatial...) and
express windows as one strided slice per kernel offset, which keeps the
generic kernels down to elementary slicing, padding and matmul.
"""

from __future__ import annotations

import itertools
from typing import Iterator, Sequence, Tuple

import mlx.core as mx

from mlx_opcheck.ndarray import NDArray, channels_first_perm, channels_last_perm
from mlx_opcheck.utils.shapes import calculate_width_pool_output


def window_offsets(kernel: Sequence[int]) -> Iterator[Tuple[int, ...]]:
    """Kernel offsets in raster order."""
    return itertools.product(*(range(k) for k in kernel))


def output_spatial(
    in_spatial: Sequence[int],
    kernel: Sequence[int],
    pads: Sequence[int],
    strides: Sequence[int],
) -> Tuple[int, ...]:
    return tuple(
        calculate_width_pool_output(w, k, p, s)
        for w, k, p, s in zip(in_spatial, kernel, pads, strides)
    )


def pad_spatial(x: mx.array, pads: Sequence[int], value: float = 0.0) -> mx.array:
    """Pad every spatial axis of ``x`` by ``pads[i]`` on both sides."""
    if not any(pads):
        return x
    widths = [(0, 0), (0, 0)] + [(p, p) for p in pads]
    return mx.pad(x, widths, constant_values=value)


def strided_window(
    padded: mx.array,
    offset: Sequence[int],
    out_spatial: Sequence[int],
    strides: Sequence[int],
) -> mx.array:
    """Elements of ``padded`` seen at kernel ``offset`` by every output position."""
    index = [slice(None), slice(None)]
    for k, o, s in zip(offset, out_spatial, strides):
        index.append(slice(k, k + (o - 1) * s + 1, s))
    return padded[tuple(index)]


def dilate(x: mx.array, strides: Sequence[int]) -> mx.array:
    """Insert ``stride - 1`` zeros between neighbours along each spatial axis."""
    for axis, s in enumerate(strides, start=2):
        if s == 1:
            continue
        n = x.shape[axis]
        expanded = mx.expand_dims(x, axis + 1)
        widths = [(0, 0)] * expanded.ndim
        widths[axis + 1] = (0, s - 1)
        expanded = mx.pad(expanded, widths)
        shape = list(x.shape)
        shape[axis] = n * s
        x = expanded.reshape(shape)
        index = [slice(None)] * x.ndim
        index[axis] = slice(0, (n - 1) * s + 1)
        x = x[tuple(index)]
    return x


def place_window(
    contrib: mx.array,
    offset: Sequence[int],
    strides: Sequence[int],
    padded_spatial: Sequence[int],
) -> mx.array:
    """Inverse of :func:`strided_window`: scatter ``contrib`` back into a
    zero array of the padded input's spatial size."""
    x = dilate(contrib, strides)
    widths = [(0, 0), (0, 0)]
    for axis, (k, total) in enumerate(zip(offset, padded_spatial), start=2):
        widths.append((k, total - k - x.shape[axis]))
    return mx.pad(x, widths)


def crop_spatial(x: mx.array, pads: Sequence[int], in_spatial: Sequence[int]) -> mx.array:
    """Drop the padding added by :func:`pad_spatial`."""
    if not any(pads):
        return x
    index = [slice(None), slice(None)]
    for p, w in zip(pads, in_spatial):
        index.append(slice(p, p + w))
    return x[tuple(index)]


# =============================================================================
# Channels-last views for the accelerated kernels
# =============================================================================


def channels_last_data(arr: NDArray) -> mx.array:
    """Contents of ``arr`` as (N, spatial..., C), skipping the transpose when
    the array is already stored channels-last."""
    if arr.is_accelerated:
        return arr.physical_data()
    return arr.data().transpose(channels_last_perm(arr.ndim))


def to_channels_last(x: mx.array) -> mx.array:
    return x.transpose(channels_last_perm(x.ndim))


def to_channels_first(x: mx.array) -> mx.array:
    return x.transpose(channels_first_perm(x.ndim))
