"""Max / average / sum pooling over 1-3 spatial dimensions.

2-D max pooling emits a second output, the *workspace*: for every output
position the raster index of the selected element inside its window, stored
as float. Ties pick the first maximum in raster order on both paths, so the
gradients they route agree exactly. The workspace is only written in
training mode.

``_backward_Pooling`` inputs are ``(out_grad, workspace_grad, data, out,
workspace)`` when the forward operator has a workspace and
``(out_grad, data, out)`` otherwise.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import mlx.core as mx

from mlx_opcheck.ops import _window
from mlx_opcheck.ops.params import PoolingParam
from mlx_opcheck.ops.registry import register_op
from mlx_opcheck.utils.shapes import prod

pooling = register_op(
    "Pooling",
    PoolingParam,
    num_outputs=lambda p: 2 if p.has_workspace() else 1,
    description="Windowed max/avg/sum reduction over the spatial axes.",
)
_backward_pooling = register_op(
    "_backward_Pooling",
    PoolingParam,
    num_inputs=lambda p: 5 if p.has_workspace() else 3,
    description="Gradient of Pooling with respect to its data input.",
)


def _check_input(params: PoolingParam, shape: Tuple[int, ...]) -> None:
    if len(shape) != params.spatial_ndim() + 2:
        raise ValueError(
            f"Pooling: kernel {params.kernel} needs a {params.spatial_ndim() + 2}-D input, got {shape}"
        )


def _geometry(params: PoolingParam, shape: Tuple[int, ...]):
    _check_input(params, shape)
    in_spatial = shape[2:]
    out_spatial = _window.output_spatial(in_spatial, params.kernel, params.pads, params.strides)
    padded_spatial = tuple(w + 2 * p for w, p in zip(in_spatial, params.pads))
    return in_spatial, out_spatial, padded_spatial


def _pad_value(params: PoolingParam) -> float:
    return float("-inf") if params.pool_type == "max" else 0.0


def _divisor(params: PoolingParam, in_spatial, out_spatial) -> Optional[mx.array]:
    """Per-output-position element count for average pooling."""
    if params.pool_type != "avg":
        return None
    if params.count_include_pad:
        return mx.array(float(prod(params.kernel)))
    ones = mx.ones((1, 1) + tuple(in_spatial))
    padded = _window.pad_spatial(ones, params.pads)
    count = None
    for offset in _window.window_offsets(params.kernel):
        win = _window.strided_window(padded, offset, out_spatial, params.strides)
        count = win if count is None else count + win
    return count


# =============================================================================
# Generic path: one strided slice per kernel offset
# =============================================================================


@pooling.generic
def _pooling_generic(op_ctx, params, inputs, out_shapes):
    x = inputs[0].data()
    in_spatial, out_spatial, _ = _geometry(params, x.shape)
    padded = _window.pad_spatial(x, params.pads, _pad_value(params))

    out = None
    index = None
    for k, offset in enumerate(_window.window_offsets(params.kernel)):
        win = _window.strided_window(padded, offset, out_spatial, params.strides)
        if out is None:
            out = win
            index = mx.zeros(win.shape, dtype=mx.float32)
        elif params.pool_type == "max":
            better = win > out
            out = mx.where(better, win, out)
            index = mx.where(better, float(k), index)
        else:
            out = out + win

    divisor = _divisor(params, in_spatial, out_spatial)
    if divisor is not None:
        out = out / divisor
    if not params.has_workspace():
        return [out]
    return [out, index if op_ctx.is_training else None]


def _max_positions_generic(params, x, out_spatial) -> List[mx.array]:
    """One mask per kernel offset marking the element each window selects."""
    padded = _window.pad_spatial(x, params.pads, float("-inf"))
    wins = [
        _window.strided_window(padded, offset, out_spatial, params.strides)
        for offset in _window.window_offsets(params.kernel)
    ]
    best = wins[0]
    for win in wins[1:]:
        best = mx.maximum(best, win)
    taken = mx.zeros(best.shape, dtype=mx.bool_)
    masks = []
    for win in wins:
        mask = mx.logical_and(win == best, mx.logical_not(taken))
        taken = mx.logical_or(taken, mask)
        masks.append(mask)
    return masks


@_backward_pooling.generic
def _backward_pooling_generic(op_ctx, params, inputs, out_shapes):
    grad = inputs[0].data()
    x = inputs[2 if params.has_workspace() else 1].data()
    in_spatial, out_spatial, padded_spatial = _geometry(params, x.shape)
    offsets = list(_window.window_offsets(params.kernel))

    if params.pool_type == "max":
        masks = _max_positions_generic(params, x, out_spatial)
        contribs = [mx.where(mask, grad, 0.0) for mask in masks]
    else:
        divisor = _divisor(params, in_spatial, out_spatial)
        share = grad if divisor is None else grad / divisor
        contribs = [share] * len(offsets)

    dx = None
    for offset, contrib in zip(offsets, contribs):
        placed = _window.place_window(contrib, offset, params.strides, padded_spatial)
        dx = placed if dx is None else dx + placed
    return [_window.crop_spatial(dx, params.pads, in_spatial)]


# =============================================================================
# Accelerated path: as_strided windows, arg-max and scatter-add
# =============================================================================


def _windows(params: PoolingParam, x: mx.array, out_spatial) -> mx.array:
    """Strided view (N, C, out..., k...) of every pooling window."""
    padded = mx.contiguous(_window.pad_spatial(x, params.pads, _pad_value(params)))
    row_strides = [1]
    for extent in reversed(padded.shape[1:]):
        row_strides.insert(0, row_strides[0] * extent)
    spatial_strides = row_strides[2:]
    shape = padded.shape[:2] + tuple(out_spatial) + tuple(params.kernel)
    strides = (
        row_strides[:2]
        + [st * s for st, s in zip(spatial_strides, params.strides)]
        + spatial_strides
    )
    return mx.as_strided(padded, shape, strides)


def _first_argmax(flat_windows: mx.array) -> mx.array:
    best = mx.max(flat_windows, axis=-1, keepdims=True)
    ks = mx.arange(flat_windows.shape[-1])
    candidates = mx.where(flat_windows == best, ks, flat_windows.shape[-1])
    return mx.min(candidates, axis=-1)


@pooling.accelerated
def _pooling_accelerated(op_ctx, params, inputs, out_shapes):
    x = inputs[0].data()
    in_spatial, out_spatial, _ = _geometry(params, x.shape)
    wins = _windows(params, x, out_spatial)
    flat = wins.reshape(wins.shape[: 2 + len(out_spatial)] + (-1,))

    if params.pool_type == "max":
        out = mx.max(flat, axis=-1)
    else:
        out = mx.sum(flat, axis=-1)
        divisor = _divisor(params, in_spatial, out_spatial)
        if divisor is not None:
            out = out / divisor
    if not params.has_workspace():
        return [out]
    if not op_ctx.is_training:
        return [out, None]
    return [out, _first_argmax(flat).astype(mx.float32)]


def _padded_flat_index(
    index: mx.array, x_shape: Sequence[int], params: PoolingParam, out_spatial, padded_spatial
) -> mx.array:
    """Flat index into the padded input of the element chosen by each window."""
    n, c = x_shape[:2]
    nd = len(out_spatial)
    flat = (mx.arange(n * c).reshape((n, c) + (1,) * nd)).astype(mx.int32)
    remainder = index.astype(mx.int32)
    kernel_steps = []
    for k in reversed(params.kernel):
        kernel_steps.insert(0, remainder % k)
        remainder = remainder // k
    for axis, (o, s, total, k_off) in enumerate(
        zip(out_spatial, params.strides, padded_spatial, kernel_steps)
    ):
        shape = [1] * (2 + nd)
        shape[2 + axis] = o
        position = mx.arange(o).reshape(shape).astype(mx.int32) * s + k_off
        flat = flat * total + position
    return flat


@_backward_pooling.accelerated
def _backward_pooling_accelerated(op_ctx, params, inputs, out_shapes):
    grad = inputs[0].data()
    x = inputs[2 if params.has_workspace() else 1].data()
    in_spatial, out_spatial, padded_spatial = _geometry(params, x.shape)
    n, c = x.shape[:2]

    if params.pool_type != "max":
        divisor = _divisor(params, in_spatial, out_spatial)
        share = (grad if divisor is None else grad / divisor).reshape(-1)
        dx = mx.zeros((n * c * prod(padded_spatial),), dtype=grad.dtype)
        for k in range(prod(params.kernel)):
            index = mx.full(grad.shape, k)
            targets = _padded_flat_index(index, x.shape, params, out_spatial, padded_spatial)
            dx = dx.at[targets.reshape(-1)].add(share)
    else:
        if params.has_workspace():
            index = inputs[4].data()
        else:
            wins = _windows(params, x, out_spatial)
            index = _first_argmax(wins.reshape(wins.shape[: 2 + len(out_spatial)] + (-1,)))
        targets = _padded_flat_index(index, x.shape, params, out_spatial, padded_spatial)
        dx = mx.zeros((n * c * prod(padded_spatial),), dtype=grad.dtype)
        dx = dx.at[targets.reshape(-1)].add(grad.reshape(-1))

    dx = dx.reshape((n, c) + tuple(padded_spatial))
    return [_window.crop_spatial(dx, params.pads, in_spatial)]
