"""Mutable array handles over immutable MLX arrays.

Operators write results into caller-owned buffers (overwrite, in place or
accumulate), and tests need buffers that alias each other: views into a
larger allocation, buffers re-used with a new shape or element type, and
buffers stored channels-last. ``mx.array`` values are immutable, so an
:class:`NDArray` is a handle onto a shared flat *chunk* whose ``mx.array``
is replaced on every write.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import mlx.core as mx
import numpy as np

from mlx_opcheck.constants import Layout
from mlx_opcheck.context import Context
from mlx_opcheck.utils.shapes import prod


class _Chunk:
    """Flat storage shared by every NDArray handle created from it."""

    __slots__ = ("data",)

    def __init__(self, data: mx.array):
        self.data = data.reshape(-1)

    @property
    def capacity(self) -> int:
        return self.data.size

    @property
    def dtype(self) -> mx.Dtype:
        return self.data.dtype

    @property
    def nbytes(self) -> int:
        return self.data.size * self.data.dtype.size


def channels_last_perm(ndim: int) -> Tuple[int, ...]:
    # (N, C, d1, ..., dk) -> (N, d1, ..., dk, C)
    return (0,) + tuple(range(2, ndim)) + (1,)


def channels_first_perm(ndim: int) -> Tuple[int, ...]:
    # (N, d1, ..., dk, C) -> (N, C, d1, ..., dk)
    return (0, ndim - 1) + tuple(range(1, ndim - 1))


class NDArray:
    """A mutable, possibly aliased, n-dimensional array.

    Args:
        shape: Logical shape (N, C, spatial...) for channels-last arrays.
        dtype: Element type.
        layout: Physical storage order.
        ctx: Device context the array belongs to.

    Example:
        >>> arr = NDArray((2, 3))
        >>> arr.write(mx.ones((2, 3)))
        >>> view = arr.slice(1, 2)
        >>> view.write(mx.zeros((1, 3)))   # lands in arr's second row
    """

    def __init__(
        self,
        shape: Sequence[int],
        dtype: mx.Dtype = mx.float32,
        layout: Layout = Layout.DEFAULT,
        ctx: Optional[Context] = None,
    ):
        shape = tuple(int(s) for s in shape)
        _check_layout(shape, layout)
        self._chunk = _Chunk(mx.zeros((max(prod(shape), 1),), dtype=dtype))
        self._offset = 0
        self._shape = shape
        self._dtype = dtype
        self._layout = layout
        self._is_view = False
        self.ctx = ctx or Context()

    @classmethod
    def from_array(
        cls,
        values,
        layout: Layout = Layout.DEFAULT,
        dtype: Optional[mx.Dtype] = None,
        ctx: Optional[Context] = None,
    ) -> "NDArray":
        """Create a new NDArray holding a copy of ``values``."""
        values = mx.array(values) if not isinstance(values, mx.array) else values
        if dtype is not None:
            values = values.astype(dtype)
        arr = cls(values.shape, dtype=values.dtype, layout=layout, ctx=ctx)
        arr.write(values)
        return arr

    @classmethod
    def _alias(
        cls,
        chunk: _Chunk,
        offset: int,
        shape: Tuple[int, ...],
        dtype: mx.Dtype,
        layout: Layout,
        is_view: bool,
        ctx: Context,
    ) -> "NDArray":
        arr = cls.__new__(cls)
        arr._chunk = chunk
        arr._offset = offset
        arr._shape = shape
        arr._dtype = dtype
        arr._layout = layout
        arr._is_view = is_view
        arr.ctx = ctx
        return arr

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._shape

    @property
    def ndim(self) -> int:
        return len(self._shape)

    @property
    def size(self) -> int:
        return prod(self._shape)

    @property
    def dtype(self) -> mx.Dtype:
        return self._dtype

    @property
    def layout(self) -> Layout:
        return self._layout

    @property
    def is_view(self) -> bool:
        """True if this handle addresses a sub-range of another array."""
        return self._is_view

    @property
    def is_accelerated(self) -> bool:
        """True if stored in the layout native to the accelerated path."""
        return self._layout == Layout.CHANNELS_LAST

    def shares_storage(self, other: "NDArray") -> bool:
        return self._chunk is other._chunk

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    def _physical_shape(self) -> Tuple[int, ...]:
        if self._layout == Layout.CHANNELS_LAST:
            return tuple(self._shape[i] for i in channels_last_perm(self.ndim))
        return self._shape

    def physical_data(self) -> mx.array:
        """The stored values in storage order."""
        flat = self._chunk.data
        if self._offset != 0 or self.size != self._chunk.capacity:
            flat = flat[self._offset:self._offset + self.size]
        return flat.reshape(self._physical_shape())

    def data(self) -> mx.array:
        """The array contents in logical (N, C, spatial...) order."""
        phys = self.physical_data()
        if self._layout == Layout.CHANNELS_LAST:
            return phys.transpose(channels_first_perm(self.ndim))
        return phys

    def write(self, values: mx.array) -> None:
        """Overwrite the array contents with ``values`` (logical order).

        Raises:
            ValueError: If ``values`` does not have this array's shape.
        """
        if tuple(values.shape) != self._shape:
            raise ValueError(f"cannot write {tuple(values.shape)} into array of shape {self._shape}")
        if self._layout == Layout.CHANNELS_LAST:
            values = values.transpose(channels_last_perm(self.ndim))
        self.write_physical(values)

    def write_physical(self, values: mx.array) -> None:
        """Overwrite the stored values with ``values`` given in storage order."""
        flat = values.astype(self._dtype).reshape(-1)
        if flat.size != self.size:
            raise ValueError(f"expected {self.size} elements, got {flat.size}")
        if self._offset == 0 and self.size == self._chunk.capacity:
            self._chunk.data = flat
        else:
            self._chunk.data[self._offset:self._offset + self.size] = flat

    def numpy(self) -> np.ndarray:
        """Copy the logical contents into a NumPy array."""
        data = self.data()
        mx.eval(data)
        return np.array(data)

    # ------------------------------------------------------------------
    # New handles
    # ------------------------------------------------------------------

    def copy(self) -> "NDArray":
        """Deep copy preserving shape, dtype and layout."""
        out = NDArray(self._shape, dtype=self._dtype, layout=self._layout, ctx=self.ctx)
        out.write_physical(self.physical_data())
        return out

    def reorder_to_default(self) -> "NDArray":
        """Return this array in default layout (self if already default)."""
        if self._layout == Layout.DEFAULT:
            return self
        return NDArray.from_array(self.data(), layout=Layout.DEFAULT, ctx=self.ctx)

    def to_channels_last(self) -> "NDArray":
        """Return a channels-last copy of this array.

        Raises:
            ValueError: If the array has fewer than 3 dimensions.
        """
        if self._layout == Layout.CHANNELS_LAST:
            return self
        return NDArray.from_array(self.data(), layout=Layout.CHANNELS_LAST, ctx=self.ctx)

    def slice(self, begin: int, end: int) -> "NDArray":
        """View of rows ``[begin, end)`` along the first axis."""
        if self.ndim == 0 or not 0 <= begin <= end <= self._shape[0]:
            raise IndexError(f"slice [{begin}, {end}) out of range for shape {self._shape}")
        row = prod(self._shape[1:])
        return NDArray._alias(
            self._chunk,
            self._offset + begin * row,
            (end - begin,) + self._shape[1:],
            self._dtype,
            self._layout,
            True,
            self.ctx,
        )

    def as_array(
        self,
        shape: Sequence[int],
        dtype: Optional[mx.Dtype] = None,
        layout: Optional[Layout] = None,
    ) -> "NDArray":
        """Reuse this array's storage for a new shape and element type.

        The returned handle starts at the beginning of the storage. Changing
        the element type re-types the whole chunk, and its contents become
        zeros for every handle that shares it.

        Raises:
            ValueError: If the storage is too small for the new shape.
        """
        shape = tuple(int(s) for s in shape)
        dtype = dtype or self._dtype
        layout = layout or (self._layout if len(shape) >= 3 else Layout.DEFAULT)
        _check_layout(shape, layout)
        needed = prod(shape) * dtype.size
        if needed > self._chunk.nbytes:
            raise ValueError(
                f"storage of {self._chunk.nbytes} bytes cannot hold {shape} of {dtype}"
            )
        if dtype != self._chunk.dtype:
            self._chunk.data = mx.zeros((self._chunk.nbytes // dtype.size,), dtype=dtype)
        return NDArray._alias(self._chunk, 0, shape, dtype, layout, False, self.ctx)

    def __repr__(self) -> str:
        kind = "view" if self._is_view else "array"
        return f"NDArray({kind}, shape={self._shape}, dtype={self._dtype}, layout={self._layout.value})"


def _check_layout(shape: Tuple[int, ...], layout: Layout) -> None:
    if layout == Layout.CHANNELS_LAST and len(shape) < 3:
        raise ValueError(f"channels-last layout needs at least 3 dimensions, got shape {shape}")


@dataclass
class NDArrayAttrs:
    """An NDArray plus a human-readable description for diagnostics."""

    arr: NDArray
    desc: str

    def __str__(self) -> str:
        return f"{self.desc} {self.arr.shape}"
