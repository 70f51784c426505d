"""Operator parameter structs parsed from string attribute dicts.

Operators are configured with ``{"kernel": "(3,3)", "num_filter": "2"}``
style string dicts. Each param class turns such a dict into typed fields,
filling defaults and rejecting malformed or unknown values.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Mapping, Sequence, Tuple, TypeVar

from mlx_opcheck.constants import LRN_DEFAULT_ALPHA, LRN_DEFAULT_BETA, LRN_DEFAULT_KNORM
from mlx_opcheck.utils.exceptions import AttributeParseError
from mlx_opcheck.utils.shapes import parse_shape_string

P = TypeVar("P", bound="OpParam")

_TRUE = {"1", "true", "True"}
_FALSE = {"0", "false", "False"}


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"expected a boolean, got {text!r}")


def _parse_shape(text: str) -> Tuple[int, ...]:
    shape = parse_shape_string(text)
    if any(s < 0 for s in shape):
        raise ValueError(f"negative extent in {text!r}")
    return shape


_PARSERS: Dict[Any, Callable[[str], Any]] = {
    int: int,
    float: float,
    bool: _parse_bool,
    str: str,
    "shape": _parse_shape,
}


@dataclass(frozen=True)
class OpParam:
    """Base class for operator params.

    Subclasses declare dataclass fields; a field's ``metadata["parse"]``
    selects the parser ("shape" for shape strings, otherwise the field
    type) and ``metadata["choices"]`` restricts string values.
    """

    @classmethod
    def from_dict(cls: type[P], attrs: Mapping[str, str]) -> P:
        """Parse a string attribute dict.

        Raises:
            AttributeParseError: On unknown keys, missing required keys or
                values that fail to parse.
        """
        known = {f.name: f for f in fields(cls)}
        unknown = set(attrs) - set(known)
        if unknown:
            raise AttributeParseError(f"{cls.__name__}: unknown attribute(s) {sorted(unknown)}")

        kwargs: Dict[str, Any] = {}
        for name, value in attrs.items():
            f = known[name]
            parser = _PARSERS[f.metadata.get("parse") or _resolve(f.type)]
            try:
                parsed = parser(str(value))
            except ValueError as e:
                raise AttributeParseError(f"{cls.__name__}.{name}: {e}") from e
            choices = f.metadata.get("choices")
            if choices is not None and parsed not in choices:
                raise AttributeParseError(
                    f"{cls.__name__}.{name}: {parsed!r} is not one of {sorted(choices)}"
                )
            kwargs[name] = parsed

        try:
            param = cls(**kwargs)
        except TypeError as e:
            raise AttributeParseError(f"{cls.__name__}: {e}") from e
        param.validate()
        return param

    def validate(self) -> None:
        """Cross-field checks; raise AttributeParseError on failure."""


def _resolve(field_type: Any) -> Any:
    # With postponed annotations field.type is a string.
    if isinstance(field_type, str):
        return {"int": int, "float": float, "bool": bool, "str": str}[field_type]
    return field_type


def _shape_field(required: bool = False):
    if required:
        return field(metadata={"parse": "shape"})
    return field(default=(), metadata={"parse": "shape"})


def _choice_field(default: str, choices: Sequence[str]):
    return field(default=default, metadata={"choices": frozenset(choices)})


def _expand(value: Tuple[int, ...], ndim: int, fill: int) -> Tuple[int, ...]:
    if not value:
        return (fill,) * ndim
    if len(value) == 1 and ndim > 1:
        return value * ndim
    return value


# =============================================================================
# Param structs
# =============================================================================


@dataclass(frozen=True)
class EmptyParam(OpParam):
    """Param struct for operators without attributes."""


@dataclass(frozen=True)
class ActivationParam(OpParam):
    act_type: str = _choice_field("relu", ("relu", "sigmoid", "tanh", "softrelu", "softsign"))


@dataclass(frozen=True)
class ConcatParam(OpParam):
    num_args: int = 1
    dim: int = 1

    def validate(self) -> None:
        if self.num_args < 1:
            raise AttributeParseError(f"ConcatParam.num_args must be >= 1, got {self.num_args}")
        if self.dim < 0:
            raise AttributeParseError(f"ConcatParam.dim must be >= 0, got {self.dim}")


@dataclass(frozen=True)
class _SpatialParam(OpParam):
    """Shared kernel/stride/pad handling for windowed operators."""

    def spatial_ndim(self) -> int:
        return len(self.kernel)

    @property
    def strides(self) -> Tuple[int, ...]:
        return _expand(self.stride, self.spatial_ndim(), 1)

    @property
    def pads(self) -> Tuple[int, ...]:
        return _expand(self.pad, self.spatial_ndim(), 0)

    def validate(self) -> None:
        nd = self.spatial_ndim()
        if nd == 0:
            raise AttributeParseError(f"{type(self).__name__}.kernel must not be empty")
        if any(k < 1 for k in self.kernel):
            raise AttributeParseError(f"{type(self).__name__}.kernel must be positive, got {self.kernel}")
        if len(self.strides) != nd or any(s < 1 for s in self.strides):
            raise AttributeParseError(
                f"{type(self).__name__}.stride {self.stride} does not match kernel {self.kernel}"
            )
        if len(self.pads) != nd:
            raise AttributeParseError(
                f"{type(self).__name__}.pad {self.pad} does not match kernel {self.kernel}"
            )


@dataclass(frozen=True)
class PoolingParam(_SpatialParam):
    kernel: Tuple[int, ...] = _shape_field(required=True)
    pool_type: str = _choice_field("max", ("max", "avg", "sum"))
    stride: Tuple[int, ...] = _shape_field()
    pad: Tuple[int, ...] = _shape_field()
    count_include_pad: bool = True

    def has_workspace(self) -> bool:
        """Whether the forward operator emits an arg-max workspace output."""
        return self.pool_type == "max" and self.spatial_ndim() == 2


@dataclass(frozen=True)
class LRNParam(OpParam):
    nsize: int = 0
    alpha: float = LRN_DEFAULT_ALPHA
    beta: float = LRN_DEFAULT_BETA
    knorm: float = LRN_DEFAULT_KNORM

    def validate(self) -> None:
        if self.nsize < 1 or self.nsize % 2 == 0:
            raise AttributeParseError(f"LRNParam.nsize must be a positive odd number, got {self.nsize}")


@dataclass(frozen=True)
class FullyConnectedParam(OpParam):
    num_hidden: int = 0
    no_bias: bool = False
    flatten: bool = True

    def validate(self) -> None:
        if self.num_hidden < 1:
            raise AttributeParseError(
                f"FullyConnectedParam.num_hidden must be positive, got {self.num_hidden}"
            )


@dataclass(frozen=True)
class ConvolutionParam(_SpatialParam):
    kernel: Tuple[int, ...] = _shape_field(required=True)
    num_filter: int = 0
    stride: Tuple[int, ...] = _shape_field()
    pad: Tuple[int, ...] = _shape_field()
    no_bias: bool = False

    def validate(self) -> None:
        super().validate()
        if self.num_filter < 1:
            raise AttributeParseError(f"{type(self).__name__}.num_filter must be positive")


@dataclass(frozen=True)
class DeconvolutionParam(ConvolutionParam):
    no_bias: bool = True
