"""Thread-safe operator registry.

Every operator is registered once under a unique name together with its
param struct, its input/output arity and up to two kernels: the generic
kernel (composition of elementary MLX ops) and the accelerated kernel
(fused library primitives).

Example:
    _copy = register_op("_copy", num_inputs=1, num_outputs=1)

    @_copy.generic
    def _copy_generic(op_ctx, params, inputs, out_shapes):
        return [mx.array(inputs[0].data())]

    attrs = NodeAttrs(Op.get("_copy"))
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Type, Union

import mlx.core as mx

from mlx_opcheck.constants import DispatchMode
from mlx_opcheck.ops.params import EmptyParam, OpParam
from mlx_opcheck.utils.exceptions import DispatchError, OperatorNotFoundError

# kernel(op_ctx, params, inputs, out_shapes) -> one result (or None) per output
Kernel = Callable[..., Sequence[Optional[mx.array]]]
Arity = Union[int, Callable[[OpParam], int]]


class Op:
    """A registered operator.

    Use :meth:`Op.get` to look an operator up by name.
    """

    def __init__(
        self,
        name: str,
        param_cls: Type[OpParam] = EmptyParam,
        num_inputs: Arity = 1,
        num_outputs: Arity = 1,
        description: str = "",
    ) -> None:
        self.name = name
        self.param_cls = param_cls
        self._num_inputs = num_inputs
        self._num_outputs = num_outputs
        self.description = description
        self.generic_kernel: Optional[Kernel] = None
        self.accelerated_kernel: Optional[Kernel] = None

    @staticmethod
    def get(name: str) -> "Op":
        """Look up a registered operator.

        Raises:
            OperatorNotFoundError: If no operator has that name.
        """
        return OpRegistry.get_instance().get(name)

    # Kernel registration decorators

    def generic(self, fn: Kernel) -> Kernel:
        self.generic_kernel = fn
        return fn

    def accelerated(self, fn: Kernel) -> Kernel:
        self.accelerated_kernel = fn
        return fn

    def kernel_for(self, mode: DispatchMode) -> Optional[Kernel]:
        if mode == DispatchMode.ACCELERATED:
            return self.accelerated_kernel
        return self.generic_kernel

    def attr_parser(self, attrs: "NodeAttrs") -> None:
        """Parse ``attrs.kwargs`` into ``attrs.parsed``.

        Raises:
            AttributeParseError: If an attribute is malformed.
        """
        attrs.parsed = self.param_cls.from_dict(attrs.kwargs)

    def num_inputs(self, params: OpParam) -> int:
        n = self._num_inputs
        return n(params) if callable(n) else n

    def num_outputs(self, params: OpParam) -> int:
        n = self._num_outputs
        return n(params) if callable(n) else n

    def __repr__(self) -> str:
        return f"Op({self.name!r})"


@dataclass
class NodeAttrs:
    """Operator handle plus its string attributes and parsed params."""

    op: Op
    kwargs: Dict[str, str] = field(default_factory=dict)
    parsed: Optional[OpParam] = None

    def params(self) -> OpParam:
        """Parsed params, running the attribute parser on first use."""
        if self.parsed is None:
            self.op.attr_parser(self)
        return self.parsed


class OpRegistry:
    """Singleton name -> Op table."""

    _instance: Optional["OpRegistry"] = None
    _init_lock = threading.Lock()

    def __init__(self) -> None:
        self._ops: Dict[str, Op] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> "OpRegistry":
        """Get the singleton registry instance (thread-safe)."""
        if cls._instance is None:
            with cls._init_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def register(self, op: Op) -> Op:
        with self._lock:
            if op.name in self._ops:
                raise DispatchError(f"operator {op.name!r} is already registered")
            self._ops[op.name] = op
        return op

    def get(self, name: str) -> Op:
        # Registration happens at import of mlx_opcheck.ops.
        import mlx_opcheck.ops  # noqa: F401

        try:
            return self._ops[name]
        except KeyError:
            raise OperatorNotFoundError(f"operator {name!r} is not registered") from None

    @property
    def names(self) -> List[str]:
        return sorted(self._ops)


def register_op(
    name: str,
    param_cls: Type[OpParam] = EmptyParam,
    num_inputs: Arity = 1,
    num_outputs: Arity = 1,
    description: str = "",
) -> Op:
    """Create and register an operator. Attach kernels with its decorators."""
    return OpRegistry.get_instance().register(
        Op(name, param_cls, num_inputs, num_outputs, description)
    )


def list_ops() -> List[str]:
    """Names of all registered operators."""
    import mlx_opcheck.ops  # noqa: F401

    return OpRegistry.get_instance().names
