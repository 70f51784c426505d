"""Imperative operator invocation.

:meth:`Imperative.invoke_op` is the single entry point for running a
registered operator on caller-owned arrays. It checks arity, selects the
generic or accelerated kernel, and pushes the work to the engine. Results
are applied to the outputs according to each output's write mode.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence

import mlx.core as mx

from mlx_opcheck.constants import DispatchMode, OpReqType
from mlx_opcheck.context import Context
from mlx_opcheck.engine import Engine
from mlx_opcheck.ndarray import NDArray
from mlx_opcheck.ops.registry import NodeAttrs, Op
from mlx_opcheck.utils.exceptions import ArityError, DispatchError
from mlx_opcheck.utils.logging import log_dispatch_failure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpContext:
    """Per-invocation state handed to kernels."""

    ctx: Context
    is_training: bool = False


class Imperative:
    """Singleton front end for imperative operator execution."""

    _instance: Optional["Imperative"] = None
    _init_lock = threading.Lock()

    def __init__(self) -> None:
        self._is_training = False

    @classmethod
    def get(cls) -> "Imperative":
        """Get the singleton instance (thread-safe)."""
        if cls._instance is None:
            with cls._init_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @property
    def is_training(self) -> bool:
        return self._is_training

    def set_is_training(self, is_training: bool) -> bool:
        """Set training mode and return the previous value."""
        previous = self._is_training
        self._is_training = is_training
        return previous

    def invoke_op(
        self,
        ctx: Context,
        attrs: NodeAttrs,
        inputs: Sequence[NDArray],
        outputs: Sequence[NDArray],
        req: Sequence[OpReqType],
        dispatch_mode: DispatchMode,
    ) -> None:
        """Queue one operator invocation on the engine.

        The call returns once the work is queued. Call
        ``Engine.get().wait_for_all()`` before reading ``outputs``.

        Args:
            ctx: Device context to run on.
            attrs: Operator and its attributes (parsed on first use).
            inputs: Input arrays, one per declared input.
            outputs: Output arrays, one per declared output.
            req: Write mode per output.
            dispatch_mode: Generic or accelerated execution path.

        Raises:
            AttributeParseError: If the attributes do not parse.
            ArityError: If the array counts do not match the operator.
            DispatchError: If the operator has no generic kernel, or an
                in-place output does not alias any input. An accelerated
                kernel that raises surfaces as a DispatchError from
                ``wait_for_all``.
        """
        op = attrs.op
        params = attrs.params()
        num_inputs = op.num_inputs(params)
        num_outputs = op.num_outputs(params)
        if len(inputs) != num_inputs:
            raise ArityError(f"{op.name}: expected {num_inputs} input(s), got {len(inputs)}")
        if len(outputs) != num_outputs:
            raise ArityError(f"{op.name}: expected {num_outputs} output(s), got {len(outputs)}")
        if len(req) != num_outputs:
            raise ArityError(f"{op.name}: expected {num_outputs} request(s), got {len(req)}")
        if op.generic_kernel is None:
            raise DispatchError(f"{op.name}: no generic kernel registered")
        for out, r in zip(outputs, req):
            if r == OpReqType.WRITE_INPLACE and not any(out.shares_storage(i) for i in inputs):
                raise DispatchError(f"{op.name}: in-place output does not alias any input")

        inputs = list(inputs)
        outputs = list(outputs)
        req = [OpReqType(r) for r in req]
        dispatch_mode = DispatchMode(dispatch_mode)
        op_ctx = OpContext(ctx=ctx, is_training=self._is_training)
        out_shapes = [out.shape for out in outputs]

        def run() -> None:
            with mx.stream(ctx.device):
                results = _compute(op, dispatch_mode, op_ctx, params, inputs, out_shapes)
                if len(results) != len(outputs):
                    raise DispatchError(
                        f"{op.name}: kernel returned {len(results)} result(s) for {len(outputs)} output(s)"
                    )
                for out, r, result in zip(outputs, req, results):
                    _assign(op, out, r, result)

        Engine.get().push(run, outputs, name=op.name)


def _compute(
    op: Op,
    dispatch_mode: DispatchMode,
    op_ctx: OpContext,
    params,
    inputs: List[NDArray],
    out_shapes,
):
    kernel = op.kernel_for(dispatch_mode)
    if kernel is None:
        logger.debug("%s: no accelerated kernel, running generic path", op.name)
        return op.generic_kernel(op_ctx, params, inputs, out_shapes)
    if dispatch_mode == DispatchMode.GENERIC:
        return kernel(op_ctx, params, inputs, out_shapes)
    # Accelerated failures propagate; the generic kernel never stands in.
    try:
        return kernel(op_ctx, params, inputs, out_shapes)
    except Exception as e:
        log_dispatch_failure(op.name, e, [i.shape for i in inputs])
        raise DispatchError(f"{op.name}: accelerated kernel failed: {e}") from e


def _assign(op: Op, out: NDArray, req: OpReqType, result: Optional[mx.array]) -> None:
    if req == OpReqType.NULL or result is None:
        return
    if tuple(result.shape) != out.shape:
        raise DispatchError(
            f"{op.name}: result shape {tuple(result.shape)} does not match output {out.shape}"
        )
    if req == OpReqType.ADD_TO:
        out.write(out.data() + result.astype(out.dtype))
    else:
        out.write(result)
