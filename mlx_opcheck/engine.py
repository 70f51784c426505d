"""Execution engine with a work queue and a global barrier.

Operator invocations are pushed as closures. In the default "deferred"
mode they run, in push order, only when :meth:`Engine.wait_for_all` drains
the queue. The "naive" mode runs each closure as soon as it is pushed.
Either way callers must drain the engine before they inspect results.

The engine type is chosen with the MLX_OPCHECK_ENGINE_TYPE environment
variable ("deferred" or "naive").
"""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from typing import Callable, Deque, Iterable, List, Optional, Tuple

import mlx.core as mx

from mlx_opcheck.ndarray import NDArray

logger = logging.getLogger(__name__)

_ENGINE_TYPES = ("deferred", "naive")


class Engine:
    """Thread-safe singleton work queue.

    Use :meth:`get` to access the shared instance.
    """

    _instance: Optional["Engine"] = None
    _init_lock = threading.Lock()

    def __init__(self, engine_type: Optional[str] = None) -> None:
        engine_type = (engine_type or os.environ.get("MLX_OPCHECK_ENGINE_TYPE", "deferred")).lower()
        if engine_type not in _ENGINE_TYPES:
            raise ValueError(f"engine_type must be one of {_ENGINE_TYPES}, got {engine_type!r}")
        self.engine_type = engine_type
        self._queue: Deque[Tuple[str, Callable[[], None], List[NDArray]]] = deque()
        self._touched: List[NDArray] = []
        self._lock = threading.RLock()

    @classmethod
    def get(cls) -> "Engine":
        """Get the singleton engine instance (thread-safe)."""
        if cls._instance is None:
            with cls._init_lock:
                # Double-check after acquiring lock
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls, engine_type: Optional[str] = None) -> "Engine":
        """Replace the singleton, discarding any queued work."""
        with cls._init_lock:
            cls._instance = cls(engine_type)
        return cls._instance

    @property
    def pending(self) -> int:
        """Number of pushed closures that have not run yet."""
        with self._lock:
            return len(self._queue)

    def push(
        self,
        fn: Callable[[], None],
        mutable_vars: Iterable[NDArray] = (),
        name: str = "",
    ) -> None:
        """Queue ``fn`` for execution.

        Args:
            fn: Closure performing the work. It must only write through the
                arrays listed in ``mutable_vars``.
            mutable_vars: Arrays the closure writes. They are evaluated
                when the engine drains.
            name: Label used in debug logs.
        """
        mutable_vars = list(mutable_vars)
        with self._lock:
            if self.engine_type == "naive":
                self._run(name, fn, mutable_vars)
                self._materialize()
            else:
                self._queue.append((name, fn, mutable_vars))

    def wait_for_all(self) -> None:
        """Run every queued closure and block until its results exist."""
        with self._lock:
            while self._queue:
                name, fn, mutable_vars = self._queue.popleft()
                self._run(name, fn, mutable_vars)
            self._materialize()

    def _run(self, name: str, fn: Callable[[], None], mutable_vars: List[NDArray]) -> None:
        logger.debug("engine: running %s", name or fn)
        try:
            fn()
        except Exception:
            # Drop the rest of the queue; it may depend on the failed write.
            self._queue.clear()
            self._touched.clear()
            raise
        self._touched.extend(mutable_vars)

    def _materialize(self) -> None:
        if self._touched:
            mx.eval([arr._chunk.data for arr in self._touched])
            self._touched.clear()
        mx.synchronize()
