"""Thread-safe Metal kernel cache.

Metal kernels are compiled on first use and shared afterwards. Lookups
take a per-kernel lock so two threads never compile the same kernel twice.

Example:
    from mlx_opcheck.kernels._registry import get_kernel

    def _get_relu_kernel():
        return get_kernel(
            "relu_forward",
            lambda: mx.fast.metal_kernel(
                name="relu_forward",
                input_names=["x"],
                output_names=["out"],
                source="...",
            ),
        )
"""

import threading
from typing import Any, Callable, Dict, List, Optional


class KernelCache:
    """Singleton name -> compiled kernel cache with per-kernel locking."""

    _instance: Optional["KernelCache"] = None
    _init_lock = threading.Lock()

    def __init__(self) -> None:
        self._kernels: Dict[str, Any] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._global_lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> "KernelCache":
        """Get the singleton cache instance (thread-safe)."""
        if cls._instance is None:
            with cls._init_lock:
                # Double-check after acquiring lock
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def get_or_create(self, name: str, factory: Callable[[], Any]) -> Any:
        """Return the cached kernel ``name``, building it with ``factory`` once."""
        if name in self._kernels:
            return self._kernels[name]

        with self._global_lock:
            kernel_lock = self._locks.setdefault(name, threading.Lock())

        with kernel_lock:
            if name in self._kernels:
                return self._kernels[name]
            kernel = factory()
            self._kernels[name] = kernel
            return kernel

    def clear(self) -> None:
        with self._global_lock:
            self._kernels.clear()

    def is_cached(self, name: str) -> bool:
        return name in self._kernels

    @property
    def cached_kernel_names(self) -> List[str]:
        return list(self._kernels.keys())


def get_kernel(name: str, factory: Callable[[], Any]) -> Any:
    """Get or create a Metal kernel with thread-safe caching.

    Args:
        name: Unique kernel identifier (e.g. "relu_forward").
        factory: Builds the kernel; called only on first access.
    """
    return KernelCache.get_instance().get_or_create(name, factory)


def clear_kernel_cache() -> None:
    """Drop every cached kernel (mainly for tests)."""
    KernelCache.get_instance().clear()
