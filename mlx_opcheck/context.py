"""Device context for operator invocation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import mlx.core as mx

_DEVICE_TYPES = {"cpu": mx.cpu, "gpu": mx.gpu}


@dataclass(frozen=True)
class Context:
    """Device an operator runs on.

    Attributes:
        device_type: "cpu" or "gpu". None selects MLX's current default
            device at invocation time.
        device_id: Device ordinal.

    Example:
        >>> Context()            # whatever mx.default_device() is
        >>> Context("cpu")       # force the CPU stream
    """

    device_type: Optional[str] = None
    device_id: int = 0

    def __post_init__(self) -> None:
        if self.device_type is not None and self.device_type not in _DEVICE_TYPES:
            raise ValueError(
                f"device_type must be one of {sorted(_DEVICE_TYPES)}, got {self.device_type!r}"
            )

    @property
    def device(self) -> mx.Device:
        if self.device_type is None:
            return mx.default_device()
        return mx.Device(_DEVICE_TYPES[self.device_type], self.device_id)

    def __str__(self) -> str:
        if self.device_type is None:
            return f"default({mx.default_device()})"
        return f"{self.device_type}({self.device_id})"
