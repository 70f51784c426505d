"""Custom exceptions for mlx-opcheck.

This module provides a hierarchy of exceptions for specific error conditions,
enabling more precise exception handling throughout the codebase.
"""


class OpCheckError(Exception):
    """Base exception for all mlx-opcheck errors."""

    pass


class MetalKernelError(OpCheckError):
    """Error in Metal kernel compilation or execution."""

    pass


class OperatorNotFoundError(OpCheckError, KeyError):
    """Raised when an operator name is not present in the registry."""

    pass


class AttributeParseError(OpCheckError, ValueError):
    """Raised when an operator attribute string cannot be parsed.

    Covers missing required attributes, malformed shape strings and
    values outside the set an operator accepts.
    """

    pass


class ArityError(OpCheckError):
    """Raised when an operator is invoked with the wrong number of arrays."""

    pass


class DispatchError(OpCheckError):
    """Raised when an operator cannot run in the requested dispatch mode.

    Wraps any exception raised by an accelerated kernel.
    """

    pass


class VerificationError(OpCheckError, AssertionError):
    """A verification predicate found a mismatch between arrays.

    Subclasses AssertionError so that pytest reports it as a failed
    assertion.
    """

    pass
