# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Core Types

Enumerations shared across the runner, and the type-tagged scalar value
used for kernel scalar arguments.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import numpy as np

from .errors import ConfigurationError, ScalarTypeError


class Ecosystem(Enum):
    """The two mutually exclusive GPU execution ecosystems."""

    CUDA = "cuda"
    OPENCL = "opencl"

    @property
    def source_suffix(self) -> str:
        """File suffix of kernel sources in this ecosystem's language."""
        return "cu" if self is Ecosystem.CUDA else "cl"

    @property
    def ir_extension(self) -> str:
        """File extension for the intermediate representation."""
        return "ptx" if self is Ecosystem.CUDA else "clbin"

    @property
    def display_name(self) -> str:
        return "CUDA" if self is Ecosystem.CUDA else "OpenCL"


class ParameterKind(Enum):
    """Kinds of kernel parameters."""

    BUFFER = "buffer"
    SCALAR = "scalar"


class ParameterDirection(Enum):
    """Data flow direction of a kernel parameter."""

    INPUT = "input"
    OUTPUT = "output"
    INOUT = "inout"

    @property
    def is_written(self) -> bool:
        return self is not ParameterDirection.INPUT


class ScalarType(Enum):
    """Types a scalar kernel argument may have."""

    INT8 = "int8"
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    UINT8 = "uint8"
    UINT16 = "uint16"
    UINT32 = "uint32"
    UINT64 = "uint64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    BOOL = "bool"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(self.value)

    @property
    def size_bytes(self) -> int:
        return self.dtype.itemsize

    @property
    def is_integral(self) -> bool:
        return self.dtype.kind in "iu"


@dataclass(frozen=True)
class ScalarValue:
    """
    A scalar argument value together with its type tag.

    Retrieving the value under a different type than the one it was
    created with raises ScalarTypeError.
    """

    scalar_type: ScalarType
    value: Any

    def get(self, expected: ScalarType) -> Any:
        """
        Return the payload, checking the type tag.

        Raises:
            ScalarTypeError: If the value's type is not ``expected``.
        """
        if expected is not self.scalar_type:
            raise ScalarTypeError(expected.value, self.scalar_type.value)
        return self.value

    def as_numpy(self) -> np.generic:
        """The value as a numpy scalar of the tagged type."""
        return self.scalar_type.dtype.type(self.value)

    def __str__(self) -> str:
        return f"{self.value} ({self.scalar_type.value})"


_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def parse_scalar(raw: str, scalar_type: ScalarType) -> ScalarValue:
    """
    Parse a raw command-line string into a typed scalar.

    Integers accept any base prefix Python accepts (0x, 0o, 0b) and must
    fit the type's range.

    Raises:
        ConfigurationError: If the string is not a valid value of the type.
    """
    text = raw.strip()
    try:
        if scalar_type is ScalarType.BOOL:
            lowered = text.lower()
            if lowered in _TRUE_STRINGS:
                return ScalarValue(scalar_type, True)
            if lowered in _FALSE_STRINGS:
                return ScalarValue(scalar_type, False)
            raise ValueError(text)
        if scalar_type.is_integral:
            value = int(text, 0)
            info = np.iinfo(scalar_type.dtype)
            if not info.min <= value <= info.max:
                raise ValueError(f"{value} out of range [{info.min}, {info.max}]")
            return ScalarValue(scalar_type, value)
        return ScalarValue(scalar_type, float(text))
    except ValueError as e:
        raise ConfigurationError(
            f"Cannot parse '{raw}' as a {scalar_type.value} value: {e}",
            value=raw,
        ) from e


def scalar_parser(scalar_type: ScalarType) -> Callable[[str], ScalarValue]:
    """Return a parser for raw strings of the given scalar type."""

    def parse(raw: str) -> ScalarValue:
        return parse_scalar(raw, scalar_type)

    parse.scalar_type = scalar_type
    return parse
