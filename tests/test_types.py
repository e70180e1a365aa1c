# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for core types and typed scalar parsing.
"""

import numpy as np
import pytest

from kernel_runner.errors import ConfigurationError, ScalarTypeError
from kernel_runner.types import (
    Ecosystem,
    ParameterDirection,
    ScalarType,
    ScalarValue,
    parse_scalar,
    scalar_parser,
)


class TestEcosystem:
    def test_file_suffixes(self):
        assert Ecosystem.CUDA.source_suffix == "cu"
        assert Ecosystem.OPENCL.source_suffix == "cl"
        assert Ecosystem.CUDA.ir_extension == "ptx"
        assert Ecosystem.OPENCL.ir_extension == "clbin"

    def test_display_names(self):
        assert Ecosystem.CUDA.display_name == "CUDA"
        assert Ecosystem.OPENCL.display_name == "OpenCL"


class TestParameterDirection:
    def test_written_directions(self):
        assert not ParameterDirection.INPUT.is_written
        assert ParameterDirection.OUTPUT.is_written
        assert ParameterDirection.INOUT.is_written


class TestScalarValue:
    """Typed scalar retrieval."""

    def test_get_matching_type(self):
        value = ScalarValue(ScalarType.UINT32, 7)
        assert value.get(ScalarType.UINT32) == 7

    def test_get_mismatched_type(self):
        value = ScalarValue(ScalarType.UINT32, 7)
        with pytest.raises(ScalarTypeError) as exc_info:
            value.get(ScalarType.INT32)
        assert exc_info.value.expected == "int32"
        assert exc_info.value.actual == "uint32"

    def test_as_numpy(self):
        value = ScalarValue(ScalarType.FLOAT32, 2.5).as_numpy()
        assert value.dtype == np.float32
        assert value.nbytes == 4


class TestParseScalar:
    """Parsing raw command-line strings."""

    def test_integers_with_base_prefix(self):
        assert parse_scalar("42", ScalarType.INT32).value == 42
        assert parse_scalar("0x10", ScalarType.UINT16).value == 16
        assert parse_scalar("-3", ScalarType.INT8).value == -3

    def test_integer_out_of_range(self):
        with pytest.raises(ConfigurationError, match="out of range"):
            parse_scalar("256", ScalarType.UINT8)
        with pytest.raises(ConfigurationError):
            parse_scalar("-1", ScalarType.UINT32)

    def test_float(self):
        assert parse_scalar("1.5e2", ScalarType.FLOAT64).value == 150.0

    def test_bool(self):
        assert parse_scalar("true", ScalarType.BOOL).value is True
        assert parse_scalar("0", ScalarType.BOOL).value is False
        with pytest.raises(ConfigurationError):
            parse_scalar("maybe", ScalarType.BOOL)

    def test_garbage(self):
        with pytest.raises(ConfigurationError, match="Cannot parse"):
            parse_scalar("abc", ScalarType.FLOAT32)

    def test_parser_carries_its_type(self):
        parse = scalar_parser(ScalarType.INT64)
        assert parse.scalar_type is ScalarType.INT64
        assert parse("5") == ScalarValue(ScalarType.INT64, 5)
