# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Vector addition: c[i] = a[i] + b[i] over float32 elements.

Kernel signature:
    vector_add(const float* a, const float* b, float* c, unsigned length)
"""

import logging

import numpy as np

from ..types import ParameterDirection, ScalarType, ScalarValue
from .base import KernelAdapter, buffer_parameter, push_back_buffer, push_back_scalar, size_of_input_buffer

logger = logging.getLogger("kernel_runner.adapters.vector_add")

ELEMENT_SIZE = np.dtype(np.float32).itemsize


class VectorAdd(KernelAdapter):
    KEY = "vector_add"
    KERNEL_FUNCTION_NAME = "vector_add"
    PARAMETERS = (
        buffer_parameter("a", ParameterDirection.INPUT, "First addend vector"),
        buffer_parameter("b", ParameterDirection.INPUT, "Second addend vector"),
        buffer_parameter(
            "c",
            ParameterDirection.OUTPUT,
            "Elementwise sum of a and b",
            size_calculator=size_of_input_buffer("a"),
        ),
    )

    def input_sizes_are_valid(self, context) -> bool:
        a_size = len(context.buffers.host_inputs["a"])
        b_size = len(context.buffers.host_inputs["b"])
        if a_size != b_size:
            logger.error(f"Buffers a and b differ in size ({a_size} != {b_size} bytes)")
            return False
        if a_size % ELEMENT_SIZE:
            logger.error(f"Buffer size {a_size} is not a multiple of the element size {ELEMENT_SIZE}")
            return False
        return True

    def generate_additional_scalar_arguments(self, context) -> dict[str, ScalarValue]:
        length = len(context.buffers.host_inputs["a"]) // ELEMENT_SIZE
        return {"length": ScalarValue(ScalarType.UINT32, length)}

    def marshal_kernel_arguments_inner(self, arguments, context) -> None:
        push_back_buffer(arguments, context, ParameterDirection.INPUT, "a")
        push_back_buffer(arguments, context, ParameterDirection.INPUT, "b")
        push_back_buffer(arguments, context, ParameterDirection.OUTPUT, "c")
        push_back_scalar(arguments, context, "length", ScalarType.UINT32)
