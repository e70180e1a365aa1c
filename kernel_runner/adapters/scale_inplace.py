# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
In-place scaling: data[i] *= factor over float32 elements.

Kernel signature:
    scale_inplace(float* data, float factor, unsigned length)

The source is compiled with BLOCK_SIZE defined, which is also the
block size this adapter deduces when none is forced.
"""

import logging

import numpy as np

from ..launch_config import LaunchConfigComponents
from ..types import ParameterDirection, ScalarType, ScalarValue
from .base import (
    KernelAdapter,
    PreprocessorDefinitionDetails,
    buffer_parameter,
    overlay_forced_components,
    push_back_buffer,
    push_back_scalar,
    scalar_parameter,
    size_of_input_buffer,
)

logger = logging.getLogger("kernel_runner.adapters.scale_inplace")

ELEMENT_SIZE = np.dtype(np.float32).itemsize


def _block_size(context) -> int:
    return int(context.definitions.valued["BLOCK_SIZE"], 0)


class ScaleInplace(KernelAdapter):
    KEY = "scale_inplace"
    PARAMETERS = (
        buffer_parameter(
            "data",
            ParameterDirection.INOUT,
            "Vector to scale; the scaled result is written back to it",
            size_calculator=size_of_input_buffer("data"),
        ),
        scalar_parameter("factor", ScalarType.FLOAT32, "Multiplier applied to every element"),
    )
    PREPROCESSOR_DEFINITIONS = (
        PreprocessorDefinitionDetails("BLOCK_SIZE", "Number of threads per block"),
    )

    def input_sizes_are_valid(self, context) -> bool:
        size = len(context.buffers.host_inputs["data"])
        if size % ELEMENT_SIZE:
            logger.error(f"Buffer size {size} is not a multiple of the element size {ELEMENT_SIZE}")
            return False
        return True

    def extra_validity_checks(self, context) -> bool:
        raw = context.definitions.valued.get("BLOCK_SIZE", "")
        try:
            valid = int(raw, 0) > 0
        except ValueError:
            valid = False
        if not valid:
            logger.error(f"BLOCK_SIZE must be defined as a positive integer, got {raw!r}")
        return valid

    def generate_additional_scalar_arguments(self, context) -> dict[str, ScalarValue]:
        length = len(context.buffers.host_inputs["data"]) // ELEMENT_SIZE
        return {"length": ScalarValue(ScalarType.UINT32, length)}

    def deduce_launch_config(self, context) -> LaunchConfigComponents:
        length = context.scalars.typed["length"].get(ScalarType.UINT32)
        deduced = LaunchConfigComponents(
            block_dimensions=(_block_size(context), 1, 1),
            overall_grid_dimensions=(max(length, 1), 1, 1),
            dynamic_shared_memory_size=0,
        )
        return overlay_forced_components(deduced, context.options.forced_launch_config)

    def marshal_kernel_arguments_inner(self, arguments, context) -> None:
        push_back_buffer(arguments, context, ParameterDirection.INOUT, "data")
        push_back_scalar(arguments, context, "factor", ScalarType.FLOAT32)
        push_back_scalar(arguments, context, "length", ScalarType.UINT32)
