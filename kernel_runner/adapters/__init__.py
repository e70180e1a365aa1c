# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Kernel adapters for the kernel runner.

Each adapter describes one runnable kernel (its buffers, scalars,
preprocessor definitions and argument order) and is looked up by key.
"""

from .base import (
    KernelAdapter,
    ParameterDetails,
    PreprocessorDefinitionDetails,
    buffer_parameter,
    overlay_forced_components,
    push_back_buffer,
    push_back_scalar,
    scalar_parameter,
    size_of_input_buffer,
)
from .registry import AdapterRegistry, get_registry
from .scale_inplace import ScaleInplace
from .vector_add import VectorAdd

BUILTIN_ADAPTERS = (VectorAdd, ScaleInplace)


def register_builtin_adapters(registry) -> None:
    """Register the adapters shipped with the runner."""
    for adapter_class in BUILTIN_ADAPTERS:
        registry.register(adapter_class, ignore_repeat=True)


__all__ = [
    "AdapterRegistry",
    "BUILTIN_ADAPTERS",
    "KernelAdapter",
    "ParameterDetails",
    "PreprocessorDefinitionDetails",
    "ScaleInplace",
    "VectorAdd",
    "buffer_parameter",
    "get_registry",
    "overlay_forced_components",
    "push_back_buffer",
    "push_back_scalar",
    "register_builtin_adapters",
    "scalar_parameter",
    "size_of_input_buffer",
]
