# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Kernel Runner: a harness for dynamically-compiled GPU kernels

Compiles a single CUDA or OpenCL kernel at run time, feeds it buffers
read from files and scalar arguments from the command line, launches it
one or more times and writes its output buffers back to files.

Example:
    from kernel_runner import KernelIdentity, RunOptions, run_kernel

    options = RunOptions(kernel=KernelIdentity("vector_add", source_file="kernels/vector_add.cu"))
    result = run_kernel(options)
"""

__version__ = "0.1.0"
__author__ = "Wahyu Ardiansyah"

from .adapters import AdapterRegistry, KernelAdapter, get_registry
from .errors import (
    AdapterError,
    BufferIOError,
    BufferLifecycleError,
    CompilationError,
    ConfigurationError,
    DeviceError,
    KernelLaunchError,
    KernelRunnerError,
    LaunchConfigError,
    ScalarTypeError,
    UnknownKernelError,
    ValidationError,
)
from .launch_config import LaunchConfigComponents, LaunchConfiguration
from .log import configure_logging
from .options import KernelIdentity, RunOptions
from .runner import RunResult, run_kernel
from .types import Ecosystem, ParameterDirection, ParameterKind, ScalarType, ScalarValue

__all__ = [
    "__version__",
    "AdapterError",
    "AdapterRegistry",
    "BufferIOError",
    "BufferLifecycleError",
    "CompilationError",
    "ConfigurationError",
    "DeviceError",
    "Ecosystem",
    "KernelAdapter",
    "KernelIdentity",
    "KernelLaunchError",
    "KernelRunnerError",
    "LaunchConfigComponents",
    "LaunchConfigError",
    "LaunchConfiguration",
    "ParameterDirection",
    "ParameterKind",
    "RunOptions",
    "RunResult",
    "ScalarType",
    "ScalarTypeError",
    "ScalarValue",
    "UnknownKernelError",
    "ValidationError",
    "configure_logging",
    "get_registry",
    "run_kernel",
]
