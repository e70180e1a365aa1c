# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Kernel Runner Execution Backends

Two mutually exclusive GPU execution ecosystems behind one interface:
- CUDA (NVRTC + driver API, via CuPy)
- OpenCL (via pyopencl)

The GPU libraries are imported lazily, when a backend is initialized,
so the package itself imports without either of them.

Usage:
    from kernel_runner.backends import create_backend
    from kernel_runner.types import Ecosystem

    backend = create_backend(Ecosystem.OPENCL, device_id=0, platform_id=1)
    backend.initialize()
"""

from typing import Optional

from ..types import Ecosystem
from .base import (
    BuiltKernel,
    CompileFlags,
    DeviceBuffer,
    ExecutionBackend,
    MarshalledArguments,
    definition_options,
)
from .cuda_backend import CUDABackend
from .opencl_backend import OpenCLBackend


def create_backend(
    ecosystem: Ecosystem,
    device_id: int = 0,
    platform_id: Optional[int] = None,
    require_ir: bool = False,
) -> ExecutionBackend:
    """
    Create the (uninitialized) backend for an ecosystem.

    Args:
        ecosystem: CUDA or OpenCL.
        device_id: Device index.
        platform_id: OpenCL platform index; ignored for CUDA.
        require_ir: Whether the run will write the compiled IR.
    """
    if ecosystem is Ecosystem.CUDA:
        return CUDABackend(device_id)
    return OpenCLBackend(device_id, platform_id=platform_id, require_ir=require_ir)


def is_cuda_available() -> bool:
    """Check if CuPy is installed and sees at least one CUDA device."""
    try:
        return CUDABackend().device_count() > 0
    except Exception:
        return False


def is_opencl_available() -> bool:
    """Check if pyopencl is installed and platform 0 has a GPU device."""
    backend = OpenCLBackend()
    try:
        backend.initialize()
    except Exception:
        return False
    backend.release()
    return True


__all__ = [
    "BuiltKernel",
    "CompileFlags",
    "CUDABackend",
    "DeviceBuffer",
    "ExecutionBackend",
    "MarshalledArguments",
    "OpenCLBackend",
    "create_backend",
    "definition_options",
    "is_cuda_available",
    "is_opencl_available",
]
