# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
CUDA Backend Implementation

Compiles kernels at run time with NVRTC and launches them through the
CUDA driver API, using the bindings CuPy ships:

- cupy.cuda.nvrtc: program creation, compilation, log and PTX retrieval
- cupy.cuda.driver: module loading, function lookup, cuLaunchKernel
- cupy.cuda.memory: device allocations (MemoryPointer)

All work addresses the device's single process-wide (primary) context.
Kernel arguments are passed as an array of addresses of host-side
argument slots, terminated by a null entry.
"""

import ctypes
import logging
import os
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np

from ..errors import (
    BufferLifecycleError,
    CompilationError,
    DeviceError,
    KernelLaunchError,
)
from ..launch_config import LaunchConfiguration
from ..log import TRACE, log_build_log
from ..types import Ecosystem, ScalarValue
from .base import (
    BuiltKernel,
    CompileFlags,
    DeviceBuffer,
    ExecutionBackend,
    MarshalledArguments,
    definition_options,
)

logger = logging.getLogger("kernel_runner.backends.cuda")


def _import_cupy():
    try:
        import cupy
    except ImportError as e:
        raise DeviceError(
            f"CuPy is required for the CUDA ecosystem ({e}). "
            "Install it with: pip install cupy-cuda12x",
            ecosystem="cuda",
        ) from e
    return cupy


def _host_pointer(host: bytearray) -> ctypes.c_void_p:
    return np.frombuffer(host, dtype=np.uint8).ctypes.data_as(ctypes.c_void_p)


class CUDABackend(ExecutionBackend):
    """
    CUDA backend for NVIDIA GPU execution.

    Build: NVRTC to PTX, then cuModuleLoadData / cuModuleGetFunction.
    Launch: cuLaunchKernel with a null-terminated argument address array.
    Timing: CUDA events around the launch on the default stream.
    """

    def __init__(self, device_id: int = 0):
        super().__init__(device_id)
        self._cupy = None
        self._device = None
        self._compute_capability: Optional[str] = None

    @property
    def ecosystem(self) -> Ecosystem:
        return Ecosystem.CUDA

    def device_count(self) -> int:
        cupy = self._cupy or _import_cupy()
        try:
            return cupy.cuda.runtime.getDeviceCount()
        except cupy.cuda.runtime.CUDARuntimeError as e:
            logger.debug(f"Cannot query CUDA device count: {e}")
            return 0

    def _do_initialize(self) -> None:
        self._cupy = _import_cupy()
        count = self.device_count()
        if count == 0:
            raise DeviceError("No CUDA devices detected on this system", ecosystem="cuda")
        if not 0 <= self._device_id < count:
            raise DeviceError(
                f"Please specify a valid device index (in the range 0..{count - 1})",
                ecosystem="cuda",
                device_id=self._device_id,
            )

        self._device = self._cupy.cuda.Device(self._device_id)
        self._device.use()
        # Makes the primary context current for the driver API calls below
        self._device.synchronize()
        self._compute_capability = self._device.compute_capability
        logger.debug(
            f"Using CUDA device {self._device_id} "
            f"(compute capability {self._compute_capability})"
        )

    def default_include_paths(self) -> list[str]:
        cuda_path = self._cupy.cuda.get_cuda_path() if self._cupy else None
        if cuda_path:
            include_dir = os.path.join(cuda_path, "include")
            if os.path.isdir(include_dir):
                logger.debug(f"Using CUDA include directory {include_dir}")
                return [include_dir]
        logger.warning("Cannot locate CUDA include directory - trying to build the kernel with it missing.")
        return []

    def compile_options(
        self,
        flags: CompileFlags,
        include_paths: Sequence[str],
        preinclude_files: Sequence[str],
        valueless_definitions: Iterable[str],
        valued_definitions: Mapping[str, str],
    ) -> list[str]:
        """NVRTC command-line options for a build."""
        options = []
        if self._compute_capability:
            options.append(f"--gpu-architecture=compute_{self._compute_capability}")
        if flags.debug:
            options.append("--device-debug")
        if flags.line_info:
            options.append("--generate-line-info")
        if flags.language_standard:
            options.append(f"--std={flags.language_standard}")
        options.extend(f"--include-path={path}" for path in include_paths)
        options.extend(f"--pre-include={path}" for path in preinclude_files)
        options.extend(definition_options(valueless_definitions, valued_definitions))
        return options

    def build(
        self,
        source: str,
        source_name: str,
        function_name: str,
        flags: CompileFlags,
        include_paths: Sequence[str],
        preinclude_files: Sequence[str],
        valueless_definitions: Iterable[str],
        valued_definitions: Mapping[str, str],
    ) -> BuiltKernel:
        from cupy.cuda import driver, nvrtc

        options = self.compile_options(
            flags, include_paths, preinclude_files, valueless_definitions, valued_definitions
        )
        logger.debug(f"Compiling {source_name} with NVRTC options: {' '.join(options)}")

        program = nvrtc.createProgram(source, source_name, [], [])
        try:
            failure = None
            try:
                nvrtc.compileProgram(program, options)
            except nvrtc.NVRTCError as e:
                failure = e

            build_log = nvrtc.getProgramLog(program)
            if isinstance(build_log, bytes):
                build_log = build_log.decode("utf-8", errors="replace")
            log_build_log(build_log, failure is not None, logger)
            if failure is not None:
                raise CompilationError(str(failure), kernel_name=function_name, build_log=build_log)

            ptx = nvrtc.getPTX(program)
        finally:
            nvrtc.destroyProgram(program)

        if isinstance(ptx, str):
            ptx = ptx.encode()
        try:
            module = driver.moduleLoadData(ptx)
        except driver.CUDADriverError as e:
            raise CompilationError(f"Loading the compiled PTX failed: {e}", kernel_name=function_name) from e
        try:
            kernel = driver.moduleGetFunction(module, function_name)
        except driver.CUDADriverError as e:
            driver.moduleUnload(module)
            raise CompilationError(
                f"Kernel function '{function_name}' not found in the compiled module: {e}",
                kernel_name=function_name,
            ) from e

        return BuiltKernel(
            module=module,
            kernel=kernel,
            function_name=function_name,
            ir=ptx.rstrip(b"\0").decode("utf-8", errors="replace"),
        )

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def _do_allocate(self, name: str, size: int) -> DeviceBuffer:
        try:
            memory = self._cupy.cuda.alloc(size)
        except self._cupy.cuda.memory.OutOfMemoryError as e:
            raise BufferLifecycleError(f"CUDA allocation failed: {e}", buffer_name=name, size_bytes=size) from e
        logger.log(TRACE, f"Created buffer at address {memory.ptr:#x} with size {size} for kernel parameter {name}")
        return DeviceBuffer(name=name, size=size, handle=memory)

    def copy_to_device(self, destination: DeviceBuffer, source: bytearray) -> None:
        if len(source):
            destination.handle.copy_from_host(_host_pointer(source), len(source))

    def copy_to_host(self, destination: bytearray, source: DeviceBuffer) -> None:
        if len(destination):
            source.handle.copy_to_host(_host_pointer(destination), len(destination))

    def copy_on_device(self, destination: DeviceBuffer, source: DeviceBuffer) -> None:
        destination.handle.copy_from_device(source.handle, destination.size)

    def fill_zero(self, buffer: DeviceBuffer) -> None:
        buffer.handle.memset(0, buffer.size)

    def synchronize(self) -> None:
        self._device.synchronize()

    # ------------------------------------------------------------------
    # Arguments and launch
    # ------------------------------------------------------------------

    def push_buffer_argument(self, arguments: MarshalledArguments, buffer: DeviceBuffer) -> None:
        arguments.pointers.append(np.array([buffer.handle.ptr], dtype=np.uintp))

    def push_scalar_argument(self, arguments: MarshalledArguments, value: ScalarValue) -> None:
        arguments.pointers.append(np.array([value.value], dtype=value.scalar_type.dtype))

    def finalize_arguments(self, arguments: MarshalledArguments) -> MarshalledArguments:
        # cuLaunchKernel's parameter array is terminated by a null entry
        arguments.pointers.append(None)
        return arguments

    def launch(
        self,
        built: BuiltKernel,
        arguments: MarshalledArguments,
        launch_config: LaunchConfiguration,
        time_execution: bool = False,
    ) -> Optional[float]:
        from cupy.cuda import driver

        cupy = self._cupy
        slots = [0 if slot is None else slot.ctypes.data for slot in arguments.pointers]
        kernel_params = np.array(slots, dtype=np.uintp)
        gx, gy, gz = launch_config.grid_dimensions
        bx, by, bz = launch_config.block_dimensions
        stream = cupy.cuda.Stream.null

        start = end = None
        if time_execution:
            start, end = cupy.cuda.Event(), cupy.cuda.Event()
            start.record(stream)
        try:
            driver.launchKernel(
                built.kernel,
                gx, gy, gz,
                bx, by, bz,
                launch_config.dynamic_shared_memory_size,
                stream.ptr,
                kernel_params.ctypes.data,
                0,
            )
        except driver.CUDADriverError as e:
            raise KernelLaunchError(str(e), kernel_name=built.function_name) from e

        if not time_execution:
            return None
        end.record(stream)
        end.synchronize()
        return cupy.cuda.get_elapsed_time(start, end)

    def _do_release(self, built: Optional[BuiltKernel]) -> None:
        from cupy.cuda import driver

        if built is not None and built.module:
            driver.moduleUnload(built.module)
            logger.debug(f"Unloaded module of kernel {built.function_name}")
            built.module = None
            built.kernel = None
        # Buffer handles were dropped in release(), so their blocks are back in the pool
        self._cupy.get_default_memory_pool().free_all_blocks()
        # The primary context belongs to the CUDA runtime and is left in place
