# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
OpenCL Backend Implementation

Builds and runs kernels through pyopencl. A run resolves a
platform -> device -> context -> queue chain once; every later
operation (allocation, copy, build, launch, fill, read) goes through
that context and its profiling-enabled queue.

Kernel arguments are set one index at a time, each with an explicit
byte size.
"""

import logging
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np

from ..errors import (
    AdapterError,
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

logger = logging.getLogger("kernel_runner.backends.opencl")

DEFAULT_PLATFORM_ID = 0
BUFFER_ARGUMENT_SIZE = np.dtype(np.uintp).itemsize


def _import_pyopencl():
    try:
        import pyopencl
    except ImportError as e:
        raise DeviceError(
            f"pyopencl is required for the OpenCL ecosystem ({e}). "
            "Install it with: pip install pyopencl",
            ecosystem="opencl",
        ) from e
    return pyopencl


def platform_emits_ptx(platform) -> bool:
    """Whether a platform's program binaries are PTX (NVIDIA's OpenCL)."""
    return "NVIDIA" in platform.name or "NVIDIA" in platform.vendor


class OpenCLBackend(ExecutionBackend):
    """
    OpenCL backend for GPU execution.

    Args:
        device_id: Index of the GPU device within the platform.
        platform_id: Index of the OpenCL platform (default 0).
        require_ir: Fail during initialization if the platform cannot
            produce a textual intermediate representation.
    """

    def __init__(
        self,
        device_id: int = 0,
        platform_id: Optional[int] = None,
        require_ir: bool = False,
    ):
        super().__init__(device_id)
        self._platform_id = DEFAULT_PLATFORM_ID if platform_id is None else platform_id
        self._require_ir = require_ir
        self._cl = None
        self._platform = None
        self._device = None
        self._context = None
        self._queue = None
        self._emits_ptx = False

    @property
    def ecosystem(self) -> Ecosystem:
        return Ecosystem.OPENCL

    @property
    def platform_id(self) -> int:
        return self._platform_id

    def _gpu_devices(self, platform) -> list:
        try:
            return platform.get_devices(device_type=self._cl.device_type.GPU)
        except self._cl.Error as e:
            logger.debug(f"No GPU devices on platform {platform.name}: {e}")
            return []

    def device_count(self) -> int:
        if self._platform is None:
            return 0
        return len(self._gpu_devices(self._platform))

    def _do_initialize(self) -> None:
        cl = self._cl = _import_pyopencl()
        try:
            platforms = cl.get_platforms()
        except cl.Error as e:
            raise DeviceError(f"Cannot enumerate OpenCL platforms: {e}", ecosystem="opencl") from e
        if not platforms:
            raise DeviceError("No OpenCL platforms found.", ecosystem="opencl")
        if not 0 <= self._platform_id < len(platforms):
            raise DeviceError(f"No OpenCL platform exists with ID {self._platform_id}", ecosystem="opencl")

        self._platform = platforms[self._platform_id]
        self._emits_ptx = platform_emits_ptx(self._platform)
        logger.debug(f"Using OpenCL platform {self._platform_id}: {self._platform.name}")
        if self._require_ir and not self._emits_ptx:
            raise DeviceError(
                f"PTX file requested, but chosen OpenCL platform '{self._platform.name}' "
                "does not generate PTX files during build",
                ecosystem="opencl",
            )

        devices = self._gpu_devices(self._platform)
        if not devices:
            raise DeviceError(f"No OpenCL devices found on the platform {self._platform_id}", ecosystem="opencl")
        if not 0 <= self._device_id < len(devices):
            raise DeviceError(
                f"Please specify a valid device index (in the range 0..{len(devices) - 1})",
                ecosystem="opencl",
                device_id=self._device_id,
            )

        self._device = devices[self._device_id]
        self._context = cl.Context(devices=[self._device])
        self._queue = cl.CommandQueue(
            self._context,
            self._device,
            properties=cl.command_queue_properties.PROFILING_ENABLE,
        )
        logger.debug(f"Using OpenCL device {self._device_id}: {self._device.name}")

    def compile_options(
        self,
        flags: CompileFlags,
        include_paths: Sequence[str],
        valueless_definitions: Iterable[str],
        valued_definitions: Mapping[str, str],
    ) -> list[str]:
        """OpenCL program build options."""
        options = [f"-I{path}" for path in include_paths]
        options.extend(definition_options(valueless_definitions, valued_definitions))
        if flags.debug:
            options.extend(["-g", "-cl-opt-disable"])
        if flags.line_info and self._emits_ptx:
            options.append("-nv-line-info")
        if flags.language_standard:
            logger.warning(
                f"Ignoring language standard {flags.language_standard}: "
                "it applies to CUDA compilation only"
            )
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
        cl = self._cl
        options = self.compile_options(flags, include_paths, valueless_definitions, valued_definitions)
        # OpenCL has no pre-include option; emulate it in the translation unit
        preamble = "".join(f'#include "{path}"\n' for path in preinclude_files)
        logger.debug(f"Building {source_name} with OpenCL options: {' '.join(options)}")

        program = cl.Program(self._context, preamble + source)
        failure = None
        try:
            program.build(options=options, devices=[self._device])
        except cl.Error as e:
            failure = e

        build_log = program.get_build_info(self._device, cl.program_build_info.LOG) or ""
        log_build_log(build_log, failure is not None, logger)
        if failure is not None:
            raise CompilationError(str(failure), kernel_name=function_name, build_log=build_log)

        try:
            kernel = cl.Kernel(program, function_name)
        except cl.Error as e:
            raise CompilationError(
                f"Kernel function '{function_name}' not found in the built program: {e}",
                kernel_name=function_name,
            ) from e

        binaries = program.get_info(cl.program_info.BINARIES)
        ir = bytes(binaries[0]).rstrip(b"\0").decode("utf-8", errors="replace") if binaries else ""
        return BuiltKernel(module=program, kernel=kernel, function_name=function_name, ir=ir)

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def _do_allocate(self, name: str, size: int) -> DeviceBuffer:
        cl = self._cl
        try:
            buffer = cl.Buffer(self._context, cl.mem_flags.READ_WRITE, size)
        except cl.Error as e:
            raise BufferLifecycleError(f"OpenCL allocation failed: {e}", buffer_name=name, size_bytes=size) from e
        logger.log(TRACE, f"Created an OpenCL read/write buffer with size {size} for kernel parameter {name}")
        return DeviceBuffer(name=name, size=size, handle=buffer)

    def copy_to_device(self, destination: DeviceBuffer, source: bytearray) -> None:
        self._cl.enqueue_copy(self._queue, destination.handle, source, is_blocking=True)

    def copy_to_host(self, destination: bytearray, source: DeviceBuffer) -> None:
        self._cl.enqueue_copy(self._queue, destination, source.handle, is_blocking=True)

    def copy_on_device(self, destination: DeviceBuffer, source: DeviceBuffer) -> None:
        self._cl.enqueue_copy(self._queue, destination.handle, source.handle, byte_count=source.size)

    def fill_zero(self, buffer: DeviceBuffer) -> None:
        self._cl.enqueue_fill_buffer(self._queue, buffer.handle, np.uint8(0), 0, buffer.size)

    def synchronize(self) -> None:
        self._queue.finish()

    # ------------------------------------------------------------------
    # Arguments and launch
    # ------------------------------------------------------------------

    def push_buffer_argument(self, arguments: MarshalledArguments, buffer: DeviceBuffer) -> None:
        arguments.pointers.append(buffer.handle)
        arguments.sizes.append(BUFFER_ARGUMENT_SIZE)

    def push_scalar_argument(self, arguments: MarshalledArguments, value: ScalarValue) -> None:
        arguments.pointers.append(value.as_numpy())
        arguments.sizes.append(value.scalar_type.size_bytes)

    def finalize_arguments(self, arguments: MarshalledArguments) -> MarshalledArguments:
        if len(arguments.sizes) != len(arguments.pointers):
            raise AdapterError(
                f"Marshalled {len(arguments.pointers)} arguments but {len(arguments.sizes)} sizes"
            )
        return arguments

    def launch(
        self,
        built: BuiltKernel,
        arguments: MarshalledArguments,
        launch_config: LaunchConfiguration,
        time_execution: bool = False,
    ) -> Optional[float]:
        cl = self._cl
        try:
            for index, (argument, size) in enumerate(zip(arguments.pointers, arguments.sizes)):
                if isinstance(argument, np.generic) and argument.nbytes != size:
                    raise KernelLaunchError(
                        f"Argument {index} is {argument.nbytes} bytes, expected {size}",
                        kernel_name=built.function_name,
                    )
                built.kernel.set_arg(index, argument)
            event = cl.enqueue_nd_range_kernel(
                self._queue,
                built.kernel,
                launch_config.padded_overall_dimensions,
                launch_config.block_dimensions,
            )
        except cl.Error as e:
            raise KernelLaunchError(str(e), kernel_name=built.function_name) from e

        if not time_execution:
            return None
        event.wait()
        return (event.profile.end - event.profile.start) * 1e-6

    def _free_buffer(self, buffer: DeviceBuffer) -> None:
        buffer.handle.release()

    def _do_release(self, built: Optional[BuiltKernel]) -> None:
        if self._queue is not None:
            self._queue.finish()
        if built is not None:
            # pyopencl frees programs and kernels once unreferenced
            built.kernel = None
            built.module = None
        self._queue = None
        self._context = None
        self._device = None
