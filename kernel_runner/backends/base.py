# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Execution Backend Base Classes

This module defines the abstract interface shared by the two GPU
execution ecosystems (CUDA and OpenCL). The orchestrator selects one
backend at the start of a run and afterwards talks only to this
interface; it never branches on the ecosystem again.

Contract:
- initialize(): Resolve the device and create context/queue handles
- build(): Compile kernel source and load the entry point
- allocate()/copy_to_device()/copy_to_host()/copy_on_device()/fill_zero()
- push_buffer_argument()/push_scalar_argument()/finalize_arguments()
- launch(): Dispatch the built kernel, optionally timing it
- synchronize(): Wait for all pending device work
- release(): Free the module/program and context handles
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence
import logging

from ..launch_config import LaunchConfiguration
from ..types import Ecosystem, ScalarValue

logger = logging.getLogger("kernel_runner.backends")


@dataclass
class DeviceBuffer:
    """A device-side allocation backing one kernel buffer parameter.

    ``handle`` is backend-specific: a CuPy MemoryPointer for CUDA, a
    pyopencl Buffer for OpenCL.
    """

    name: str
    size: int
    handle: Any


@dataclass
class BuiltKernel:
    """Result of building a kernel."""

    module: Any  # loaded CUDA module, or OpenCL program
    kernel: Any  # compiled entry point handle
    function_name: str
    ir: str = ""


@dataclass(frozen=True)
class CompileFlags:
    """Compilation flags common to both ecosystems."""

    debug: bool = False
    line_info: bool = True
    language_standard: Optional[str] = None


@dataclass
class MarshalledArguments:
    """
    Kernel arguments in the order the entry point expects them.

    ``pointers`` holds opaque argument references. ``sizes`` is filled
    only by backends which need an explicit byte size per argument.
    """

    pointers: list = field(default_factory=list)
    sizes: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.pointers)


class ExecutionBackend(ABC):
    """
    Abstract base class for GPU execution backends.

    A backend instance owns the native handles of one run (device,
    context, queue) and must be released with ``release()``.
    """

    def __init__(self, device_id: int = 0):
        self._device_id = device_id
        self._initialized = False
        self._allocations: list[DeviceBuffer] = []

    @property
    @abstractmethod
    def ecosystem(self) -> Ecosystem:
        """The ecosystem this backend drives."""
        pass

    @property
    def name(self) -> str:
        return self.ecosystem.value

    @property
    def device_id(self) -> int:
        return self._device_id

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """
        Resolve the device and create native context handles.

        Raises:
            DeviceError: If no usable device exists for the given indices.
        """
        if self._initialized:
            return
        self._do_initialize()
        self._initialized = True
        logger.debug(f"Backend {self.name}:{self._device_id} initialized")

    @abstractmethod
    def _do_initialize(self) -> None:
        pass

    @abstractmethod
    def device_count(self) -> int:
        """Number of devices usable by this backend."""
        pass

    def default_include_paths(self) -> list[str]:
        """Include directories the backend's compiler needs by default."""
        return []

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    @abstractmethod
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
        """
        Compile kernel source and obtain the entry point.

        The build log is always captured and logged (at error severity
        when the build fails).

        Raises:
            CompilationError: If the build fails.
        """
        pass

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def allocate(self, name: str, size: int) -> DeviceBuffer:
        """
        Allocate a device buffer.

        The backend keeps every buffer it hands out and frees them all in
        ``release()``, after which their handles are None.

        Raises:
            BufferLifecycleError: If the allocation fails.
        """
        buffer = self._do_allocate(name, size)
        self._allocations.append(buffer)
        return buffer

    @abstractmethod
    def _do_allocate(self, name: str, size: int) -> DeviceBuffer:
        pass

    def _free_buffer(self, buffer: DeviceBuffer) -> None:
        """Free one buffer's native memory ahead of dropping its handle."""
        pass

    @abstractmethod
    def copy_to_device(self, destination: DeviceBuffer, source: bytearray) -> None:
        """Copy a host buffer's bytes into a device buffer."""
        pass

    @abstractmethod
    def copy_to_host(self, destination: bytearray, source: DeviceBuffer) -> None:
        """Copy a device buffer's bytes into a host buffer."""
        pass

    @abstractmethod
    def copy_on_device(self, destination: DeviceBuffer, source: DeviceBuffer) -> None:
        """Copy one device buffer into another of the same size."""
        pass

    @abstractmethod
    def fill_zero(self, buffer: DeviceBuffer) -> None:
        """Set every byte of a device buffer to zero."""
        pass

    def synchronize(self) -> None:
        """Wait for all pending device operations to complete.

        Blocking call. Must be called before reading results on the host.
        """
        pass

    # ------------------------------------------------------------------
    # Arguments and launch
    # ------------------------------------------------------------------

    @abstractmethod
    def push_buffer_argument(self, arguments: MarshalledArguments, buffer: DeviceBuffer) -> None:
        """Append a device buffer reference to the argument list."""
        pass

    @abstractmethod
    def push_scalar_argument(self, arguments: MarshalledArguments, value: ScalarValue) -> None:
        """Append a scalar value reference to the argument list."""
        pass

    def finalize_arguments(self, arguments: MarshalledArguments) -> MarshalledArguments:
        """Apply the backend's argument-list convention (terminator, sizes)."""
        return arguments

    @abstractmethod
    def launch(
        self,
        built: BuiltKernel,
        arguments: MarshalledArguments,
        launch_config: LaunchConfiguration,
        time_execution: bool = False,
    ) -> Optional[float]:
        """
        Dispatch the built kernel.

        Returns:
            Elapsed kernel time in milliseconds when timing was requested,
            otherwise None.

        Raises:
            KernelLaunchError: If the launch fails.
        """
        pass

    def release(self, built: Optional[BuiltKernel] = None) -> None:
        """Release native handles. Failures are logged, never raised."""
        if not self._initialized:
            return
        while self._allocations:
            buffer = self._allocations.pop()
            try:
                self._free_buffer(buffer)
            except Exception as e:
                logger.warning(f"Failed to free device buffer '{buffer.name}': {e}")
            buffer.handle = None
        try:
            self._do_release(built)
        except Exception as e:
            logger.warning(f"Failed to release {self.name} resources: {e}")
        self._initialized = False
        logger.debug(f"Backend {self.name}:{self._device_id} released")

    def _do_release(self, built: Optional[BuiltKernel]) -> None:
        """Backend-specific cleanup. Override in subclasses."""
        pass

    def __repr__(self) -> str:
        status = "initialized" if self._initialized else "uninitialized"
        return f"<{self.__class__.__name__}({self.name}:{self._device_id}, {status})>"


def definition_options(
    valueless_definitions: Iterable[str],
    valued_definitions: Mapping[str, str],
    prefix: str = "-D",
) -> list[str]:
    """Compiler options for preprocessor definitions, in a stable order."""
    options = [f"{prefix}{term}" for term in sorted(valueless_definitions)]
    options.extend(f"{prefix}{term}={value}" for term, value in sorted(valued_definitions.items()))
    return options
