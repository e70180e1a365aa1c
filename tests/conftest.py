# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Pytest configuration for the kernel runner tests.

Provides an in-memory execution backend which runs small Python
equivalents of the bundled kernels over host byte arrays, so the whole
run sequence can be exercised without a GPU.
"""

import logging
import re
import sys
from pathlib import Path
from typing import Optional

import numpy as np
import pytest

# Add the project root to sys.path so we can import kernel_runner
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from kernel_runner.adapters.registry import AdapterRegistry  # noqa: E402
from kernel_runner.backends.base import (  # noqa: E402
    BuiltKernel,
    DeviceBuffer,
    ExecutionBackend,
    MarshalledArguments,
)
from kernel_runner.errors import CompilationError  # noqa: E402
from kernel_runner.types import Ecosystem  # noqa: E402

KERNELS_DIR = project_root / "kernels"

_GUARDED_ERROR = re.compile(r"#ifndef\s+(\w+)\s*\n\s*#error")


def _float_view(buffer: DeviceBuffer) -> np.ndarray:
    return np.frombuffer(buffer.handle, dtype=np.float32)


def _vector_add(arguments, threads):
    a, b, c, length = arguments
    n = min(int(length), threads)
    _float_view(c)[:n] = _float_view(a)[:n] + _float_view(b)[:n]


def _scale_inplace(arguments, threads):
    data, factor, length = arguments
    n = min(int(length), threads)
    view = _float_view(data)
    view[:n] = view[:n] * np.float32(factor)


HOST_KERNELS = {
    "vector_add": _vector_add,
    "scale_inplace": _scale_inplace,
}


class FakeBackend(ExecutionBackend):
    """
    Execution backend over host memory.

    Every device operation is appended to ``operations`` as a tuple whose
    first element is the operation name.
    """

    def __init__(self, device_id: int = 0, ecosystem: Ecosystem = Ecosystem.CUDA):
        super().__init__(device_id)
        self._ecosystem = ecosystem
        self.operations = []
        self.build_options = None
        self.released = False

    @property
    def ecosystem(self) -> Ecosystem:
        return self._ecosystem

    def device_count(self) -> int:
        return 1

    def _do_initialize(self) -> None:
        self.operations.append(("initialize",))

    def build(
        self,
        source,
        source_name,
        function_name,
        flags,
        include_paths,
        preinclude_files,
        valueless_definitions,
        valued_definitions,
    ) -> BuiltKernel:
        self.operations.append(("build", function_name))
        defined = set(valueless_definitions) | set(valued_definitions)
        self.build_options = {
            "flags": flags,
            "include_paths": list(include_paths),
            "valueless": set(valueless_definitions),
            "valued": dict(valued_definitions),
        }
        missing = [term for term in _GUARDED_ERROR.findall(source) if term not in defined]
        if missing:
            raise CompilationError(
                f"{source_name}: #error for undefined {', '.join(missing)}",
                kernel_name=function_name,
                build_log="#error directive",
            )
        kernel = HOST_KERNELS.get(function_name)
        if kernel is None:
            raise CompilationError(f"No function named {function_name}", kernel_name=function_name)
        return BuiltKernel(module=source_name, kernel=kernel, function_name=function_name, ir=f"// IR of {function_name}\n")

    def _do_allocate(self, name: str, size: int) -> DeviceBuffer:
        self.operations.append(("allocate", name, size))
        return DeviceBuffer(name=name, size=size, handle=bytearray(size))

    def copy_to_device(self, destination, source) -> None:
        self.operations.append(("copy_to_device", destination.name))
        destination.handle[:] = source

    def copy_to_host(self, destination, source) -> None:
        self.operations.append(("copy_to_host", source.name))
        destination[:] = source.handle

    def copy_on_device(self, destination, source) -> None:
        self.operations.append(("copy_on_device", destination.name))
        destination.handle[:] = source.handle

    def fill_zero(self, buffer) -> None:
        self.operations.append(("fill_zero", buffer.name))
        buffer.handle[:] = bytes(buffer.size)

    def synchronize(self) -> None:
        self.operations.append(("synchronize",))

    def push_buffer_argument(self, arguments: MarshalledArguments, buffer) -> None:
        arguments.pointers.append(buffer)

    def push_scalar_argument(self, arguments: MarshalledArguments, value) -> None:
        arguments.pointers.append(value.as_numpy())

    def launch(self, built, arguments, launch_config, time_execution=False) -> Optional[float]:
        self.operations.append(("launch", built.function_name))
        threads = int(np.prod(launch_config.padded_overall_dimensions))
        built.kernel(arguments.pointers, threads)
        return 0.25 if time_execution else None

    def _free_buffer(self, buffer) -> None:
        self.operations.append(("free", buffer.name))

    def _do_release(self, built) -> None:
        self.operations.append(("release",))
        self.released = True

    def names(self, operation: str) -> list:
        """Buffer or function names of every recorded ``operation``."""
        return [op[1] for op in self.operations if op[0] == operation]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_registry():
    """Each test starts with a registry holding only the built-in adapters."""
    AdapterRegistry.reset()
    yield
    AdapterRegistry.reset()


@pytest.fixture(autouse=True)
def restore_package_logger():
    """Undo configure_logging() so caplog sees records again."""
    yield
    package_logger = logging.getLogger("kernel_runner")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def backend_factory(fake_backend):
    """Backend factory handing out ``fake_backend``; records its calls."""
    calls = []

    def factory(options):
        calls.append(options)
        return fake_backend

    factory.calls = calls
    return factory


@pytest.fixture
def buffer_dirs(tmp_path):
    """Separate input and output buffer directories."""
    input_dir = tmp_path / "in"
    output_dir = tmp_path / "out"
    input_dir.mkdir()
    output_dir.mkdir()
    return input_dir, output_dir


def write_floats(path: Path, values) -> np.ndarray:
    array = np.asarray(values, dtype=np.float32)
    path.write_bytes(array.tobytes())
    return array


def read_floats(path: Path) -> np.ndarray:
    return np.frombuffer(path.read_bytes(), dtype=np.float32)
