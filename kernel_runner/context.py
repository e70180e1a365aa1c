# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Execution Context

The single mutable aggregate of a kernel run. It owns the backend
handles, the kernel adapter, every host and device buffer, the scalar
arguments and the finalized build inputs, and is passed to every stage
of the run.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from .backends.base import BuiltKernel, DeviceBuffer, ExecutionBackend, MarshalledArguments
from .launch_config import LaunchConfiguration
from .log import TRACE
from .options import RunOptions
from .types import Ecosystem, ScalarValue

if TYPE_CHECKING:
    from .adapters.base import KernelAdapter

logger = logging.getLogger("kernel_runner.context")


@dataclass
class BufferMaps:
    """
    Name-keyed buffer maps.

    Device ``inputs`` hold input buffers and the pristine copies of inout
    buffers; device ``outputs`` hold output buffers and the working copies
    of inout buffers.
    """

    host_inputs: dict[str, bytearray] = field(default_factory=dict)
    host_outputs: dict[str, bytearray] = field(default_factory=dict)
    device_inputs: dict[str, DeviceBuffer] = field(default_factory=dict)
    device_outputs: dict[str, DeviceBuffer] = field(default_factory=dict)
    input_filenames: dict[str, str] = field(default_factory=dict)
    output_filenames: dict[str, str] = field(default_factory=dict)


@dataclass
class ScalarArguments:
    raw: dict[str, str] = field(default_factory=dict)
    typed: dict[str, ScalarValue] = field(default_factory=dict)


@dataclass
class PreprocessorDefinitions:
    """Finalized preprocessor definitions."""

    valueless: set[str] = field(default_factory=set)
    valued: dict[str, str] = field(default_factory=dict)

    @property
    def defined_terms(self) -> set[str]:
        return self.valueless | set(self.valued)

    @classmethod
    def finalize(
        cls,
        raw_definitions: Iterable[str],
        value_definitions: Optional[Mapping[str, str]] = None,
    ) -> "PreprocessorDefinitions":
        """
        Split raw ``TERM`` / ``TERM=VALUE`` strings into valueless and
        valued definitions, on top of already-valued ones.

        A definition starting with ``=`` has no term; it is reported and
        skipped. ``TERM=`` defines TERM as empty. Only the first ``=``
        separates term from value.
        """
        definitions = cls(valued=dict(value_definitions or {}))
        for definition in raw_definitions:
            term, equals, value = definition.partition("=")
            if not equals:
                definitions.valueless.add(definition)
            elif not term:
                logger.warning(f'Invalid command-line argument "{definition}": Empty defined string')
            else:
                # Kernel-specific definition options take precedence
                definitions.valued.setdefault(term, value)
        for term, value in definitions.valued.items():
            logger.log(TRACE, f"finalized valued preprocessor definition: {term}={value}")
        for term in definitions.valueless:
            logger.log(TRACE, f"finalized valueless preprocessor definition: {term}")
        return definitions


@dataclass
class ExecutionContext:
    """State of one kernel run, from backend creation to release."""

    options: RunOptions
    backend: ExecutionBackend
    adapter: "KernelAdapter"
    buffers: BufferMaps = field(default_factory=BufferMaps)
    scalars: ScalarArguments = field(default_factory=ScalarArguments)
    definitions: PreprocessorDefinitions = field(default_factory=PreprocessorDefinitions)
    include_paths: list[str] = field(default_factory=list)
    built_kernel: Optional[BuiltKernel] = None
    compiled_ir: str = ""
    launch_config: Optional[LaunchConfiguration] = None
    arguments: Optional[MarshalledArguments] = None

    @property
    def ecosystem(self) -> Ecosystem:
        return self.backend.ecosystem
