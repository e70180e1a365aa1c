# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Base Kernel Adapter Interface

A kernel adapter describes one runnable kernel: its parameters (buffers
and scalars, in signature order), the preprocessor definitions its
source needs, how large its output buffers are, and how its arguments
are marshalled. The runner itself knows nothing kernel-specific.

Example:
    class VectorAdd(KernelAdapter):
        KEY = "vector_add"
        PARAMETERS = (
            buffer_parameter("a", ParameterDirection.INPUT),
            buffer_parameter("b", ParameterDirection.INPUT),
            buffer_parameter("c", ParameterDirection.OUTPUT, size_calculator=size_of_input_buffer("a")),
        )

        def marshal_kernel_arguments_inner(self, arguments, context):
            for name in ("a", "b"):
                push_back_buffer(arguments, context, ParameterDirection.INPUT, name)
            push_back_buffer(arguments, context, ParameterDirection.OUTPUT, "c")
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable, ClassVar, Mapping, Optional

from ..backends.base import MarshalledArguments
from ..errors import (
    AdapterError,
    BufferLifecycleError,
    ConfigurationError,
    LaunchConfigError,
    ScalarTypeError,
)
from ..launch_config import LaunchConfigComponents
from ..types import ParameterDirection, ParameterKind, ScalarType, ScalarValue, scalar_parser

if TYPE_CHECKING:
    from ..context import ExecutionContext

logger = logging.getLogger("kernel_runner.adapters")

# (host input buffers, typed scalars, valueless definitions, valued definitions) -> size in bytes
SizeCalculator = Callable[
    [Mapping[str, bytearray], Mapping[str, ScalarValue], set, Mapping[str, str]],
    int,
]


@dataclass(frozen=True)
class ParameterDetails:
    """
    Schema entry for one kernel parameter.

    Attributes:
        name: Parameter name, also the name of its command-line option.
        kind: Buffer or scalar.
        direction: Input, output or inout.
        parser: Raw-string parser (scalars only).
        size_calculator: Computes the size of an output/inout buffer.
        required: Whether the user must supply it (scalars).
        description: Help text.
    """

    name: str
    kind: ParameterKind
    direction: ParameterDirection
    parser: Optional[Callable[[str], ScalarValue]] = None
    size_calculator: Optional[SizeCalculator] = None
    required: bool = True
    description: str = ""

    @property
    def scalar_type(self) -> Optional[ScalarType]:
        return getattr(self.parser, "scalar_type", None)


@dataclass(frozen=True)
class PreprocessorDefinitionDetails:
    name: str
    description: str = ""
    required: bool = True


def buffer_parameter(
    name: str,
    direction: ParameterDirection,
    description: str = "",
    size_calculator: Optional[SizeCalculator] = None,
) -> ParameterDetails:
    """Declare a buffer parameter."""
    return ParameterDetails(
        name=name,
        kind=ParameterKind.BUFFER,
        direction=direction,
        size_calculator=size_calculator,
        description=description,
    )


def scalar_parameter(
    name: str,
    scalar_type: ScalarType,
    description: str = "",
    required: bool = True,
) -> ParameterDetails:
    """Declare a scalar (always input) parameter, parsed as ``scalar_type``."""
    return ParameterDetails(
        name=name,
        kind=ParameterKind.SCALAR,
        direction=ParameterDirection.INPUT,
        parser=scalar_parser(scalar_type),
        required=required,
        description=description,
    )


def size_of_input_buffer(input_buffer: str) -> SizeCalculator:
    """Size calculator returning the size of an input buffer."""

    def calculate(host_inputs, typed_scalars, valueless, valued) -> int:
        return len(host_inputs[input_buffer])

    return calculate


class KernelAdapter(ABC):
    """
    Abstract base class for kernel adapters.

    Subclasses declare their schema as class attributes and implement
    ``marshal_kernel_arguments_inner``. Adapters are stateless: one
    instance serves a whole run and is never mutated.
    """

    KEY: ClassVar[str] = ""
    # Defaults to KEY; several variants of a kernel may share one function name
    KERNEL_FUNCTION_NAME: ClassVar[str] = ""
    PARAMETERS: ClassVar[tuple[ParameterDetails, ...]] = ()
    PREPROCESSOR_DEFINITIONS: ClassVar[tuple[PreprocessorDefinitionDetails, ...]] = ()

    @classmethod
    def validate_schema(cls) -> None:
        """
        Check the class-level schema.

        Raises:
            AdapterError: On a missing key, a duplicate name, or a scalar
                parameter without a parser.
        """
        if not cls.KEY:
            raise AdapterError(f"{cls.__name__} does not define a KEY")
        names = [p.name for p in cls.PARAMETERS]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise AdapterError(f"Duplicate parameter names: {', '.join(duplicates)}", adapter_key=cls.KEY)
        for parameter in cls.PARAMETERS:
            if parameter.kind is ParameterKind.SCALAR and parameter.parser is None:
                raise AdapterError(f"Scalar parameter '{parameter.name}' has no parser", adapter_key=cls.KEY)

    def key(self) -> str:
        return self.KEY

    def kernel_function_name(self) -> str:
        return self.KERNEL_FUNCTION_NAME or self.KEY

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def parameter_details(self) -> tuple[ParameterDetails, ...]:
        return self.PARAMETERS

    def scalar_parameter_details(self) -> list[ParameterDetails]:
        return [p for p in self.PARAMETERS if p.kind is ParameterKind.SCALAR]

    def buffer_details(self) -> list[ParameterDetails]:
        return [p for p in self.PARAMETERS if p.kind is ParameterKind.BUFFER]

    def buffer_names(self, *directions: ParameterDirection) -> list[str]:
        """Names of the buffers with any of the given directions, in schema order."""
        return [p.name for p in self.buffer_details() if p.direction in directions]

    def preprocessor_definition_details(self) -> tuple[PreprocessorDefinitionDetails, ...]:
        return self.PREPROCESSOR_DEFINITIONS

    def required_scalar_names(self) -> list[str]:
        return [p.name for p in self.scalar_parameter_details() if p.required]

    def required_preprocessor_definition_terms(self) -> list[str]:
        return [d.name for d in self.PREPROCESSOR_DEFINITIONS if d.required]

    def _parameter(self, name: str) -> ParameterDetails:
        for parameter in self.PARAMETERS:
            if parameter.name == name:
                return parameter
        raise AdapterError(f"No parameter named '{name}'", adapter_key=self.KEY)

    # ------------------------------------------------------------------
    # Arguments and buffers
    # ------------------------------------------------------------------

    def parse_scalar_argument(self, name: str, raw: str) -> ScalarValue:
        """
        Parse the raw command-line value of a scalar parameter.

        Raises:
            ConfigurationError: If the value does not parse.
            AdapterError: If ``name`` is not a scalar parameter.
        """
        parameter = self._parameter(name)
        if parameter.kind is not ParameterKind.SCALAR:
            raise AdapterError(f"Parameter '{name}' is not a scalar", adapter_key=self.KEY)
        try:
            return parameter.parser(raw)
        except ConfigurationError as e:
            raise ConfigurationError(
                f"Invalid value for scalar argument '{name}': {e.message}",
                option=name,
                value=raw,
            ) from e

    def output_buffer_sizes(
        self,
        host_inputs: Mapping[str, bytearray],
        typed_scalars: Mapping[str, ScalarValue],
        valueless_definitions: set,
        valued_definitions: Mapping[str, str],
    ) -> dict[str, int]:
        """
        Sizes, in bytes, of every output and inout buffer.

        Raises:
            AdapterError: If a buffer lacks a size calculator or its
                calculator yields a negative size.
        """
        sizes = {}
        for parameter in self.buffer_details():
            if not parameter.direction.is_written:
                continue
            if parameter.size_calculator is None:
                raise AdapterError(f"No size calculator for buffer '{parameter.name}'", adapter_key=self.KEY)
            size = int(
                parameter.size_calculator(host_inputs, typed_scalars, valueless_definitions, valued_definitions)
            )
            if size < 0:
                raise AdapterError(
                    f"Size calculator for buffer '{parameter.name}' returned {size}",
                    adapter_key=self.KEY,
                )
            sizes[parameter.name] = size
        return sizes

    def input_sizes_are_valid(self, context: "ExecutionContext") -> bool:
        return True

    def extra_validity_checks(self, context: "ExecutionContext") -> bool:
        return True

    def generate_additional_scalar_arguments(self, context: "ExecutionContext") -> dict[str, ScalarValue]:
        """Scalar arguments the adapter computes itself (e.g. a length)."""
        return {}

    @abstractmethod
    def marshal_kernel_arguments_inner(
        self,
        arguments: MarshalledArguments,
        context: "ExecutionContext",
    ) -> None:
        """Push every kernel argument, in signature order."""
        pass

    def marshal_kernel_arguments(self, context: "ExecutionContext") -> MarshalledArguments:
        """
        Marshal the kernel's arguments for launching.

        Called after the kernel was built, so the preprocessor
        definitions may be assumed present and valid.
        """
        arguments = MarshalledArguments()
        self.marshal_kernel_arguments_inner(arguments, context)
        return context.backend.finalize_arguments(arguments)

    # ------------------------------------------------------------------
    # Launch configuration
    # ------------------------------------------------------------------

    def deduce_launch_config(self, context: "ExecutionContext") -> LaunchConfigComponents:
        """
        Complete the launch configuration components.

        The default accepts the forced components alone. Adapters which
        can compute a launch geometry from their inputs override this.

        Raises:
            LaunchConfigError: If the forced components are insufficient.
        """
        components = context.options.forced_launch_config.with_default_shared_memory()
        if components.is_sufficient():
            return components
        raise LaunchConfigError(
            "Unable to deduce launch configuration - please specify all launch "
            "configuration components explicitly using the command-line"
        )

    def make_launch_config(self, context: "ExecutionContext") -> LaunchConfigComponents:
        forced = context.options.forced_launch_config
        if forced.is_sufficient():
            return forced
        return self.deduce_launch_config(context)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(key={self.KEY!r})>"


def push_back_buffer(
    arguments: MarshalledArguments,
    context: "ExecutionContext",
    direction: ParameterDirection,
    name: str,
) -> None:
    """
    Push a device buffer argument.

    Input buffers come from the device input map; output and inout
    buffers from the device output map (for inout: the working copy).
    """
    buffers = context.buffers.device_outputs if direction.is_written else context.buffers.device_inputs
    buffer = buffers.get(name)
    if buffer is None:
        raise BufferLifecycleError(f"No device-side {direction.value} buffer to pass as an argument", buffer_name=name)
    context.backend.push_buffer_argument(arguments, buffer)


def push_back_scalar(
    arguments: MarshalledArguments,
    context: "ExecutionContext",
    name: str,
    scalar_type: ScalarType,
) -> None:
    """
    Push a typed scalar argument.

    Raises:
        AdapterError: If the scalar is missing.
        ScalarTypeError: If it holds a value of another type.
    """
    value = context.scalars.typed.get(name)
    if value is None:
        raise AdapterError(f"Scalar argument '{name}' has no value", adapter_key=context.adapter.key())
    if value.scalar_type is not scalar_type:
        raise ScalarTypeError(scalar_type.value, value.scalar_type.value, name=name)
    context.backend.push_scalar_argument(arguments, value)


def overlay_forced_components(
    deduced: LaunchConfigComponents,
    forced: LaunchConfigComponents,
) -> LaunchConfigComponents:
    """
    Deduced launch components, overridden by whatever the user forced.

    A forced grid displaces a deduced overall extent and vice versa, so
    the result never over-determines the launch.
    """
    components = deduced
    if forced.grid_dimensions is not None:
        components = replace(components, grid_dimensions=forced.grid_dimensions, overall_grid_dimensions=None)
    if forced.overall_grid_dimensions is not None:
        components = replace(components, overall_grid_dimensions=forced.overall_grid_dimensions, grid_dimensions=None)
    if forced.block_dimensions is not None:
        components = replace(components, block_dimensions=forced.block_dimensions)
    if forced.dynamic_shared_memory_size is not None:
        components = replace(components, dynamic_shared_memory_size=forced.dynamic_shared_memory_size)
    return components
