# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Kernel Run Orchestrator

Runs one kernel, start to finish, in a fixed sequence:

 0. Pre-flight: kernel key, buffer filenames, output/IR overwrite checks
 1. Create and initialize the execution backend
 2. Produce the kernel adapter and create the execution context
 3. Include paths, preprocessor definitions, scalar arguments
 4. Read and build the kernel source
 5. Write the compiled IR (optional); stop here when compiling only
 6. Read and verify the input buffers
 7. Create host output and device buffers
 8. Add adapter-generated scalar arguments
 9. Copy inputs (and pristine inout copies) to the device
10. Marshal the arguments and resolve the launch configuration
11. Launch the kernel the requested number of times
12. Copy outputs back and write them (optional)
13. Release the backend's resources

Every step raises on failure; nothing here terminates the process.

Example:
    from kernel_runner.options import KernelIdentity, RunOptions
    from kernel_runner.runner import run_kernel

    result = run_kernel(RunOptions(kernel=KernelIdentity("vector_add", source_file="vector_add.cu")))
    print(result.run_times_ms)
"""

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from . import buffers
from .adapters.base import KernelAdapter
from .adapters.registry import AdapterRegistry, get_registry
from .backends import create_backend
from .backends.base import CompileFlags, ExecutionBackend
from .context import ExecutionContext, PreprocessorDefinitions
from .errors import AdapterError, ConfigurationError, KernelLaunchError, ValidationError
from .files import read_kernel_source, write_ir_file
from .launch_config import LaunchConfiguration
from .options import RunOptions
from .types import Ecosystem

logger = logging.getLogger("kernel_runner.runner")

BackendFactory = Callable[[RunOptions], ExecutionBackend]


@dataclass
class RunResult:
    """Outcome of a kernel run."""

    kernel_key: str
    compiled_ir: str = ""
    launch_config: Optional[LaunchConfiguration] = None
    run_times_ms: list[float] = field(default_factory=list)
    output_buffers: dict[str, bytes] = field(default_factory=dict)
    written_files: list[str] = field(default_factory=list)


def default_backend_factory(options: RunOptions) -> ExecutionBackend:
    return create_backend(
        options.ecosystem,
        device_id=options.device_id,
        platform_id=options.platform_id,
        require_ir=options.write_ir,
    )


def finalize_kernel_identity(options: RunOptions, adapter: KernelAdapter) -> RunOptions:
    """
    Fill in the kernel function name (from the adapter), the source
    file (``<function>.<cu|cl>`` in the sources directory) and the IR
    output filename (``<function>.<ptx|clbin>``) where not given.

    Raises:
        AdapterError: If the adapter's function name is not an identifier.
        ConfigurationError: If the IR destination exists and may not be
            overwritten.
    """
    kernel = options.kernel
    if not kernel.function_name:
        function_name = adapter.kernel_function_name()
        if not function_name.isidentifier():
            raise AdapterError(
                f"The registered kernel function name for adapter '{kernel.key}' is invalid: '{function_name}'",
                adapter_key=kernel.key,
            )
        kernel = replace(kernel, function_name=function_name)
    if not kernel.source_file:
        source_file = f"{kernel.function_name}.{options.ecosystem.source_suffix}"
        kernel = replace(kernel, source_file=os.path.join(options.kernel_sources_dir, source_file))
    options = replace(options, kernel=kernel)

    if options.write_ir and not options.ir_output_file:
        options = replace(options, ir_output_file=f"{kernel.function_name}.{options.ecosystem.ir_extension}")
        if os.path.exists(options.ir_output_file) and not options.overwrite_allowed:
            raise ConfigurationError(
                f"IR output file {options.ir_output_file} exists, and overwrite is not allowed.",
                option="ptx-output-file",
                suggestions=["Pass --overwrite-allowed to replace it"],
            )
    return options


def collect_include_paths(options: RunOptions, backend: ExecutionBackend) -> list[str]:
    """
    Include search paths, in order: the kernel source's directory, the
    user's paths, then the backend's defaults.
    """
    source_dir = os.path.dirname(options.kernel.source_file or "") or "."
    paths = [source_dir, *options.include_paths, *backend.default_include_paths()]
    for path in paths:
        logger.debug(f"Include path: {path}")
    return paths


def finalize_preprocessor_definitions(context: ExecutionContext) -> None:
    """
    Finalize the preprocessor definitions and check that the adapter's
    required terms are all defined.

    Raises:
        ValidationError: If a required definition is missing.
    """
    logger.debug("Finalizing preprocessor definitions.")
    options = context.options
    context.definitions = PreprocessorDefinitions.finalize(
        options.preprocessor_definitions,
        options.preprocessor_value_definitions,
    )
    defined = context.definitions.defined_terms
    missing = [t for t in context.adapter.required_preprocessor_definition_terms() if t not in defined]
    if missing:
        raise ValidationError(
            "The following preprocessor definitions must be specified, but have not been",
            missing=missing,
        )


def parse_scalar_arguments(context: ExecutionContext) -> None:
    """
    Parse the scalar argument strings which were given into typed values.

    Missing required scalars are reported with the other inputs, after
    the build, so compiling alone needs none of them.

    Raises:
        ConfigurationError: If a value does not parse.
    """
    adapter = context.adapter
    raw_arguments = context.options.scalar_arguments
    for parameter in adapter.scalar_parameter_details():
        raw = raw_arguments.get(parameter.name)
        if raw is None:
            continue
        context.scalars.raw[parameter.name] = raw
        context.scalars.typed[parameter.name] = adapter.parse_scalar_argument(parameter.name, raw)
        logger.debug(f"Scalar argument {parameter.name} = {context.scalars.typed[parameter.name]}")


def build_kernel(context: ExecutionContext) -> None:
    options = context.options
    kernel = options.kernel
    logger.debug(f"Reading the kernel from {kernel.source_file}")
    source = read_kernel_source(kernel.source_file)

    flags = CompileFlags(
        debug=options.debug_mode,
        line_info=options.generate_line_info,
        language_standard=options.language_standard.lower() if options.language_standard else None,
    )
    context.built_kernel = context.backend.build(
        source,
        source_name=kernel.source_file,
        function_name=kernel.function_name,
        flags=flags,
        include_paths=context.include_paths,
        preinclude_files=options.preinclude_files,
        valueless_definitions=context.definitions.valueless,
        valued_definitions=context.definitions.valued,
    )
    context.compiled_ir = context.built_kernel.ir
    logger.info(f"Kernel {kernel.key} built successfully.")


def generate_additional_scalar_arguments(context: ExecutionContext) -> None:
    generated = context.adapter.generate_additional_scalar_arguments(context)
    for name, value in generated.items():
        logger.debug(f"Generated scalar argument {name} = {value}")
    context.scalars.typed.update(generated)


def configure_launch(context: ExecutionContext) -> LaunchConfiguration:
    logger.debug("Creating a launch configuration.")
    components = context.adapter.make_launch_config(context)
    launch_config = components.deduce_missing()
    include_shared_memory = context.ecosystem is Ecosystem.CUDA
    for line in launch_config.describe(include_shared_memory=include_shared_memory):
        logger.info(line)
    return launch_config


def perform_single_run(context: ExecutionContext, run_index: int) -> Optional[float]:
    """
    One kernel run: optional zero-fill, inout reset, launch, synchronize.

    Returns:
        The measured kernel time in milliseconds, when timing.

    Raises:
        KernelLaunchError: If the launch fails; the error names the run.
    """
    options = context.options
    logger.info(f"Preparing for kernel run {run_index + 1} of {options.num_runs} (1-based).")
    if options.zero_output_buffers:
        buffers.zero_output_buffers(context)
    buffers.reset_inout_working_copies(context)

    try:
        elapsed_ms = context.backend.launch(
            context.built_kernel,
            context.arguments,
            context.launch_config,
            time_execution=options.time_execution,
        )
    except KernelLaunchError as e:
        raise KernelLaunchError(e.reason, kernel_name=options.kernel.key, run_index=run_index) from e
    context.backend.synchronize()
    if elapsed_ms is not None:
        logger.info(
            f"Event-measured time of run {run_index + 1} of kernel {options.kernel.key}: {elapsed_ms:.5f} ms"
        )
    logger.debug("Kernel execution run complete.")
    return elapsed_ms


def run_kernel(
    options: RunOptions,
    backend_factory: BackendFactory = default_backend_factory,
    registry: Optional[AdapterRegistry] = None,
) -> RunResult:
    """
    Build and run a kernel according to ``options``.

    Args:
        options: Options of the run.
        backend_factory: Creates the (uninitialized) execution backend.
        registry: Adapter registry (default: the process-wide one).

    Returns:
        RunResult with the IR, launch configuration, timings and outputs.

    Raises:
        KernelRunnerError: On any failure; backend resources are
            released before the error propagates.
    """
    options.validate()
    registry = registry or get_registry()

    # Step 0: nothing below touches a device
    adapter = registry.produce(options.kernel.key)
    input_filenames, output_filenames = buffers.resolve_buffer_filenames(adapter, options)
    options = finalize_kernel_identity(options, adapter)
    result = RunResult(kernel_key=options.kernel.key)

    # Step 1
    logger.debug(f"Using the {options.ecosystem.display_name} execution ecosystem.")
    backend = backend_factory(options)
    context = None
    try:
        backend.initialize()

        # Step 2
        context = ExecutionContext(options=options, backend=backend, adapter=adapter)
        context.buffers.input_filenames.update(input_filenames)
        context.buffers.output_filenames.update(output_filenames)

        # Step 3
        context.include_paths = collect_include_paths(options, backend)
        finalize_preprocessor_definitions(context)
        parse_scalar_arguments(context)

        # Step 4
        build_kernel(context)
        result.compiled_ir = context.compiled_ir

        # Step 5
        if options.write_ir:
            write_ir_file(context.compiled_ir, options.ir_output_file)
            result.written_files.append(options.ir_output_file)
        if options.compile_only:
            logger.info("Compile-only mode: not running the kernel.")
            return result

        # Step 6
        buffers.read_input_buffers(context)
        buffers.verify_input_arguments(context)

        # Step 7
        buffers.create_host_output_buffers(context)
        buffers.create_device_buffers(context)

        # Step 8
        generate_additional_scalar_arguments(context)

        # Step 9
        buffers.copy_input_buffers_to_device(context)

        # Step 10
        logger.debug("Marshaling kernel arguments.")
        context.arguments = adapter.marshal_kernel_arguments(context)
        context.launch_config = configure_launch(context)
        result.launch_config = context.launch_config

        # Step 11
        for run_index in range(options.num_runs):
            elapsed_ms = perform_single_run(context, run_index)
            if elapsed_ms is not None:
                result.run_times_ms.append(elapsed_ms)

        # Step 12
        if options.write_output_buffers_to_files:
            buffers.copy_outputs_from_device(context)
            result.output_buffers = {name: bytes(b) for name, b in context.buffers.host_outputs.items()}
            result.written_files.extend(buffers.write_buffers_to_files(context))
        return result
    finally:
        # Step 13
        backend.release(context.built_kernel if context else None)
