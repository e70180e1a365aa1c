# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Kernel Runner Command Line Interface

The command line is parsed in two phases. The first phase reads the
generic options, which identify the kernel; the second adds the chosen
kernel's own options (one per buffer, scalar argument and preprocessor
definition) and parses everything again. Unrecognized options are
tolerated, so one command line keeps working while a kernel's parameters
are being edited.

Usage:
    kernel-runner --kernel-key vector_add -b 256 -o 1024 --a a.bin --b b.bin
    kernel-runner --list-kernels
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from .adapters.base import KernelAdapter
from .adapters.registry import get_registry
from .errors import ConfigurationError, KernelRunnerError
from .launch_config import Dimensions, LaunchConfigComponents, parse_dimensions
from .log import configure_logging, default_level_name
from .options import VALID_LANGUAGE_STANDARDS, KernelIdentity, RunOptions, infer_kernel_identity
from .runner import run_kernel
from .types import Ecosystem, ParameterDirection

logger = logging.getLogger("kernel_runner.cli")

PROG = "kernel-runner"


def _dimensions(text: str) -> Dimensions:
    try:
        return parse_dimensions(text)
    except ConfigurationError as e:
        raise argparse.ArgumentTypeError(e.message) from None


def build_generic_parser() -> argparse.ArgumentParser:
    """Parser of the options common to all kernels."""
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="A runner for dynamically-compiled CUDA and OpenCL kernels",
        add_help=False,
        allow_abbrev=False,
    )
    parser.add_argument("-h", "--help", action="store_true", help="Print usage information")

    logging_group = parser.add_argument_group("logging")
    logging_group.add_argument(
        "-l",
        "--log-level",
        default=default_level_name(),
        help="Set logging level: trace, debug, info, warning, error, critical or off (default: warning)",
    )
    logging_group.add_argument(
        "--log-flush-threshold",
        default="info",
        help="Set the threshold level at and above which the log is flushed on each message (default: info)",
    )

    ecosystem_group = parser.add_argument_group("execution ecosystem")
    ecosystem = ecosystem_group.add_mutually_exclusive_group()
    ecosystem.add_argument("--cuda", action="store_true", help="Use CUDA (the default)")
    ecosystem.add_argument("--opencl", action="store_true", help="Use OpenCL")
    ecosystem_group.add_argument(
        "-p", "--platform-id", type=int, help="Use the OpenCL platform with the specified index"
    )
    ecosystem_group.add_argument("-d", "--device", type=int, default=0, help="Device index (default: 0)")

    kernel_group = parser.add_argument_group("kernel identification")
    kernel_group.add_argument(
        "-s",
        "--kernel-source",
        help="Path to the source file with the kernel function; may be absolute or relative to the sources dir",
    )
    kernel_group.add_argument(
        "-k",
        "--kernel-function",
        help="Name of the function within the source file to run as a kernel (if different than the key)",
    )
    kernel_group.add_argument(
        "-K", "--kernel-key", help="The key identifying the kernel among all registered runnable kernels"
    )
    kernel_group.add_argument(
        "-L", "--list-kernels", action="store_true", help="List the keys of the kernels which may be run"
    )

    build_group = parser.add_argument_group("compilation")
    build_group.add_argument(
        "-D",
        "--define",
        action="append",
        default=[],
        metavar="DEFINITION[=VALUE]",
        help="Set a preprocessor definition (can be used repeatedly)",
    )
    build_group.add_argument(
        "-c", "--compile-only", action="store_true", help="Compile the kernel, but don't actually run it"
    )
    build_group.add_argument(
        "-G", "--debug-mode", action="store_true", help="Compile the kernel in debug mode (no optimizations)"
    )
    build_group.add_argument(
        "-P",
        "--write-ptx",
        action="store_true",
        help="Write the intermediate representation code (e.g. PTX) resulting from the kernel compilation",
    )
    build_group.add_argument(
        "--generate-line-info",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Add source line information to the intermediate representation code",
    )
    build_group.add_argument("--ptx-output-file", help="File to which to write the kernel's intermediate representation")
    build_group.add_argument(
        "-i",
        "--include",
        action="append",
        default=[],
        help="Include a specific file into the kernel's translation unit (can be used repeatedly)",
    )
    build_group.add_argument(
        "-I",
        "--include-path",
        action="append",
        default=[],
        help="Add a directory to the header search paths (can be used repeatedly)",
    )
    build_group.add_argument(
        "--language-standard",
        help=f"Language standard for CUDA compilation ({', '.join(VALID_LANGUAGE_STANDARDS)})",
    )

    launch_group = parser.add_argument_group("launch configuration")
    launch_group.add_argument(
        "-b",
        "--block-dimensions",
        type=_dimensions,
        help="Block dimensions in threads (OpenCL: local work size); a comma-separated list",
    )
    launch_group.add_argument(
        "-g", "--grid-dimensions", type=_dimensions, help="Grid dimensions in blocks; a comma-separated list"
    )
    launch_group.add_argument(
        "-o",
        "--overall-grid-dimensions",
        type=_dimensions,
        help="Grid dimensions in threads (OpenCL: global work size); a comma-separated list",
    )
    launch_group.add_argument(
        "-S", "--dynamic-shared-memory-size", type=int, help="Force a specific amount of dynamic shared memory"
    )

    run_group = parser.add_argument_group("execution and output")
    run_group.add_argument(
        "-n", "--num-runs", type=int, default=1, help="Number of times to run the compiled kernel (default: 1)"
    )
    run_group.add_argument(
        "-z",
        "--zero-output-buffers",
        action="store_true",
        help="Set the contents of output(-only) buffers to all-zeros before each run",
    )
    run_group.add_argument(
        "-t", "--time-execution", action="store_true", help="Use events to time each run of the kernel"
    )
    run_group.add_argument(
        "-w",
        "--write-output",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Write output buffers to files",
    )
    run_group.add_argument(
        "-W",
        "--overwrite-allowed",
        action="store_true",
        help="Overwrite the files for buffer and/or IR output if they already exist",
    )
    run_group.add_argument("--input-buffer-dir", default=".", help="Base location for locating input buffers")
    run_group.add_argument("--output-buffer-dir", default=".", help="Base location for writing output buffers")
    run_group.add_argument("--kernel-sources-dir", default=".", help="Base location for locating kernel source files")
    return parser


def _kernel_option_dest(kind: str, name: str) -> str:
    return f"kernel_{kind}_{name}"


def build_kernel_parser(adapter_class: type[KernelAdapter]) -> argparse.ArgumentParser:
    """Generic parser extended with one kernel's buffer, scalar and definition options."""
    parser = build_generic_parser()
    adapter = adapter_class()
    key = adapter.key()
    for direction in ParameterDirection:
        names = adapter.buffer_names(direction)
        if not names:
            continue
        group = parser.add_argument_group(f"{key} ({direction.value} buffers)")
        for details in adapter.buffer_details():
            if details.direction is direction:
                group.add_argument(
                    f"--{details.name}",
                    dest=_kernel_option_dest("buffer", details.name),
                    metavar="FILENAME",
                    help=details.description,
                )
    scalars = adapter.scalar_parameter_details()
    if scalars:
        group = parser.add_argument_group(f"{key} (scalar arguments)")
        for details in scalars:
            required = " (required)" if details.required else ""
            group.add_argument(
                f"--{details.name}",
                dest=_kernel_option_dest("scalar", details.name),
                metavar=details.scalar_type.value.upper() if details.scalar_type else "VALUE",
                help=f"{details.description}{required}",
            )
    definitions = adapter.preprocessor_definition_details()
    if definitions:
        group = parser.add_argument_group(f"{key} (preprocessor definitions)")
        for details in definitions:
            required = " (required)" if details.required else ""
            group.add_argument(
                f"--{details.name}",
                dest=_kernel_option_dest("definition", details.name),
                metavar="VALUE",
                help=f"{details.description}{required}",
            )
    return parser


def _kernel_values(args: argparse.Namespace, kind: str, names: Sequence[str]) -> dict[str, str]:
    values = {}
    for name in names:
        value = getattr(args, _kernel_option_dest(kind, name), None)
        if value is not None:
            values[name] = value
    return values


def _kernel_identity(args: argparse.Namespace) -> KernelIdentity:
    return infer_kernel_identity(
        key=args.kernel_key,
        function_name=args.kernel_function,
        source_file=args.kernel_source,
        ecosystem=Ecosystem.OPENCL if args.opencl else Ecosystem.CUDA,
        kernel_sources_dir=args.kernel_sources_dir,
    )


def options_from_arguments(
    args: argparse.Namespace,
    adapter: KernelAdapter,
    kernel: Optional[KernelIdentity] = None,
) -> RunOptions:
    """Assemble RunOptions from fully parsed (generic and kernel) arguments."""
    ecosystem = Ecosystem.OPENCL if args.opencl else Ecosystem.CUDA
    kernel = kernel or _kernel_identity(args)
    forced = LaunchConfigComponents.from_forced(
        block=args.block_dimensions,
        grid=args.grid_dimensions,
        overall=args.overall_grid_dimensions,
        dynamic_shared_memory_size=args.dynamic_shared_memory_size,
    )
    return RunOptions(
        kernel=kernel,
        ecosystem=ecosystem,
        platform_id=args.platform_id,
        device_id=args.device,
        num_runs=args.num_runs,
        compile_only=args.compile_only,
        debug_mode=args.debug_mode,
        generate_line_info=args.generate_line_info,
        language_standard=args.language_standard,
        write_ir=args.write_ptx,
        ir_output_file=args.ptx_output_file,
        write_output_buffers_to_files=args.write_output,
        overwrite_allowed=args.overwrite_allowed,
        zero_output_buffers=args.zero_output_buffers,
        time_execution=args.time_execution,
        preprocessor_definitions=tuple(args.define),
        preprocessor_value_definitions=_kernel_values(
            args, "definition", [d.name for d in adapter.preprocessor_definition_details()]
        ),
        include_paths=tuple(args.include_path),
        preinclude_files=tuple(args.include),
        forced_launch_config=forced,
        input_buffer_dir=args.input_buffer_dir,
        output_buffer_dir=args.output_buffer_dir,
        kernel_sources_dir=args.kernel_sources_dir,
        buffer_filenames=_kernel_values(args, "buffer", [b.name for b in adapter.buffer_details()]),
        scalar_arguments=_kernel_values(args, "scalar", [s.name for s in adapter.scalar_parameter_details()]),
    )


def _run(argv: Sequence[str]) -> int:
    generic_parser = build_generic_parser()
    args, _ = generic_parser.parse_known_args(argv)
    configure_logging(args.log_level, args.log_flush_threshold)
    logger.debug("Parsed the command line for non-kernel-specific options.")

    registry = get_registry()
    if args.list_kernels:
        for key in registry.keys():
            print(key)
        return 0

    if not (args.kernel_key or args.kernel_function or args.kernel_source):
        if args.help:
            print(generic_parser.format_help())
            return 0
        print(generic_parser.format_help(), file=sys.stderr)
        raise ConfigurationError(
            "You must specify a kernel key, or otherwise provide enough information "
            "to determine the key, filename and name of kernel function"
        )

    try:
        identity = _kernel_identity(args)
        adapter_class = registry.get_class(identity.key)
    except ConfigurationError:
        if args.help:
            print(generic_parser.format_help())
            return 0
        raise

    logger.debug(f"Parsing the command line for kernel-specific options of {identity.key}.")
    kernel_parser = build_kernel_parser(adapter_class)
    args, unrecognized = kernel_parser.parse_known_args(argv)
    if unrecognized:
        logger.debug(f"Ignoring unrecognized command-line arguments: {' '.join(unrecognized)}")
    if args.help:
        print(kernel_parser.format_help())
        return 0

    options = options_from_arguments(args, adapter_class(), identity)
    result = run_kernel(options)
    if len(result.run_times_ms) > 1:
        mean_ms = sum(result.run_times_ms) / len(result.run_times_ms)
        logger.info(f"Mean kernel time over {len(result.run_times_ms)} runs: {mean_ms:.5f} ms")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the kernel runner CLI."""
    if argv is None:
        argv = sys.argv[1:]
    configure_logging(level="warning")
    try:
        return _run(list(argv))
    except KernelRunnerError as e:
        logger.critical(str(e))
        return e.exit_code


if __name__ == "__main__":
    sys.exit(main())
