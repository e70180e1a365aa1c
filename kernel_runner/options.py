# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Run Options

The immutable option set of one kernel run. The command-line front end
populates it, but it can equally be built directly:

    from kernel_runner.options import KernelIdentity, RunOptions

    options = RunOptions(kernel=KernelIdentity("vector_add"), num_runs=3)
    options.validate()

Options are never mutated after validation; finalized values (such as
the kernel function name supplied by the adapter) are filled in with
``dataclasses.replace``.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .errors import ConfigurationError
from .launch_config import LaunchConfigComponents
from .types import Ecosystem

logger = logging.getLogger("kernel_runner.options")

VALID_LANGUAGE_STANDARDS = ("c++11", "c++14", "c++17")

# Characters which may not appear in a function or file name derived from a key
_KEY_SEPARATORS = "/-;.[]{}(),"


def clip_key(key: str) -> str:
    """The part of a kernel key after its last separator character."""
    last = max(key.rfind(c) for c in _KEY_SEPARATORS)
    return key[last + 1:]


@dataclass(frozen=True)
class KernelIdentity:
    """
    Identifies the kernel to run.

    Attributes:
        key: Registry key of the kernel adapter.
        function_name: Name of the kernel function; None until finalized
            from the adapter.
        source_file: Path of the kernel source file.
    """

    key: str
    function_name: Optional[str] = None
    source_file: Optional[str] = None


def infer_kernel_identity(
    key: Optional[str] = None,
    function_name: Optional[str] = None,
    source_file: Optional[str] = None,
    ecosystem: Ecosystem = Ecosystem.CUDA,
    kernel_sources_dir: str = ".",
) -> KernelIdentity:
    """
    Complete a partially specified kernel identity.

    The key defaults to the source file's stem, else to the function
    name. The function name may be inferred from the source file stem
    when no key was given. The source file defaults to
    ``<function name or clipped key>.<cu|cl>`` in the sources directory,
    and must then exist.

    Raises:
        ConfigurationError: If nothing identifies the kernel, a given
            value is invalid, or the inferred source file is missing.
    """
    if not (key or function_name or source_file):
        raise ConfigurationError(
            "You must specify a kernel key, or otherwise provide enough information "
            "to determine the key, filename and name of kernel function",
            suggestions=["Use --kernel-key, --kernel-function or --kernel-source"],
        )
    if key is not None and not key:
        raise ConfigurationError("Kernel key may not be empty.", option="kernel-key")
    if function_name is not None and not function_name.isidentifier():
        raise ConfigurationError(
            "Function name must be a valid identifier.",
            option="kernel-function",
            value=function_name,
        )

    clipped_key = clip_key(key) if key else ""
    source_stem = os.path.splitext(os.path.basename(source_file))[0] if source_file else ""

    if not function_name and source_file and not key and source_stem.isidentifier():
        function_name = source_stem
        logger.info(f"Inferring the kernel function name from the kernel source filename: '{function_name}'")

    if not key:
        if source_file:
            key = source_stem
        else:
            key = function_name
            logger.info(f"Inferring the kernel key from the kernel function name: '{key}'")
    logger.debug(f"Using kernel key: {key}")

    got_source_file = source_file is not None
    if not got_source_file:
        source_file = f"{function_name or clipped_key}.{ecosystem.source_suffix}"
    source_path = os.path.join(kernel_sources_dir, source_file)
    if not got_source_file and not os.path.exists(source_path):
        raise ConfigurationError(
            f"No source file specified, and inferred source file path does not exist: {source_path}",
            option="kernel-source",
        )
    logger.debug(f"Resolved kernel source file path: {source_path}")

    return KernelIdentity(key=key, function_name=function_name, source_file=source_path)


@dataclass(frozen=True)
class RunOptions:
    """All options of a single kernel run."""

    kernel: KernelIdentity
    ecosystem: Ecosystem = Ecosystem.CUDA
    platform_id: Optional[int] = None
    device_id: int = 0
    num_runs: int = 1

    compile_only: bool = False
    debug_mode: bool = False
    generate_line_info: bool = True
    language_standard: Optional[str] = None
    write_ir: bool = False
    ir_output_file: Optional[str] = None

    write_output_buffers_to_files: bool = True
    overwrite_allowed: bool = False
    zero_output_buffers: bool = False
    time_execution: bool = False

    # Raw -D terms: "TERM" or "TERM=VALUE"
    preprocessor_definitions: tuple[str, ...] = ()
    # Definitions given through kernel-specific options
    preprocessor_value_definitions: Mapping[str, str] = field(default_factory=dict)
    include_paths: tuple[str, ...] = ()
    preinclude_files: tuple[str, ...] = ()

    forced_launch_config: LaunchConfigComponents = field(default_factory=LaunchConfigComponents)

    input_buffer_dir: str = "."
    output_buffer_dir: str = "."
    kernel_sources_dir: str = "."

    # Per-buffer filenames and raw scalar strings from kernel-specific options
    buffer_filenames: Mapping[str, str] = field(default_factory=dict)
    scalar_arguments: Mapping[str, str] = field(default_factory=dict)

    def validate(self) -> None:
        """
        Check option values which need no kernel adapter.

        Raises:
            ConfigurationError: On the first invalid value.
        """
        if self.num_runs <= 0:
            raise ConfigurationError(
                f"Number of runs {self.num_runs} is not a positive integer",
                option="num-runs",
                value=str(self.num_runs),
            )
        if self.device_id < 0:
            raise ConfigurationError(
                "Please specify a non-negative device index",
                option="device",
                value=str(self.device_id),
            )
        if self.platform_id is not None:
            if self.ecosystem is not Ecosystem.OPENCL:
                raise ConfigurationError(
                    "CUDA does not support multiple per-machine platforms; "
                    "thus any 'platform-id' value is unacceptable",
                    option="platform-id",
                    value=str(self.platform_id),
                )
            if self.platform_id < 0:
                raise ConfigurationError(
                    "Please specify a non-negative platform index",
                    option="platform-id",
                    value=str(self.platform_id),
                )
        if self.language_standard is not None and self.language_standard.lower() not in VALID_LANGUAGE_STANDARDS:
            raise ConfigurationError(
                f"Unsupported language standard for kernel compilation: {self.language_standard}",
                option="language-standard",
                value=self.language_standard,
                suggestions=[f"Use one of: {', '.join(VALID_LANGUAGE_STANDARDS)}"],
            )
        for option, path in (
            ("input-buffer-dir", self.input_buffer_dir),
            ("output-buffer-dir", self.output_buffer_dir),
            ("kernel-sources-dir", self.kernel_sources_dir),
        ):
            if not os.path.exists(path):
                raise ConfigurationError(f"No such directory {path}", option=option)
            if not os.path.isdir(path):
                raise ConfigurationError(f"{path} is not a directory.", option=option)
        if self.write_ir and self.ir_output_file and os.path.exists(self.ir_output_file):
            if not self.overwrite_allowed:
                raise ConfigurationError(
                    f"Specified IR output file {self.ir_output_file} exists, and overwrite is not allowed.",
                    option="ptx-output-file",
                    suggestions=["Pass --overwrite-allowed to replace it"],
                )
