# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Buffer Lifecycle Manager

Moves kernel buffers through their life in a run:

    files -> host inputs -> device inputs
                            device outputs (zeroed / reset) -> host outputs -> files

Inout buffers get two device allocations: a pristine copy in the device
input map, written once from the host, and a working copy in the device
output map, which the kernel modifies and which is restored from the
pristine copy before every run. Any failure here is fatal to the run.
"""

import logging
import os
from typing import TYPE_CHECKING

from .errors import AdapterError, BufferLifecycleError, ConfigurationError, ValidationError
from .files import read_buffer_file, resolve_path, write_buffer_file
from .log import TRACE
from .types import ParameterDirection

if TYPE_CHECKING:
    from .adapters.base import KernelAdapter
    from .context import ExecutionContext
    from .options import RunOptions

logger = logging.getLogger("kernel_runner.buffers")

_INPUT = ParameterDirection.INPUT
_OUTPUT = ParameterDirection.OUTPUT
_INOUT = ParameterDirection.INOUT


def resolve_buffer_filenames(
    adapter: "KernelAdapter",
    options: "RunOptions",
) -> tuple[dict[str, str], dict[str, str]]:
    """
    Filenames of the input and output buffer files.

    Input and inout buffers default to a file named after the buffer;
    output buffers default to ``<name>.out``. The output of an inout
    buffer is always written to ``<name>.out``. No output filenames are
    resolved when outputs are not to be written.

    Raises:
        ConfigurationError: If an output file exists and overwriting it
            is not allowed.
    """
    inputs = {}
    for name in adapter.buffer_names(_INPUT, _INOUT):
        if name not in options.buffer_filenames:
            logger.debug(f"Filename for input buffer {name} not specified; defaulting to using its name.")
        inputs[name] = options.buffer_filenames.get(name, name)
        logger.log(TRACE, f"Filename for input buffer {name}: {inputs[name]}")

    outputs = {}
    if not options.write_output_buffers_to_files:
        return inputs, outputs

    for name in adapter.buffer_names(_OUTPUT):
        if name in options.buffer_filenames:
            outputs[name] = options.buffer_filenames[name]
        else:
            logger.debug(f'Filename for output buffer {name} not specified; defaulting to: "{name}.out".')
            outputs[name] = f"{name}.out"
    for name in adapter.buffer_names(_INOUT):
        outputs[name] = f"{name}.out"

    for name, filename in outputs.items():
        destination = resolve_path(options.output_buffer_dir, filename)
        if os.path.exists(destination):
            if not options.overwrite_allowed:
                raise ConfigurationError(
                    f"Writing the contents of output buffer {name} would overwrite an existing file: {destination}",
                    option=name,
                    suggestions=["Pass --overwrite-allowed to replace existing output files"],
                )
            logger.info(f"Output buffer {name} will overwrite {destination}")
        logger.log(TRACE, f"Filename for output buffer {name}: {destination}")
    return inputs, outputs


def read_input_buffers(context: "ExecutionContext") -> None:
    """Read every input and inout buffer from its file."""
    logger.debug("Reading input buffers.")
    maps = context.buffers
    for name in context.adapter.buffer_names(_INPUT, _INOUT):
        filename = maps.input_filenames.get(name, name)
        path = resolve_path(context.options.input_buffer_dir, filename)
        maps.host_inputs[name] = read_buffer_file(name, path)


def verify_input_arguments(context: "ExecutionContext") -> None:
    """
    Check that all inputs are present and acceptable to the adapter.

    Raises:
        ValidationError: If a buffer or required scalar is missing, or
            an adapter validity check fails.
    """
    adapter = context.adapter
    missing_buffers = [n for n in adapter.buffer_names(_INPUT, _INOUT) if n not in context.buffers.host_inputs]
    if missing_buffers:
        raise ValidationError("Input buffers were not provided", missing=missing_buffers)

    missing_scalars = [n for n in adapter.required_scalar_names() if n not in context.scalars.typed]
    if missing_scalars:
        raise ValidationError("Required scalar arguments were not specified", missing=missing_scalars)

    if not adapter.input_sizes_are_valid(context):
        raise ValidationError(f"Input buffer sizes are invalid for kernel {adapter.key()}")
    if not adapter.extra_validity_checks(context):
        raise ValidationError(f"Inputs failed the validity checks of kernel {adapter.key()}")
    logger.debug("Input arguments verified.")


def create_host_output_buffers(context: "ExecutionContext") -> None:
    """
    Allocate a zeroed host buffer for every output and inout buffer.

    Raises:
        AdapterError: If the adapter gives no size for one of them.
    """
    adapter = context.adapter
    sizes = adapter.output_buffer_sizes(
        context.buffers.host_inputs,
        context.scalars.typed,
        context.definitions.valueless,
        context.definitions.valued,
    )
    for name in adapter.buffer_names(_OUTPUT, _INOUT):
        if name not in sizes:
            raise AdapterError(f"No size calculated for output buffer '{name}'", adapter_key=adapter.key())
        context.buffers.host_outputs[name] = bytearray(sizes[name])
        logger.debug(f"Created host-side output buffer '{name}' of size {sizes[name]} bytes")


def create_device_buffers(context: "ExecutionContext") -> None:
    """
    Allocate one device buffer per host buffer, of the same size.

    Inout buffers appear in both host maps and so get two allocations.
    """
    backend = context.backend
    maps = context.buffers
    for host_map, device_map in ((maps.host_inputs, maps.device_inputs), (maps.host_outputs, maps.device_outputs)):
        for name, host_buffer in host_map.items():
            device_map[name] = backend.allocate(name, len(host_buffer))
    logger.debug(
        f"Created {len(maps.device_inputs)} input and {len(maps.device_outputs)} output device-side buffers"
    )


def _device_buffer(device_map: dict, name: str, expected_size: int):
    buffer = device_map.get(name)
    if buffer is None:
        raise BufferLifecycleError("No device-side buffer was created", buffer_name=name)
    if buffer.size != expected_size:
        raise BufferLifecycleError(
            f"Device-side buffer size {buffer.size} differs from host-side size {expected_size}",
            buffer_name=name,
            size_bytes=buffer.size,
        )
    return buffer


def copy_input_buffers_to_device(context: "ExecutionContext") -> None:
    """Copy input buffers, and the pristine copies of inout buffers, to the device."""
    maps = context.buffers
    for name, host_buffer in maps.host_inputs.items():
        device_buffer = _device_buffer(maps.device_inputs, name, len(host_buffer))
        context.backend.copy_to_device(device_buffer, host_buffer)
        logger.log(TRACE, f"Copied {len(host_buffer)} bytes of buffer '{name}' to the device")
    context.backend.synchronize()
    logger.debug("Input buffers copied to device.")


def reset_inout_working_copies(context: "ExecutionContext") -> None:
    """Restore every inout working copy from its pristine copy."""
    maps = context.buffers
    names = context.adapter.buffer_names(_INOUT)
    if not names:
        return
    for name in names:
        pristine = maps.device_inputs.get(name)
        if pristine is None:
            raise BufferLifecycleError("No pristine device-side copy of inout buffer", buffer_name=name)
        working = _device_buffer(maps.device_outputs, name, pristine.size)
        context.backend.copy_on_device(working, pristine)
        logger.log(TRACE, f"Reset working copy of inout buffer '{name}'")
    context.backend.synchronize()


def zero_output_buffers(context: "ExecutionContext") -> None:
    """Zero every output-only device buffer; inout buffers are left alone."""
    maps = context.buffers
    names = context.adapter.buffer_names(_OUTPUT)
    if not names:
        logger.debug("There are no output-only buffers to fill with zeros.")
        return
    for name in names:
        buffer = maps.device_outputs.get(name)
        if buffer is None:
            raise BufferLifecycleError("No device-side output buffer to zero", buffer_name=name)
        context.backend.fill_zero(buffer)
    context.backend.synchronize()
    logger.log(TRACE, "Output buffers zeroed.")


def copy_outputs_from_device(context: "ExecutionContext") -> None:
    """Copy every output buffer (and inout working copy) back to the host."""
    maps = context.buffers
    for name, host_buffer in maps.host_outputs.items():
        device_buffer = _device_buffer(maps.device_outputs, name, len(host_buffer))
        context.backend.copy_to_host(host_buffer, device_buffer)
    context.backend.synchronize()
    logger.debug("Output buffers copied from device.")


def write_buffers_to_files(context: "ExecutionContext") -> list[str]:
    """
    Write every output buffer to its file.

    Returns:
        The paths written.
    """
    logger.info("Writing output buffers to files.")
    maps = context.buffers
    written = []
    for name, host_buffer in maps.host_outputs.items():
        filename = maps.output_filenames.get(name)
        if filename is None:
            raise BufferLifecycleError("No output filename was resolved", buffer_name=name)
        path = resolve_path(context.options.output_buffer_dir, filename)
        write_buffer_file(name, host_buffer, path)
        written.append(path)
    return written
