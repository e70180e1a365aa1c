# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for the buffer lifecycle: filenames, host and device buffers,
inout pristine/working copies, and file I/O.
"""

import os

import pytest

from kernel_runner import buffers
from kernel_runner.adapters import ScaleInplace, VectorAdd
from kernel_runner.adapters.base import KernelAdapter, buffer_parameter, size_of_input_buffer
from kernel_runner.context import ExecutionContext
from kernel_runner.errors import BufferIOError, BufferLifecycleError, ConfigurationError, ValidationError
from kernel_runner.files import read_buffer_file, resolve_path, write_buffer_file
from kernel_runner.options import KernelIdentity, RunOptions
from kernel_runner.types import ParameterDirection, ScalarType, ScalarValue


class Accumulate(KernelAdapter):
    """Adapter with both an inout and an output buffer."""

    KEY = "accumulate"
    PARAMETERS = (
        buffer_parameter("seed", ParameterDirection.INOUT, size_calculator=size_of_input_buffer("seed")),
        buffer_parameter("result", ParameterDirection.OUTPUT, size_calculator=size_of_input_buffer("seed")),
    )

    def marshal_kernel_arguments_inner(self, arguments, context):
        pass


def make_context(adapter, backend, **option_kwargs):
    options = RunOptions(kernel=KernelIdentity(adapter.key()), **option_kwargs)
    return ExecutionContext(options=options, backend=backend, adapter=adapter)


class TestResolveFilenames:
    """Input and output buffer filenames."""

    def test_defaults(self):
        options = RunOptions(kernel=KernelIdentity("vector_add"))
        inputs, outputs = buffers.resolve_buffer_filenames(VectorAdd(), options)
        assert inputs == {"a": "a", "b": "b"}
        assert outputs == {"c": "c.out"}

    def test_explicit_filenames(self):
        options = RunOptions(
            kernel=KernelIdentity("vector_add"),
            buffer_filenames={"a": "x.bin", "c": "sum.bin"},
        )
        inputs, outputs = buffers.resolve_buffer_filenames(VectorAdd(), options)
        assert inputs == {"a": "x.bin", "b": "b"}
        assert outputs == {"c": "sum.bin"}

    def test_inout_output_is_always_dot_out(self):
        options = RunOptions(kernel=KernelIdentity("scale_inplace"), buffer_filenames={"data": "d.bin"})
        inputs, outputs = buffers.resolve_buffer_filenames(ScaleInplace(), options)
        assert inputs == {"data": "d.bin"}
        assert outputs == {"data": "data.out"}

    def test_no_outputs_when_not_writing(self):
        options = RunOptions(kernel=KernelIdentity("vector_add"), write_output_buffers_to_files=False)
        _, outputs = buffers.resolve_buffer_filenames(VectorAdd(), options)
        assert outputs == {}

    def test_existing_output_file(self, tmp_path):
        (tmp_path / "c.out").write_bytes(b"old")
        options = RunOptions(kernel=KernelIdentity("vector_add"), output_buffer_dir=str(tmp_path))
        with pytest.raises(ConfigurationError, match="would overwrite"):
            buffers.resolve_buffer_filenames(VectorAdd(), options)

        allowed = RunOptions(
            kernel=KernelIdentity("vector_add"),
            output_buffer_dir=str(tmp_path),
            overwrite_allowed=True,
        )
        _, outputs = buffers.resolve_buffer_filenames(VectorAdd(), allowed)
        assert outputs == {"c": "c.out"}


class TestHostAndDeviceBuffers:
    """Stages of the buffer lifecycle, run against the in-memory backend."""

    @pytest.fixture
    def inout_context(self, fake_backend):
        context = make_context(ScaleInplace(), fake_backend)
        context.buffers.host_inputs["data"] = bytearray(b"\x01\x02\x03\x04" * 4)
        buffers.create_host_output_buffers(context)
        buffers.create_device_buffers(context)
        return context

    def test_inout_gets_two_device_buffers(self, inout_context, fake_backend):
        maps = inout_context.buffers
        assert maps.host_outputs["data"] == bytearray(16)
        assert maps.device_inputs["data"] is not maps.device_outputs["data"]
        assert fake_backend.names("allocate") == ["data", "data"]

    def test_pristine_copy_written_once_and_working_copy_reset(self, inout_context, fake_backend):
        maps = inout_context.buffers
        buffers.copy_input_buffers_to_device(inout_context)
        assert fake_backend.names("copy_to_device") == ["data"]

        maps.device_outputs["data"].handle[:] = bytes(16)
        buffers.reset_inout_working_copies(inout_context)
        assert maps.device_outputs["data"].handle == maps.host_inputs["data"]
        assert fake_backend.names("copy_on_device") == ["data"]

    def test_zeroing_leaves_inout_buffers_alone(self, inout_context, fake_backend):
        buffers.zero_output_buffers(inout_context)
        assert fake_backend.names("fill_zero") == []

    def test_zeroing_output_buffers(self, fake_backend):
        context = make_context(VectorAdd(), fake_backend)
        context.buffers.host_inputs.update(a=bytearray(8), b=bytearray(8))
        buffers.create_host_output_buffers(context)
        buffers.create_device_buffers(context)
        context.buffers.device_outputs["c"].handle[:] = b"\xff" * 8
        buffers.zero_output_buffers(context)
        assert fake_backend.names("fill_zero") == ["c"]
        assert context.buffers.device_outputs["c"].handle == bytearray(8)

    def test_reset_is_idempotent(self, inout_context, fake_backend):
        maps = inout_context.buffers
        buffers.copy_input_buffers_to_device(inout_context)
        pristine = bytes(maps.device_inputs["data"].handle)

        maps.device_outputs["data"].handle[:] = b"\xee" * 16
        buffers.reset_inout_working_copies(inout_context)
        buffers.reset_inout_working_copies(inout_context)

        assert maps.device_outputs["data"].handle == pristine
        assert maps.device_inputs["data"].handle == pristine
        assert fake_backend.names("copy_on_device") == ["data", "data"]

    def test_zeroing_clears_outputs_but_not_inouts(self, fake_backend):
        context = make_context(Accumulate(), fake_backend)
        context.buffers.host_inputs["seed"] = bytearray(b"\x05" * 8)
        buffers.create_host_output_buffers(context)
        buffers.create_device_buffers(context)
        working = context.buffers.device_outputs
        working["seed"].handle[:] = b"\xff" * 8
        working["result"].handle[:] = b"\xff" * 8

        buffers.zero_output_buffers(context)

        assert fake_backend.names("fill_zero") == ["result"]
        assert working["result"].handle == bytearray(8)
        assert working["seed"].handle == bytearray(b"\xff" * 8)

    def test_size_mismatch(self, inout_context):
        inout_context.buffers.host_inputs["data"] = bytearray(8)
        with pytest.raises(BufferLifecycleError, match="differs from host-side size"):
            buffers.copy_input_buffers_to_device(inout_context)

    def test_missing_device_buffer(self, fake_backend):
        context = make_context(VectorAdd(), fake_backend)
        context.buffers.host_outputs["c"] = bytearray(4)
        with pytest.raises(BufferLifecycleError, match="No device-side buffer"):
            buffers.copy_outputs_from_device(context)

    def test_copy_outputs_back(self, inout_context):
        inout_context.buffers.device_outputs["data"].handle[:] = b"\x07" * 16
        buffers.copy_outputs_from_device(inout_context)
        assert inout_context.buffers.host_outputs["data"] == bytearray(b"\x07" * 16)


class TestVerifyInputs:
    def test_missing_input_buffer(self, fake_backend):
        context = make_context(VectorAdd(), fake_backend)
        context.buffers.host_inputs["a"] = bytearray(4)
        with pytest.raises(ValidationError) as exc_info:
            buffers.verify_input_arguments(context)
        assert exc_info.value.context["missing"] == "b"

    def test_missing_scalar(self, fake_backend):
        context = make_context(ScaleInplace(), fake_backend)
        context.buffers.host_inputs["data"] = bytearray(4)
        with pytest.raises(ValidationError, match="scalar"):
            buffers.verify_input_arguments(context)

    def test_adapter_rejects_sizes(self, fake_backend):
        context = make_context(VectorAdd(), fake_backend)
        context.buffers.host_inputs.update(a=bytearray(4), b=bytearray(8))
        with pytest.raises(ValidationError, match="sizes are invalid"):
            buffers.verify_input_arguments(context)

    def test_valid_inputs(self, fake_backend):
        context = make_context(ScaleInplace(), fake_backend)
        context.buffers.host_inputs["data"] = bytearray(8)
        context.scalars.typed["factor"] = ScalarValue(ScalarType.FLOAT32, 2.0)
        context.definitions.valued["BLOCK_SIZE"] = "32"
        buffers.verify_input_arguments(context)


class TestBufferFiles:
    def test_read_and_write(self, tmp_path):
        path = str(tmp_path / "buf")
        write_buffer_file("buf", bytearray(b"\x00\x01\x02"), path)
        assert read_buffer_file("buf", path) == bytearray(b"\x00\x01\x02")

    def test_read_missing(self, tmp_path):
        with pytest.raises(BufferIOError) as exc_info:
            read_buffer_file("a", str(tmp_path / "missing"))
        assert exc_info.value.path.endswith("missing")

    def test_resolve_path(self, tmp_path):
        assert resolve_path("in", "a.bin") == os.path.join("in", "a.bin")
        absolute = str(tmp_path / "a.bin")
        assert resolve_path("in", absolute) == absolute

    def test_write_buffers_to_files(self, fake_backend, tmp_path):
        context = make_context(VectorAdd(), fake_backend, output_buffer_dir=str(tmp_path))
        context.buffers.host_outputs["c"] = bytearray(b"\x05" * 4)
        context.buffers.output_filenames["c"] = "c.out"
        written = buffers.write_buffers_to_files(context)
        assert written == [os.path.join(str(tmp_path), "c.out")]
        assert (tmp_path / "c.out").read_bytes() == b"\x05" * 4
