# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for run options and kernel identity inference.
"""

import os

import pytest

from kernel_runner.errors import ConfigurationError
from kernel_runner.options import KernelIdentity, RunOptions, clip_key, infer_kernel_identity
from kernel_runner.types import Ecosystem


class TestClipKey:
    def test_plain_key(self):
        assert clip_key("vector_add") == "vector_add"

    def test_clips_after_last_separator(self):
        assert clip_key("linalg/blas.saxpy") == "saxpy"
        assert clip_key("reduce(sum)") == ""
        assert clip_key("a-b;c") == "c"


class TestInferKernelIdentity:
    """Completing a partially specified kernel identity."""

    def test_nothing_given(self):
        with pytest.raises(ConfigurationError, match="must specify a kernel key"):
            infer_kernel_identity()

    def test_empty_key(self):
        with pytest.raises(ConfigurationError, match="may not be empty"):
            infer_kernel_identity(key="", function_name="f")

    def test_invalid_function_name(self):
        with pytest.raises(ConfigurationError, match="valid identifier"):
            infer_kernel_identity(key="k", function_name="not-valid")

    def test_key_from_source_stem(self, tmp_path):
        source = tmp_path / "saxpy.cu"
        source.write_text("")
        identity = infer_kernel_identity(source_file=str(source))
        assert identity.key == "saxpy"
        assert identity.function_name == "saxpy"

    def test_key_from_function_name(self, tmp_path):
        (tmp_path / "my_kernel.cl").write_text("")
        identity = infer_kernel_identity(
            function_name="my_kernel",
            ecosystem=Ecosystem.OPENCL,
            kernel_sources_dir=str(tmp_path),
        )
        assert identity.key == "my_kernel"
        assert identity.source_file == os.path.join(str(tmp_path), "my_kernel.cl")

    def test_source_from_clipped_key(self, tmp_path):
        (tmp_path / "saxpy.cu").write_text("")
        identity = infer_kernel_identity(key="blas.saxpy", kernel_sources_dir=str(tmp_path))
        assert identity.key == "blas.saxpy"
        assert identity.function_name is None
        assert identity.source_file == os.path.join(str(tmp_path), "saxpy.cu")

    def test_inferred_source_must_exist(self, tmp_path):
        with pytest.raises(ConfigurationError, match="does not exist"):
            infer_kernel_identity(key="vector_add", kernel_sources_dir=str(tmp_path))

    def test_given_source_is_not_checked(self, tmp_path):
        identity = infer_kernel_identity(key="k", source_file="missing.cu", kernel_sources_dir=str(tmp_path))
        assert identity.source_file == os.path.join(str(tmp_path), "missing.cu")


class TestRunOptionsValidation:
    """Option checks which need no adapter."""

    def _options(self, **kwargs):
        return RunOptions(kernel=KernelIdentity("vector_add"), **kwargs)

    def test_defaults_are_valid(self):
        self._options().validate()

    def test_num_runs_positive(self):
        with pytest.raises(ConfigurationError, match="positive integer"):
            self._options(num_runs=0).validate()

    def test_negative_device(self):
        with pytest.raises(ConfigurationError):
            self._options(device_id=-1).validate()

    def test_platform_requires_opencl(self):
        with pytest.raises(ConfigurationError, match="CUDA does not support"):
            self._options(platform_id=0).validate()
        self._options(platform_id=1, ecosystem=Ecosystem.OPENCL).validate()

    def test_language_standard(self):
        self._options(language_standard="C++17").validate()
        with pytest.raises(ConfigurationError, match="Unsupported language standard"):
            self._options(language_standard="c++98").validate()

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ConfigurationError, match="No such directory"):
            self._options(input_buffer_dir=str(tmp_path / "nowhere")).validate()

    def test_directory_is_a_file(self, tmp_path):
        path = tmp_path / "file"
        path.write_text("")
        with pytest.raises(ConfigurationError, match="is not a directory"):
            self._options(output_buffer_dir=str(path)).validate()

    def test_existing_ir_file(self, tmp_path):
        ir_file = tmp_path / "k.ptx"
        ir_file.write_text("")
        options = self._options(write_ir=True, ir_output_file=str(ir_file))
        with pytest.raises(ConfigurationError, match="overwrite is not allowed"):
            options.validate()
        self._options(write_ir=True, ir_output_file=str(ir_file), overwrite_allowed=True).validate()
