# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for the two-phase command line front end.
"""

import pytest

from conftest import KERNELS_DIR
from kernel_runner import cli
from kernel_runner.runner import RunResult
from kernel_runner.types import Ecosystem


@pytest.fixture
def captured_run(monkeypatch):
    """Replace run_kernel; the options it would have received are recorded."""
    captured = []

    def fake_run_kernel(options):
        captured.append(options)
        return RunResult(kernel_key=options.kernel.key, run_times_ms=[1.0, 3.0])

    monkeypatch.setattr(cli, "run_kernel", fake_run_kernel)
    return captured


def sources_dir_args():
    return ["--kernel-sources-dir", str(KERNELS_DIR)]


class TestGenericOptions:
    def test_list_kernels(self, capsys):
        assert cli.main(["--list-kernels"]) == 0
        assert capsys.readouterr().out.split() == ["scale_inplace", "vector_add"]

    def test_help_without_kernel(self, capsys):
        assert cli.main(["--help"]) == 0
        assert "--block-dimensions" in capsys.readouterr().out

    def test_no_kernel_identified(self, capsys):
        assert cli.main([]) == 1
        captured = capsys.readouterr()
        assert "usage: kernel-runner" in captured.err
        assert "must specify a kernel key" in captured.err

    def test_unknown_kernel(self, capsys):
        assert cli.main(["-K", "nope", "-s", "nope.cu"]) == 1
        assert "No kernel adapter is registered for key 'nope'" in capsys.readouterr().err

    def test_help_with_unknown_kernel_shows_generic_help(self, capsys):
        assert cli.main(["-K", "nope", "-s", "nope.cu", "-h"]) == 0
        assert "--list-kernels" in capsys.readouterr().out

    def test_cuda_and_opencl_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.main(["--cuda", "--opencl", "--list-kernels"])

    def test_bad_log_level(self):
        assert cli.main(["--log-level", "chatty", "--list-kernels"]) == 1


class TestKernelOptions:
    """Second parsing phase, with the kernel's own options."""

    def test_kernel_help_lists_kernel_options(self, capsys):
        assert cli.main(["-K", "scale_inplace", *sources_dir_args(), "--help"]) == 0
        out = capsys.readouterr().out
        assert "scale_inplace (inout buffers)" in out
        assert "--factor" in out
        assert "--BLOCK_SIZE" in out

    def test_options_reach_the_runner(self, captured_run):
        argv = [
            "-K", "vector_add", *sources_dir_args(),
            "-b", "256", "-o", "1024",
            "--a", "x.bin", "--c", "sum.bin",
            "-D", "FOO", "-D", "BAR=1",
            "-n", "2", "-z", "-t",
        ]
        assert cli.main(argv) == 0

        (options,) = captured_run
        assert options.kernel.key == "vector_add"
        assert options.kernel.source_file.endswith("vector_add.cu")
        assert options.ecosystem is Ecosystem.CUDA
        assert options.forced_launch_config.block_dimensions == (256, 1, 1)
        assert options.forced_launch_config.overall_grid_dimensions == (1024, 1, 1)
        assert options.buffer_filenames == {"a": "x.bin", "c": "sum.bin"}
        assert options.preprocessor_definitions == ("FOO", "BAR=1")
        assert options.num_runs == 2
        assert options.zero_output_buffers and options.time_execution
        assert options.write_output_buffers_to_files

    def test_kernel_scalars_and_definitions(self, captured_run):
        argv = [
            "-K", "scale_inplace", *sources_dir_args(),
            "--opencl", "-p", "1",
            "--factor", "0.5", "--BLOCK_SIZE", "128", "--no-write-output",
        ]
        assert cli.main(argv) == 0

        (options,) = captured_run
        assert options.ecosystem is Ecosystem.OPENCL
        assert options.platform_id == 1
        assert options.kernel.source_file.endswith("scale_inplace.cl")
        assert options.scalar_arguments == {"factor": "0.5"}
        assert options.preprocessor_value_definitions == {"BLOCK_SIZE": "128"}
        assert not options.write_output_buffers_to_files

    def test_unrecognized_options_are_tolerated(self, captured_run):
        argv = ["-K", "vector_add", *sources_dir_args(), "--removed-parameter", "x"]
        assert cli.main(argv) == 0
        assert len(captured_run) == 1

    def test_buffer_option_is_not_an_abbreviation(self, captured_run):
        argv = ["-K", "vector_add", *sources_dir_args(), "--b", "second.bin"]
        assert cli.main(argv) == 0
        (options,) = captured_run
        assert options.buffer_filenames == {"b": "second.bin"}
        assert options.forced_launch_config.block_dimensions is None

    def test_grid_and_overall_conflict(self, captured_run):
        argv = ["-K", "vector_add", *sources_dir_args(), "-g", "4", "-o", "1024"]
        assert cli.main(argv) == 1
        assert captured_run == []

    def test_non_positive_dimension_is_a_usage_error(self, captured_run, capsys):
        argv = ["-K", "vector_add", *sources_dir_args(), "-b", "0"]
        with pytest.raises(SystemExit) as exc_info:
            cli.main(argv)
        assert exc_info.value.code == 2
        assert "must be positive" in capsys.readouterr().err
        assert captured_run == []

    def test_malformed_dimension_is_a_usage_error(self, captured_run, capsys):
        argv = ["-K", "vector_add", *sources_dir_args(), "-o", "16,x"]
        with pytest.raises(SystemExit) as exc_info:
            cli.main(argv)
        assert exc_info.value.code == 2
        assert "16,x" in capsys.readouterr().err
        assert captured_run == []

    def test_kernel_inferred_from_source(self, captured_run):
        argv = ["-s", str(KERNELS_DIR / "vector_add.cu")]
        assert cli.main(argv) == 0
        (options,) = captured_run
        assert options.kernel.key == "vector_add"
        assert options.kernel.function_name == "vector_add"
