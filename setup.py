# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

import os
import re

from setuptools import find_packages, setup


def read_version():
    init_path = os.path.join(os.path.dirname(__file__), "kernel_runner", "__init__.py")
    with open(init_path, encoding="utf-8") as f:
        match = re.search(r'^__version__ = "([^"]+)"', f.read(), re.MULTILINE)
    return match.group(1)


setup(
    name="kernel-runner",
    version=read_version(),
    description="A runner for dynamically-compiled CUDA and OpenCL kernels",
    author="Wahyu Ardiansyah",
    license="Apache-2.0",
    python_requires=">=3.9",
    packages=find_packages(include=["kernel_runner", "kernel_runner.*"]),
    install_requires=[
        "numpy>=1.21",
    ],
    extras_require={
        "cuda": ["cupy-cuda12x>=12.0"],
        "opencl": ["pyopencl>=2022.1"],
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "kernel-runner=kernel_runner.cli:main",
        ],
    },
)
