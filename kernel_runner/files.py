# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
File I/O for buffers, kernel sources and compiled IR.

Buffer files hold raw bytes with no header. Every I/O failure is
raised as BufferIOError.
"""

import logging
import os

from .errors import BufferIOError
from .log import TRACE

logger = logging.getLogger("kernel_runner.files")


def resolve_path(base_dir: str, filename: str) -> str:
    """``filename`` itself if absolute, otherwise relative to ``base_dir``."""
    if os.path.isabs(filename):
        return filename
    return os.path.join(base_dir, filename)


def read_buffer_file(name: str, path: str) -> bytearray:
    """Read a whole buffer file into a new host buffer."""
    try:
        with open(path, "rb") as f:
            data = bytearray(f.read())
    except OSError as e:
        raise BufferIOError(f"Cannot read buffer '{name}': {e.strerror}", path=path) from e
    logger.debug(f"Read buffer '{name}' of size {len(data)} bytes from: {path}")
    return data


def write_buffer_file(name: str, buffer: bytearray, path: str) -> None:
    logger.debug(f"Writing buffer '{name}' of size {len(buffer)} bytes to: {path}")
    try:
        with open(path, "wb") as f:
            f.write(buffer)
    except OSError as e:
        raise BufferIOError(f"Cannot write buffer '{name}': {e.strerror}", path=path) from e


def read_kernel_source(path: str) -> str:
    """Read a kernel source file as text."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            source = f.read()
    except OSError as e:
        raise BufferIOError(f"Cannot read kernel source: {e.strerror}", path=path) from e
    except UnicodeDecodeError as e:
        raise BufferIOError(f"Kernel source is not valid UTF-8 text: {e}", path=path) from e
    logger.log(TRACE, f"Read kernel source of {len(source)} characters from: {path}")
    return source


def write_ir_file(ir: str, path: str) -> None:
    """Write compiled intermediate representation (e.g. PTX) text."""
    logger.info(f"Writing the kernel's intermediate representation to: {path}")
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(ir)
    except OSError as e:
        raise BufferIOError(f"Cannot write intermediate representation: {e.strerror}", path=path) from e
