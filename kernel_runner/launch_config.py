# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Launch Configuration Deduction

A launch is described by three related 3-dimensional extents:

- block dimensions, in threads (OpenCL: local work size)
- grid dimensions, in blocks
- overall dimensions, in threads (OpenCL: global work size)

with ``overall = block * grid`` elementwise, up to rounding of the grid
when the overall extent is not a multiple of the block. Any two of the
three determine the third. Dimension lists shorter than three are padded
with 1.
"""

from dataclasses import dataclass, replace
from typing import Optional, Sequence

from .errors import ConfigurationError, LaunchConfigError

Dimensions = tuple[int, int, int]


def normalize_dimensions(values: Sequence[int], what: str = "dimensions") -> Dimensions:
    """
    Validate a dimension list and pad it to three components.

    Args:
        values: One to three positive integers.
        what: Description used in error messages.

    Returns:
        A 3-tuple, right-padded with 1.

    Raises:
        ConfigurationError: On an empty, too long or non-positive list.
    """
    dims = [int(v) for v in values]
    if not dims or len(dims) > 3:
        raise ConfigurationError(
            f"Invalid {what}: got {len(dims)} dimensions, expected 1 to 3",
            value=",".join(str(d) for d in dims),
        )
    if any(d <= 0 for d in dims):
        raise ConfigurationError(
            f"Invalid {what}: all dimensions must be positive",
            value=",".join(str(d) for d in dims),
        )
    while len(dims) < 3:
        dims.append(1)
    return (dims[0], dims[1], dims[2])


def parse_dimensions(text: str, what: str = "dimensions") -> Dimensions:
    """Parse a comma-separated dimension list, e.g. ``"256"`` or ``"16,16"``."""
    try:
        values = [int(part) for part in text.split(",") if part.strip()]
    except ValueError as e:
        raise ConfigurationError(f"Invalid {what}: '{text}'", value=text) from e
    return normalize_dimensions(values, what)


def _ceil_div(numerator: Dimensions, denominator: Dimensions) -> Dimensions:
    return tuple(-(-n // d) for n, d in zip(numerator, denominator))


def _multiply(lhs: Dimensions, rhs: Dimensions) -> Dimensions:
    return tuple(a * b for a, b in zip(lhs, rhs))


def covers_full_blocks(overall: Dimensions, block: Dimensions) -> bool:
    """True iff the overall extent is an exact elementwise multiple of the block."""
    return all(o % b == 0 for o, b in zip(overall, block))


@dataclass(frozen=True)
class LaunchConfiguration:
    """A fully resolved launch configuration."""

    block_dimensions: Dimensions
    grid_dimensions: Dimensions
    overall_grid_dimensions: Dimensions
    dynamic_shared_memory_size: int = 0

    @property
    def full_blocks(self) -> bool:
        return covers_full_blocks(self.overall_grid_dimensions, self.block_dimensions)

    @property
    def padded_overall_dimensions(self) -> Dimensions:
        """The overall extent actually launched: grid times block."""
        return _multiply(self.grid_dimensions, self.block_dimensions)

    def describe(self, include_shared_memory: bool = True) -> list[str]:
        """Human-readable lines describing this configuration."""
        bd, gd, od = self.block_dimensions, self.grid_dimensions, self.overall_grid_dimensions
        lines = [
            f"Launch configuration: Block dimensions:   {bd[0]:>9} x {bd[1]:>5} x {bd[2]:>5} threads",
            f"Launch configuration: Grid dimensions:    {gd[0]:>9} x {gd[1]:>5} x {gd[2]:>5} blocks",
            f"Launch configuration: Overall dimensions: {od[0]:>9} x {od[1]:>5} x {od[2]:>5} threads",
        ]
        if include_shared_memory:
            lines.append(
                f"Launch configuration: Dynamic shared memory:  {self.dynamic_shared_memory_size} bytes"
            )
        lines.append(f"Overall dimensions cover full blocks? {self.full_blocks}")
        return lines


@dataclass(frozen=True)
class LaunchConfigComponents:
    """
    A possibly-partial launch configuration.

    Components may come from the command line ("forced") or from an
    adapter's deduction; ``deduce_missing`` completes them.
    """

    block_dimensions: Optional[Dimensions] = None
    grid_dimensions: Optional[Dimensions] = None
    overall_grid_dimensions: Optional[Dimensions] = None
    dynamic_shared_memory_size: Optional[int] = None

    @classmethod
    def from_forced(
        cls,
        block: Optional[Sequence[int]] = None,
        grid: Optional[Sequence[int]] = None,
        overall: Optional[Sequence[int]] = None,
        dynamic_shared_memory_size: Optional[int] = None,
    ) -> "LaunchConfigComponents":
        """
        Build components from user-forced values.

        Raises:
            ConfigurationError: If both grid and overall dimensions are
                forced, or any dimension list is invalid.
        """
        if grid is not None and overall is not None:
            raise ConfigurationError(
                "The grid dimensions may be specified either in blocks or in overall threads, but not both",
                option="grid-dimensions/overall-grid-dimensions",
            )
        if dynamic_shared_memory_size is not None and dynamic_shared_memory_size < 0:
            raise ConfigurationError(
                "Dynamic shared memory size may not be negative",
                option="dynamic-shared-memory-size",
                value=str(dynamic_shared_memory_size),
            )
        return cls(
            block_dimensions=normalize_dimensions(block, "block dimensions") if block is not None else None,
            grid_dimensions=normalize_dimensions(grid, "grid dimensions") if grid is not None else None,
            overall_grid_dimensions=(
                normalize_dimensions(overall, "overall grid dimensions") if overall is not None else None
            ),
            dynamic_shared_memory_size=dynamic_shared_memory_size,
        )

    def with_default_shared_memory(self) -> "LaunchConfigComponents":
        if self.dynamic_shared_memory_size is not None:
            return self
        return replace(self, dynamic_shared_memory_size=0)

    def is_sufficient(self) -> bool:
        return (
            self.block_dimensions is not None
            and (self.grid_dimensions is not None or self.overall_grid_dimensions is not None)
            and self.dynamic_shared_memory_size is not None
        )

    def deduce_missing(self) -> LaunchConfiguration:
        """
        Derive the missing dimensions.

        Returns:
            The resolved configuration.

        Raises:
            LaunchConfigError: If fewer than two of the three dimension
                components are known, or all three are given but disagree.
        """
        block = self.block_dimensions
        grid = self.grid_dimensions
        overall = self.overall_grid_dimensions
        known = sum(c is not None for c in (block, grid, overall))
        if known < 2:
            raise LaunchConfigError(
                "Unable to deduce launch configuration - please specify all launch "
                "configuration components explicitly"
            )

        if block is not None and grid is not None and overall is not None:
            if _ceil_div(overall, block) != grid:
                raise LaunchConfigError(
                    f"Inconsistent launch configuration: overall dimensions {overall} "
                    f"do not match block {block} times grid {grid}"
                )
        elif overall is None:
            overall = _multiply(block, grid)
        elif grid is None:
            grid = _ceil_div(overall, block)
        else:
            block = _ceil_div(overall, grid)

        return LaunchConfiguration(
            block_dimensions=block,
            grid_dimensions=grid,
            overall_grid_dimensions=overall,
            dynamic_shared_memory_size=self.dynamic_shared_memory_size or 0,
        )
