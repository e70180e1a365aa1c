# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Kernel Runner Error Hierarchy

Every fatal condition of a run is raised as one of these errors and
handled once, at the command-line front end, which logs it and turns it
into the process exit code. Nothing below the front end terminates the
process.

Error Categories:
- KernelRunnerError: Base class for all kernel runner errors
- ConfigurationError: Bad or missing option values (before any device work)
- LaunchConfigError: Launch geometry that cannot be resolved
- UnknownKernelError: No adapter registered under the requested key
- DeviceError: No devices, or an invalid device/platform index
- CompilationError: The kernel failed to build
- ValidationError: Inputs missing or rejected by the adapter
- AdapterError: An adapter broke its own contract
- ScalarTypeError: A typed scalar was retrieved under the wrong type
- BufferLifecycleError: Host/device buffer allocation, size or copy failures
- BufferIOError: Reading or writing buffer, source or IR files
- KernelLaunchError: The kernel launch itself failed
"""

from typing import Optional


class KernelRunnerError(Exception):
    """
    Base class for all kernel runner errors.

    Attributes:
        message: Human-readable error message
        suggestions: List of suggestions to fix the error
        context: Optional context dictionary for debugging
        exit_code: Process exit code the front end reports
    """

    exit_code = 1

    def __init__(
        self,
        message: str,
        suggestions: Optional[list[str]] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.suggestions = suggestions or []
        self.context = context or {}

        full_message = self._format_message()
        super().__init__(full_message)

    def _format_message(self) -> str:
        """Format the error message with suggestions."""
        lines = [self.message]

        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"  {i}. {suggestion}")

        if self.context:
            lines.append("")
            lines.append("Context:")
            for key, value in self.context.items():
                lines.append(f"  {key}: {value}")

        return "\n".join(lines)


class ConfigurationError(KernelRunnerError):
    """
    Configuration error.

    Raised when:
    - An option value is invalid or missing
    - Options contradict each other
    - An output file would be overwritten without permission
    """

    def __init__(
        self,
        message: str,
        option: Optional[str] = None,
        value: Optional[str] = None,
        suggestions: Optional[list[str]] = None,
    ):
        context = {}
        if option:
            context["option"] = option
        if value is not None:
            context["value"] = str(value)

        super().__init__(
            message=f"Configuration error: {message}",
            suggestions=suggestions,
            context=context,
        )


class LaunchConfigError(ConfigurationError):
    """Launch configuration cannot be determined or is inconsistent."""

    def __init__(self, message: str):
        super().__init__(
            message,
            suggestions=[
                "Specify the block dimensions with --block-dimensions",
                "Specify either --grid-dimensions or --overall-grid-dimensions",
            ],
        )


class UnknownKernelError(ConfigurationError):
    """No kernel adapter is registered under the requested key."""

    def __init__(self, key: str, available: Optional[list[str]] = None):
        self.key = key
        self.available = available or []

        suggestions = ["Run with --list-kernels to see the registered kernels"]
        similar = [k for k in self.available if key.lower() in k.lower()]
        if similar:
            suggestions.insert(0, f"Did you mean: {', '.join(similar[:3])}")

        super().__init__(
            f"No kernel adapter is registered for key '{key}'",
            option="kernel-key",
            value=key,
            suggestions=suggestions,
        )


class DeviceError(KernelRunnerError):
    """
    Execution environment error.

    Raised when:
    - No GPU devices or platforms are found
    - The device or platform index is out of range
    - The required GPU library is not installed
    """

    def __init__(
        self,
        message: str,
        ecosystem: Optional[str] = None,
        device_id: Optional[int] = None,
    ):
        context = {}
        if ecosystem:
            context["ecosystem"] = ecosystem
        if device_id is not None:
            context["device"] = device_id

        super().__init__(message=message, context=context)


class CompilationError(KernelRunnerError):
    """
    The kernel failed to build.

    The build log is kept on the exception; it has already been logged
    at error severity by the backend.
    """

    def __init__(
        self,
        message: str,
        kernel_name: Optional[str] = None,
        build_log: str = "",
    ):
        self.build_log = build_log

        context = {}
        if kernel_name:
            context["kernel"] = kernel_name

        super().__init__(
            message=f"Compilation failed: {message}",
            suggestions=[
                "Check the kernel compilation log above",
                "Verify the preprocessor definitions and include paths",
            ],
            context=context,
        )


class ValidationError(KernelRunnerError):
    """
    Input validation error.

    Raised when:
    - A required buffer, scalar argument or preprocessor definition is missing
    - The adapter rejects the buffer sizes or the combination of inputs
    """

    def __init__(
        self,
        message: str,
        parameter: Optional[str] = None,
        missing: Optional[list[str]] = None,
    ):
        context = {}
        if parameter:
            context["parameter"] = parameter
        if missing:
            context["missing"] = ", ".join(missing)

        super().__init__(
            message=f"Validation failed: {message}",
            context=context,
        )


class AdapterError(KernelRunnerError):
    """A kernel adapter violated its contract (a programming error)."""

    def __init__(self, message: str, adapter_key: Optional[str] = None):
        context = {"adapter": adapter_key} if adapter_key else {}
        super().__init__(message=f"Kernel adapter error: {message}", context=context)


class ScalarTypeError(AdapterError):
    """A typed scalar argument was requested under a mismatched type."""

    def __init__(self, expected: str, actual: str, name: Optional[str] = None):
        self.expected = expected
        self.actual = actual
        what = f"scalar '{name}'" if name else "scalar"
        super().__init__(f"{what} holds a {actual} value, but was retrieved as {expected}")


class BufferLifecycleError(KernelRunnerError):
    """
    Buffer lifecycle error.

    Raised when:
    - A buffer is missing from one of the buffer maps
    - Host and device sizes disagree
    - Device allocation or a copy fails
    """

    def __init__(
        self,
        message: str,
        buffer_name: Optional[str] = None,
        size_bytes: Optional[int] = None,
    ):
        context = {}
        if buffer_name:
            context["buffer"] = buffer_name
        if size_bytes is not None:
            context["size_bytes"] = size_bytes

        super().__init__(message=f"Buffer error: {message}", context=context)


class BufferIOError(BufferLifecycleError):
    """Reading or writing a file (buffer, kernel source or IR) failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(f"{message}{f' ({path})' if path else ''}")


class KernelLaunchError(KernelRunnerError):
    """The kernel could not be launched or failed while running."""

    def __init__(self, message: str, kernel_name: Optional[str] = None, run_index: Optional[int] = None):
        self.reason = message
        context = {}
        if kernel_name:
            context["kernel"] = kernel_name
        if run_index is not None:
            context["run"] = run_index + 1

        super().__init__(message=f"Kernel execution failed: {message}", context=context)
