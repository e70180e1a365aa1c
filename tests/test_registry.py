# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for the kernel adapter registry.
"""

import pytest

from kernel_runner.adapters import KernelAdapter, ScaleInplace, VectorAdd, buffer_parameter
from kernel_runner.adapters.registry import AdapterRegistry, get_registry
from kernel_runner.errors import AdapterError, UnknownKernelError
from kernel_runner.types import ParameterDirection


class Copy(KernelAdapter):
    KEY = "copy"
    PARAMETERS = (buffer_parameter("src", ParameterDirection.INPUT),)

    def marshal_kernel_arguments_inner(self, arguments, context):
        pass


class TestAdapterRegistry:
    def test_singleton(self):
        assert AdapterRegistry() is get_registry()

    def test_reset(self):
        registry = get_registry()
        AdapterRegistry.reset()
        assert get_registry() is not registry

    def test_builtins_registered(self):
        registry = get_registry()
        assert registry.keys() == ["scale_inplace", "vector_add"]
        assert registry.can_produce("vector_add")

    def test_produce(self):
        adapter = get_registry().produce("scale_inplace")
        assert isinstance(adapter, ScaleInplace)

    def test_unknown_key(self):
        with pytest.raises(UnknownKernelError) as exc_info:
            get_registry().produce("vector")
        assert exc_info.value.key == "vector"
        assert exc_info.value.available == ["scale_inplace", "vector_add"]
        assert "Did you mean: vector_add" in str(exc_info.value)

    def test_register_custom_adapter(self):
        registry = get_registry()
        registry.register(Copy)
        assert registry.keys() == ["copy", "scale_inplace", "vector_add"]
        assert isinstance(registry.produce("copy"), Copy)

    def test_duplicate_key(self):
        with pytest.raises(AdapterError, match="already registered"):
            get_registry().register(VectorAdd)

    def test_ignore_repeat(self):
        get_registry().register(VectorAdd, ignore_repeat=True)
        assert get_registry().get_class("vector_add") is VectorAdd

    def test_invalid_schema_is_rejected(self):
        class Broken(KernelAdapter):
            KEY = "broken"
            PARAMETERS = (
                buffer_parameter("x", ParameterDirection.INPUT),
                buffer_parameter("x", ParameterDirection.OUTPUT),
            )

            def marshal_kernel_arguments_inner(self, arguments, context):
                pass

        with pytest.raises(AdapterError):
            get_registry().register(Broken)
        assert not get_registry().can_produce("broken")
