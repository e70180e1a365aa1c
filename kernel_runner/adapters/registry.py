# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Kernel Adapter Registry

Process-wide factory of kernel adapters keyed by string.

Features:
- Registration of adapter classes under their KEY
- Schema validation (unique parameter names) at registration
- Explicit registration of the built-in adapters on first use
- Thread-safe singleton registry
"""

import logging
import threading
from typing import Dict, List, Optional, Type

from ..errors import AdapterError, UnknownKernelError
from .base import KernelAdapter

logger = logging.getLogger("kernel_runner.adapters.registry")


class AdapterRegistry:
    """
    Singleton registry of kernel adapter classes.

    Thread Safety: All operations are protected by a lock.
    """

    _instance: Optional["AdapterRegistry"] = None
    _lock = threading.RLock()

    def __new__(cls) -> "AdapterRegistry":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            self._adapter_classes: Dict[str, Type[KernelAdapter]] = {}
            self._initialized = True

            from . import register_builtin_adapters

            register_builtin_adapters(self)

    def register(self, adapter_class: Type[KernelAdapter], ignore_repeat: bool = False) -> None:
        """
        Register an adapter class under its KEY.

        Args:
            adapter_class: KernelAdapter subclass.
            ignore_repeat: Silently accept re-registration of the same key.

        Raises:
            AdapterError: If the schema is invalid, or the key is taken
                and ``ignore_repeat`` is False.
        """
        adapter_class.validate_schema()
        key = adapter_class.KEY
        with self._lock:
            if key in self._adapter_classes:
                if ignore_repeat:
                    return
                raise AdapterError(f"A kernel adapter is already registered for key '{key}'", adapter_key=key)
            self._adapter_classes[key] = adapter_class
            logger.debug(f"Registered kernel adapter: {key}")

    def can_produce(self, key: str) -> bool:
        with self._lock:
            return key in self._adapter_classes

    def get_class(self, key: str) -> Type[KernelAdapter]:
        """
        Raises:
            UnknownKernelError: If nothing is registered under ``key``.
        """
        with self._lock:
            adapter_class = self._adapter_classes.get(key)
            if adapter_class is None:
                raise UnknownKernelError(key, sorted(self._adapter_classes))
            return adapter_class

    def produce(self, key: str) -> KernelAdapter:
        """Instantiate the adapter registered under ``key``."""
        return self.get_class(key)()

    def keys(self) -> List[str]:
        """Registered keys, sorted."""
        with self._lock:
            return sorted(self._adapter_classes)

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance (for testing)."""
        with cls._lock:
            cls._instance = None


def get_registry() -> AdapterRegistry:
    return AdapterRegistry()
