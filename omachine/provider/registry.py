"""Register of available providers.

Providers register themselves with the :py:func:`register` decorator when
their module is imported. Builtin providers are imported by
:py:func:`load_providers`; extra modules can be given to make third-party
providers available without modifying the library.
"""

from __future__ import annotations

import importlib
from types import ModuleType
from typing import Sequence, Type, TypeVar

from omachine.errors import UnknownProvider
from omachine.provider.base import Provider

BUILTIN_PROVIDERS = [
    "omachine.provider.noop",
    "omachine.provider.aws",
]

P = TypeVar("P", bound=Type[Provider])

providers: dict[str, Type[Provider]] = {}
"""Registered provider classes, by name"""

modules: list[ModuleType] = []
"""List of loaded provider modules"""


def register(cls: P) -> P:
    """Class decorator making a provider available by its name.

    Raises:
        ValueError: If another provider already uses the name.
    """
    existing = providers.get(cls.name)
    if existing is not None and existing is not cls:
        raise ValueError(f"Provider name {cls.name} already used by {existing}")
    providers[cls.name] = cls
    return cls


def load_provider(module: str) -> None:
    """Import a provider module. The module will be stored in `modules`."""
    modules.append(importlib.import_module(module))


def load_providers(
    extra: None | Sequence[str] = None, skip_builtin: bool = False
) -> None:
    """Load providers.

    Extra providers will be loaded after built-in providers.

    Args:
        extra: Extra modules to load, as ``str``.
        skip_builtin: If set to ``True``, builtin providers (`BUILTIN_PROVIDERS`)
            will not be loaded.
    """
    if not skip_builtin:
        for module in BUILTIN_PROVIDERS:
            load_provider(module)

    for module in extra or []:
        load_provider(module)


def get(name: str) -> Provider:
    """Return a new instance of the provider *name*.

    Raises:
        UnknownProvider: If no provider registered that name.
    """
    if not modules:
        load_providers()
    if name not in providers:
        raise UnknownProvider(name)
    return providers[name]()


def names() -> list[str]:
    if not modules:
        load_providers()
    return sorted(providers)
