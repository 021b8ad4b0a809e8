"""Identity provider implementations for authgate.

Providers are looked up by name so applications can plug in their own
implementation of the :class:`IdentityProvider` protocol.

Available providers:
    - identity_toolkit: Google Identity Toolkit / Firebase Authentication REST API

Example:
    >>> from authgate.providers import get_provider
    >>> provider = get_provider("identity_toolkit", api_key="...")
"""

from importlib import import_module
from typing import Any

from authgate.providers.base import IdentityProvider

# Provider registry maps names to module:class paths, imported lazily.
_PROVIDER_REGISTRY: dict[str, str] = {
    "identity_toolkit": "authgate.providers.identity_toolkit:IdentityToolkitProvider",
    "firebase": "authgate.providers.identity_toolkit:IdentityToolkitProvider",
}


def get_provider(name: str = "identity_toolkit", **kwargs: Any) -> IdentityProvider:
    """Get an identity provider instance by name.

    Args:
        name: Provider identifier ("firebase" is an alias for "identity_toolkit").
        **kwargs: Provider constructor options.

    Returns:
        Configured IdentityProvider instance.

    Raises:
        ValueError: If provider name is not recognized.
    """
    if name not in _PROVIDER_REGISTRY:
        available = ", ".join(sorted(_PROVIDER_REGISTRY))
        raise ValueError(f"Unknown provider '{name}'. Available providers: {available}")

    module_path, class_name = _PROVIDER_REGISTRY[name].rsplit(":", 1)
    module = import_module(module_path)
    return getattr(module, class_name)(**kwargs)


def list_providers() -> list[str]:
    """List registered provider names."""
    return sorted(_PROVIDER_REGISTRY)


def register_provider(name: str, module_class_path: str) -> None:
    """Register a custom provider.

    Args:
        name: Provider identifier.
        module_class_path: Import path in format "module.path:ClassName".

    Raises:
        ValueError: If name is already registered or path format is invalid.
    """
    if name in _PROVIDER_REGISTRY:
        raise ValueError(f"Provider '{name}' is already registered")

    if ":" not in module_class_path:
        raise ValueError(
            f"Invalid module_class_path '{module_class_path}'. "
            "Expected format: 'module.path:ClassName'"
        )

    _PROVIDER_REGISTRY[name] = module_class_path


__all__ = [
    "IdentityProvider",
    "get_provider",
    "list_providers",
    "register_provider",
]
