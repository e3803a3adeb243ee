"""Error definitions for hookgate."""

from __future__ import annotations


class HookgateError(RuntimeError):
    """Base class for hookgate errors."""


class ConfigError(HookgateError):
    """Raised when a rule document cannot be used."""


class ConfigLoadError(ConfigError):
    """Raised when a rule document cannot be read or parsed."""


class ConfigValidationError(ConfigError):
    """Raised when a rule document violates the schema.

    ``field`` holds the offending path, e.g. ``hooks[2].onFailure.mode``.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ModuleLoadError(HookgateError):
    """Raised when an external matcher or action module cannot be loaded."""


class ActionError(HookgateError):
    """Raised when a custom action fails to load or run."""
