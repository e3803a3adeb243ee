"""HTTP adapter exposing the gate engine."""

from .config import ServerSettings, load_settings

__all__ = ["ServerSettings", "load_settings"]
