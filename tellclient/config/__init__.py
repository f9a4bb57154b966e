"""Configuration module for tell-client."""

from .settings import Settings, settings

__all__ = ["Settings", "settings"]
