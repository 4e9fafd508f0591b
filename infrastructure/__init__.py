"""Environment-specific configuration and telemetry back ends."""

from __future__ import annotations

from .configuration import (
    Settings,
    load_settings,
    validate_settings,
)

__all__ = ["Settings", "load_settings", "validate_settings"]
