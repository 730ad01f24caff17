"""
Configuration shim - import settings from here in application code.
"""
from prodtrack.core.settings import Settings, get_settings, settings

__all__ = ["Settings", "get_settings", "settings"]
