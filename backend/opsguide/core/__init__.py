"""
Core application modules.
Contains configuration, logging, metrics, tracing and resilience helpers.
"""
from .config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
