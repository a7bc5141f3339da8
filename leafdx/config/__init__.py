"""Configuration package."""

from leafdx.config.settings import DiagnosticsConfig, Settings, get_settings


__all__ = ['DiagnosticsConfig', 'Settings', 'get_settings']
