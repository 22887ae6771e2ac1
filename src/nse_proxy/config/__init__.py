"""Configuration helpers for the NSE proxy."""

from .settings import ProxySettings, SessionPolicy, get_settings, load_settings, settings

__all__ = ["ProxySettings", "SessionPolicy", "get_settings", "load_settings", "settings"]
