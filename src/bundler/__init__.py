"""Bundler integration: resolve/load hooks and namespace mapping."""

from .hooks import LoaderHooks
from .namespaces import PluginResolution, resolution_to_url, url_to_resolution

__all__ = [
    "LoaderHooks",
    "PluginResolution",
    "resolution_to_url",
    "url_to_resolution",
]
