"""Mapping between module URLs and the bundler's (path, namespace) pairs."""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass

from loaders.base import file_url_to_path
from resolution.classifier import url_scheme
from resolution.errors import UnsupportedSchemeError


@dataclass(frozen=True)
class PluginResolution:
    """Answer to a bundler resolve hook."""

    path: str
    namespace: str = "file"
    external: bool = False


def url_to_resolution(url: str) -> PluginResolution:
    """``file:`` URLs become local paths; other URLs keep their scheme as namespace."""
    scheme = url_scheme(url)
    if scheme is None:
        raise UnsupportedSchemeError(f"Not an absolute URL: {url}", specifier=url)
    if scheme == "file":
        return PluginResolution(path=file_url_to_path(url), namespace="file")
    return PluginResolution(path=url[len(scheme) + 1:], namespace=scheme)


def resolution_to_url(path: str, namespace: str) -> str:
    """Inverse of ``url_to_resolution``."""
    if namespace == "file":
        return pathlib.Path(os.path.abspath(path)).as_uri()
    return f"{namespace}:{path}"


def split_package_name(specifier: str):
    """Split a bare import into (package name, sub path); scoped names keep two segments."""
    parts = specifier.split("/")
    count = 2 if specifier.startswith("@") else 1
    return "/".join(parts[:count]), "/".join(parts[count:])
