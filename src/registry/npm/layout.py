"""On-disk layout for npm registry packages.

Packages live at ``<root>/npm/<registry host>/<name>/<version>``, the same
convention the Deno cache uses, so a plain filesystem resolver can find each
package's ``package.json`` without an install step.
"""

from __future__ import annotations

import logging
import os
import urllib.parse
from typing import Dict, Iterable, Optional

from constants import Constants
from resolution.errors import DependencyNotFoundError
from resolution.models import NpmPackage

logger = logging.getLogger(__name__)


def registry_host(registry_url: str) -> str:
    """Directory name used for a registry: its host, plus a non-default port."""
    parts = urllib.parse.urlsplit(registry_url)
    host = parts.hostname or "registry.npmjs.org"
    if parts.port:
        return f"{host}_{parts.port}"
    return host


class NpmPackageLayout:
    """Registered packages and their directories under one cache root."""

    def __init__(self, root: str, registry_url: str = Constants.REGISTRY_URL_NPM):
        """Initialize the layout.

        Args:
            root: Cache root (the Deno dir for the native backend).
            registry_url: Registry the packages come from.
        """
        self.root = root
        self.registry_url = registry_url
        self._packages: Dict[str, NpmPackage] = {}

    @property
    def packages_root(self) -> str:
        return os.path.join(self.root, "npm", registry_host(self.registry_url))

    def register(self, package: NpmPackage) -> None:
        """Add or replace a package record."""
        self._packages[package.id] = package

    def register_all(self, packages: Iterable[NpmPackage]) -> None:
        for package in packages:
            self.register(package)

    def get(self, package_id: str) -> Optional[NpmPackage]:
        return self._packages.get(package_id)

    def require(self, package_id: str) -> NpmPackage:
        """Return a registered package.

        Raises:
            DependencyNotFoundError: the id is unknown.
        """
        package = self._packages.get(package_id)
        if package is None:
            raise DependencyNotFoundError(f"NPM package not found: {package_id}")
        return package

    def path_for(self, package_id: str) -> str:
        """Directory of a package; depends only on registry host, name and version."""
        package = self.require(package_id)
        return os.path.join(self.packages_root, *package.name.split("/"), package.version)

    def resolve_dependency_id(self, name: str, within_package_id: str) -> str:
        """Concrete id that ``name`` refers to from inside ``within_package_id``.

        Only the package itself and its direct dependencies are considered;
        a name reachable only transitively is not found.

        Raises:
            DependencyNotFoundError: no match, or a dependency record is missing.
        """
        parent = self.require(within_package_id)
        if parent.name == name:
            return within_package_id
        for dependency_id in parent.dependencies:
            dependency = self.require(dependency_id)
            if dependency.name == name:
                return dependency_id
        raise DependencyNotFoundError(
            f"NPM package not found: {name} is not a dependency of {within_package_id}"
        )

    def package_for_path(self, path: str) -> Optional[NpmPackage]:
        """Registered package whose directory contains ``path``, if any."""
        target = os.path.abspath(path)
        best: Optional[NpmPackage] = None
        best_len = -1
        for package in self._packages.values():
            directory = self.path_for(package.id)
            if target == directory or target.startswith(directory + os.sep):
                if len(directory) > best_len:
                    best, best_len = package, len(directory)
        return best

    def __len__(self) -> int:
        return len(self._packages)
