"""Parsing of ``npm:`` specifiers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .errors import GraphError


@dataclass(frozen=True)
class NpmSpecifier:
    """Name, requested version (range or tag) and sub path of an npm specifier."""
    name: str
    version: Optional[str]
    path: Optional[str]  # without the leading slash

    @property
    def sub_path(self) -> str:
        return self.path or ""


def parse_npm_specifier(specifier: str) -> NpmSpecifier:
    """Split ``npm:[/]name[@version][/path]`` into its parts.

    Scoped names (``@scope/name``) keep their scope. Accepts both the
    user-facing form (``npm:preact@10/hooks``) and the canonical form Deno
    reports after resolution (``npm:/preact@10.13.0/hooks``).

    Raises:
        GraphError: the specifier is not a well formed npm specifier.
    """
    if not specifier.startswith("npm:"):
        raise GraphError("Invalid npm specifier", specifier=specifier)
    path = specifier[len("npm:"):]
    start = 1 if path.startswith("/") else 0

    if path[start:start + 1] == "@":
        first_slash = path.find("/", start)
        if first_slash == -1:
            raise GraphError(f"Invalid npm specifier: {specifier}", specifier=specifier)
        path_start = path.find("/", first_slash + 1)
        version_start = path.find("@", first_slash + 1)
    else:
        path_start = path.find("/", start)
        version_start = path.find("@", start)

    if path_start == -1:
        path_start = len(path)
    if version_start == -1:
        version_start = len(path)
    if version_start > path_start:
        version_start = path_start
    if start == version_start:
        raise GraphError(f"Invalid npm specifier: {specifier}", specifier=specifier)

    name = path[start:version_start]
    version = None if version_start == path_start else path[version_start + 1:path_start]
    sub_path = path[path_start + 1:] if path_start < len(path) else None
    return NpmSpecifier(name=name, version=version or None, path=sub_path or None)


def format_package_id(name: str, version: str) -> str:
    """Package id used for registry packages: ``name@version``."""
    return f"{name}@{version}"


def canonical_npm_specifier(name: str, version: str, sub_path: str = "") -> str:
    """Canonical ``npm:/name@version[/path]`` form recorded in the graph."""
    base = f"npm:/{format_package_id(name, version)}"
    return f"{base}/{sub_path}" if sub_path else base
