"""Backend contract shared by the native and portable loaders."""

from __future__ import annotations

import logging
import os
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from typing import Optional

from resolution.errors import GraphError, ModuleIOError, NotDownloadedError
from resolution.media_type import media_type_to_loader, transform_raw_into_content
from resolution.models import (
    EsmResolution,
    GraphEntry,
    LoadResult,
    NodeResolution,
    NpmPackage,
    NpmResolution,
    ResolutionKind,
    ResolutionResult,
)
from resolution.classifier import url_scheme
from resolution.npm_specifier import parse_npm_specifier
from registry.npm.layout import NpmPackageLayout

logger = logging.getLogger(__name__)


def file_url_to_path(url: str) -> str:
    """Local filesystem path of a ``file:`` URL."""
    parts = urllib.parse.urlsplit(url)
    return urllib.request.url2pathname(parts.path)


def entry_to_resolution(entry: GraphEntry) -> ResolutionResult:
    """Turn a terminal graph entry into the result handed to callers.

    Both backends go through here so equal graph facts always give equal
    results.

    Raises:
        GraphError: the entry records an error, or an npm entry has no
            package id.
    """
    if entry.error is not None:
        raise GraphError(entry.error, specifier=entry.specifier)

    if entry.kind == ResolutionKind.NPM:
        if not entry.npm_package:
            raise GraphError("npm module has no package id", specifier=entry.specifier)
        parsed = parse_npm_specifier(entry.specifier)
        return NpmResolution(
            package_id=entry.npm_package,
            package_name=parsed.name,
            sub_path=parsed.sub_path,
        )
    if entry.kind == ResolutionKind.NODE:
        return NodeResolution(path=entry.specifier)
    return EsmResolution(specifier=entry.specifier)


def node_resolution(specifier: str) -> NodeResolution:
    """Node built-ins resolve without consulting any graph; bare names gain ``node:``."""
    if url_scheme(specifier) is None:
        return NodeResolution(path=f"node:{specifier}")
    return NodeResolution(path=specifier)


def read_materialized(specifier: str, entry: GraphEntry) -> LoadResult:
    """Read a materialized ESM entry from disk and normalize its content.

    Raises:
        GraphError: the graph recorded an error for the module.
        NotDownloadedError: the entry has no local copy.
        ModuleIOError: the local copy cannot be read or decoded.
    """
    if entry.error is not None:
        raise GraphError(entry.error, specifier=specifier)
    if entry.kind != ResolutionKind.ESM:
        raise NotDownloadedError(
            f"[unreachable] Not an ESM module ({entry.kind.value}).", specifier=specifier
        )
    if not entry.local:
        raise NotDownloadedError("Module not downloaded yet.", specifier=specifier)

    loader = media_type_to_loader(entry.media_type)
    try:
        with open(entry.local, "rb") as handle:
            raw = handle.read()
    except OSError as exc:
        raise ModuleIOError(f"Failed to read {entry.local}: {exc}", specifier=specifier) from exc

    try:
        contents = transform_raw_into_content(raw, entry.media_type)
    except (UnicodeDecodeError, ValueError) as exc:
        raise ModuleIOError(
            f"Failed to decode {entry.media_type.value} module: {exc}", specifier=specifier
        ) from exc

    result = LoadResult(contents=contents, loader=loader)
    if specifier.startswith("file:"):
        result.watch_files = [file_url_to_path(specifier)]
    return result


class Loader(ABC):
    """Resolve specifiers and load ESM content.

    Implementations own their cache for the lifetime of one build session and
    are safe to call concurrently from tasks on one event loop.
    """

    layout: NpmPackageLayout

    @abstractmethod
    async def resolve(self, specifier: str) -> ResolutionResult:
        """Resolve an absolute specifier (import maps already applied)."""

    @abstractmethod
    async def load_esm(self, specifier: str) -> LoadResult:
        """Load a specifier previously resolved to an ESM result."""

    @abstractmethod
    async def package_dir(self, package_id: str) -> str:
        """Directory holding the files of a registry package."""

    @abstractmethod
    async def package_id_from_name(self, name: str, parent_package_id: str) -> str:
        """Concrete package id that ``name`` refers to from inside a package."""

    def package_for_path(self, path: str) -> Optional[NpmPackage]:
        """Registry package whose directory holds a local file, if any."""
        return self.layout.package_for_path(path)

    async def close(self) -> None:
        """Release network sessions and drop cached state."""

    async def __aenter__(self) -> "Loader":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def ensure_exists(path: str, specifier: str) -> None:
    """Raise GraphError when a local module is missing, mirroring the native graph."""
    if not os.path.isfile(path):
        raise GraphError(f"Module not found \"{specifier}\".", specifier=specifier)
