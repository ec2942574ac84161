"""Data models shared by the classifier, the backends and the hook adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union

from .media_type import MediaType


class ResolutionKind(Enum):
    """How a resolved specifier is served."""
    ESM = "esm"
    NPM = "npm"
    NODE = "node"


@dataclass(frozen=True)
class EsmResolution:
    """A fetchable or readable module at an absolute URL."""
    specifier: str

    @property
    def kind(self) -> ResolutionKind:
        return ResolutionKind.ESM


@dataclass(frozen=True)
class NpmResolution:
    """A path inside one concrete npm package."""
    package_id: str
    package_name: str
    sub_path: str  # "" means the package root

    @property
    def kind(self) -> ResolutionKind:
        return ResolutionKind.NPM


@dataclass(frozen=True)
class NodeResolution:
    """A node built-in module, passed through to the host untouched."""
    path: str

    @property
    def kind(self) -> ResolutionKind:
        return ResolutionKind.NODE


ResolutionResult = Union[EsmResolution, NpmResolution, NodeResolution]


@dataclass
class GraphEntry:
    """Cached resolution outcome for one terminal specifier.

    Redirects are not stored on the entry; the owning cache keeps a separate
    redirect map from alias to target.
    """
    specifier: str
    kind: ResolutionKind = ResolutionKind.ESM
    media_type: MediaType = MediaType.UNKNOWN
    local: Optional[str] = None  # None until the content is on disk
    npm_package: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class NpmPackage:
    """One concrete (name, version) registry package and its direct dependencies."""
    id: str
    name: str
    version: str
    dependencies: Tuple[str, ...] = ()


@dataclass
class LoadResult:
    """Compile-ready module content handed back to the bundler."""
    contents: str
    loader: str
    watch_files: List[str] = field(default_factory=list)
