"""Specifier classification, import maps and the shared resolution data model."""

from .classifier import classify, is_node_builtin, url_scheme
from .errors import (
    DependencyNotFoundError,
    FetchError,
    GraphError,
    ImportMapError,
    InvalidMappingTargetError,
    ModuleIOError,
    NotDownloadedError,
    ResolutionError,
    UnsupportedMediaTypeError,
    UnsupportedSchemeError,
)
from .import_map import ImportMap
from .media_type import MediaType
from .models import (
    EsmResolution,
    GraphEntry,
    LoadResult,
    NodeResolution,
    NpmPackage,
    NpmResolution,
    ResolutionKind,
    ResolutionResult,
)
from .resolver import cwd_url, resolve_specifier, rewrite

__all__ = [
    "classify",
    "is_node_builtin",
    "url_scheme",
    "DependencyNotFoundError",
    "FetchError",
    "GraphError",
    "ImportMapError",
    "InvalidMappingTargetError",
    "ModuleIOError",
    "NotDownloadedError",
    "ResolutionError",
    "UnsupportedMediaTypeError",
    "UnsupportedSchemeError",
    "ImportMap",
    "MediaType",
    "EsmResolution",
    "GraphEntry",
    "LoadResult",
    "NodeResolution",
    "NpmPackage",
    "NpmResolution",
    "ResolutionKind",
    "ResolutionResult",
    "cwd_url",
    "resolve_specifier",
    "rewrite",
]
