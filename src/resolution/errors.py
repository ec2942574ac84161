"""Error taxonomy for specifier resolution and module loading."""

from __future__ import annotations

from typing import Optional


class ResolutionError(Exception):
    """Base class for every failure raised by the resolution engine.

    Carries the originally requested specifier and, when known, the URL of the
    importing module so the host can point at the exact import statement.
    """

    def __init__(
        self,
        message: str,
        *,
        specifier: Optional[str] = None,
        importer: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.specifier = specifier
        self.importer = importer

    def with_context(
        self, specifier: Optional[str] = None, importer: Optional[str] = None
    ) -> "ResolutionError":
        """Fill in specifier/importer if they are not set yet and return self."""
        if self.specifier is None and specifier is not None:
            self.specifier = specifier
        if self.importer is None and importer is not None:
            self.importer = importer
        return self

    def __str__(self) -> str:
        text = self.message
        if self.specifier is not None and self.specifier not in text:
            text = f"{text} (specifier: {self.specifier})"
        if self.importer:
            text = f"{text} (imported from {self.importer})"
        return text


class UnsupportedSchemeError(ResolutionError):
    """The specifier's scheme is not one the engine can resolve."""


class InvalidMappingTargetError(ResolutionError):
    """An import map mapped a specifier to something that is not an absolute URL."""


class ImportMapError(ResolutionError):
    """The import map is malformed, or resolution hit a blocked/back-tracking entry."""


class GraphError(ResolutionError):
    """The module graph reported an error for a specifier.

    Wraps network failures, HTTP error statuses, registry lookups, parse
    failures and failures of the external graph process.
    """


class NotDownloadedError(ResolutionError):
    """Load was requested for content that was never materialized.

    Signals a call-ordering defect (load before a successful resolve); callers
    must not recover from it.
    """


class DependencyNotFoundError(ResolutionError):
    """A package name is not reachable from the given registry package."""


class ModuleIOError(ResolutionError):
    """Reading materialized module content from disk failed."""


class UnsupportedMediaTypeError(ResolutionError):
    """The module's media type has no compile loader."""


class FetchError(GraphError):
    """Transport failure talking to a module host or registry; never cached."""
