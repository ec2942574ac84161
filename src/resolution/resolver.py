"""Import-map-aware rewriting that runs before classification."""

from __future__ import annotations

import logging
import os
import pathlib
from typing import Optional, Tuple

from .classifier import classify, url_scheme
from .errors import InvalidMappingTargetError, ResolutionError
from .import_map import ImportMap, parse_absolute_url, parse_url_like_specifier
from .models import ResolutionKind

logger = logging.getLogger(__name__)


def cwd_url(cwd: Optional[str] = None) -> str:
    """``file:`` URL of a directory, with the trailing slash relative joins need."""
    path = pathlib.Path(cwd or os.getcwd()).resolve()
    url = path.as_uri()
    return url if url.endswith("/") else url + "/"


def rewrite(specifier: str, import_map: Optional[ImportMap], base_url: str) -> str:
    """Apply the import map, then resolve relative specifiers against ``base_url``.

    ``base_url`` is the importing module's URL and doubles as the scope
    context for the import map. A specifier without a mapping is not an
    error: relative specifiers are joined to the base and everything else is
    returned unchanged for the classifier to judge.

    Raises:
        InvalidMappingTargetError: the mapped target is not an absolute URL.
        ImportMapError: the import map blocks the specifier.
    """
    if import_map is not None:
        mapped = import_map.resolve(specifier, base_url)
        if mapped is not None:
            if parse_absolute_url(mapped) is None:
                raise InvalidMappingTargetError(
                    f"Import map target \"{mapped}\" is not a valid absolute URL",
                    specifier=specifier,
                    importer=base_url,
                )
            logger.debug("Import map rewrote %s -> %s", specifier, mapped)
            return mapped

    resolved = parse_url_like_specifier(specifier, base_url)
    return resolved if resolved is not None else specifier


def resolve_specifier(
    specifier: str, import_map: Optional[ImportMap], base_url: str
) -> Tuple[str, ResolutionKind]:
    """Rewrite and classify in one step."""
    url = rewrite(specifier, import_map, base_url)
    try:
        return url, classify(url)
    except ResolutionError as exc:
        raise exc.with_context(specifier=specifier, importer=base_url)


def is_url_like(specifier: str) -> bool:
    """True for relative paths and strings carrying a scheme."""
    return specifier.startswith(("/", "./", "../")) or url_scheme(specifier) is not None
