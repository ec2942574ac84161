"""Import map parsing and specifier matching.

Follows the WICG import maps algorithm: specifier maps are normalized against
the map's own URL and sorted in descending code-unit order so the longest
matching prefix wins; scopes are tried most specific first before falling back
to the top-level ``imports``.
"""

from __future__ import annotations

import json
import logging
import urllib.parse
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .classifier import url_scheme
from .errors import ImportMapError

logger = logging.getLogger(__name__)

_SPECIAL_SCHEMES = {"http", "https", "file", "ws", "wss", "ftp"}

# Addresses are Optional: None marks a blocked entry
SpecifierMap = List[Tuple[str, Optional[str]]]


def parse_absolute_url(value: str) -> Optional[str]:
    """Return ``value`` if it is a well formed absolute URL, else None."""
    scheme = url_scheme(value)
    if scheme is None:
        return None
    try:
        parts = urllib.parse.urlsplit(value)
    except ValueError:
        return None
    if scheme in ("http", "https", "ws", "wss", "ftp") and not parts.netloc:
        return None
    if scheme == "file" and not parts.path:
        return None
    if not value[len(scheme) + 1:]:
        return None
    return value


def join_url(base: str, relative: str) -> Optional[str]:
    """Resolve ``relative`` against ``base``; None if the result is not a URL."""
    scheme = url_scheme(base)
    if scheme is None:
        return None
    if scheme not in urllib.parse.uses_relative:
        # Opaque bases such as npm:/preact@10/ only support plain suffixes
        if relative.startswith(("./", "../", "/")) or "/../" in relative:
            return None
        return base + relative
    try:
        joined = urllib.parse.urljoin(base, relative)
    except ValueError:
        return None
    return parse_absolute_url(joined)


def parse_url_like_specifier(specifier: str, base: str) -> Optional[str]:
    """Parse a specifier that is either relative-looking or an absolute URL."""
    if specifier.startswith(("/", "./", "../")):
        return join_url(base, specifier)
    return parse_absolute_url(specifier)


def _code_unit_key(value: str) -> List[int]:
    return list(value.encode("utf-16-be"))


def _sort_descending(items: Dict[str, Any]) -> List[Tuple[str, Any]]:
    return sorted(items.items(), key=lambda item: _code_unit_key(item[0]), reverse=True)


def _normalize_specifier_map(raw: Mapping[str, Any], base_url: str) -> SpecifierMap:
    normalized: Dict[str, Optional[str]] = {}
    for key, value in raw.items():
        if key == "":
            logger.warning("Invalid empty string specifier key in import map.")
            continue
        normalized_key = parse_url_like_specifier(key, base_url) or key
        if not isinstance(value, str):
            logger.warning("Invalid address %r for the specifier key %r.", value, key)
            normalized[normalized_key] = None
            continue
        address = parse_url_like_specifier(value, base_url)
        if address is None:
            logger.warning("Invalid address %r for the specifier key %r.", value, key)
            normalized[normalized_key] = None
            continue
        if key.endswith("/") and not address.endswith("/"):
            logger.warning(
                "Invalid address %r for package specifier key %r. "
                "Package addresses must end with \"/\".",
                value,
                key,
            )
            normalized[normalized_key] = None
            continue
        normalized[normalized_key] = address
    return _sort_descending(normalized)


class ImportMap:
    """A parsed, normalized import map."""

    def __init__(self, imports: SpecifierMap, scopes: List[Tuple[str, SpecifierMap]], base_url: str):
        self._imports = imports
        self._scopes = scopes
        self.base_url = base_url

    @classmethod
    def from_dict(cls, data: Any, base_url: str) -> "ImportMap":
        """Parse an import map object.

        Args:
            data: Decoded import map (``imports`` and/or ``scopes``).
            base_url: URL the map was loaded from; relative keys, addresses and
                scope prefixes resolve against it.

        Raises:
            ImportMapError: top-level structure is not valid.
        """
        if not isinstance(data, dict):
            raise ImportMapError("Import map JSON must be an object.")
        raw_imports = data.get("imports", {})
        if not isinstance(raw_imports, dict):
            raise ImportMapError("Import map's imports value must be an object.")
        raw_scopes = data.get("scopes", {})
        if not isinstance(raw_scopes, dict):
            raise ImportMapError("Import map's scopes value must be an object.")
        for key in data:
            if key not in ("imports", "scopes"):
                logger.warning("Invalid top-level key \"%s\" in import map. Only \"imports\" and \"scopes\" can be present.", key)

        imports = _normalize_specifier_map(raw_imports, base_url)
        scopes: Dict[str, SpecifierMap] = {}
        for prefix, scope_map in raw_scopes.items():
            if not isinstance(scope_map, dict):
                raise ImportMapError(f"The value for the \"{prefix}\" scope prefix must be an object.")
            prefix_url = join_url(base_url, prefix)
            if prefix_url is None:
                logger.warning("Invalid scope \"%s\" (parsed against base URL \"%s\").", prefix, base_url)
                continue
            scopes[prefix_url] = _normalize_specifier_map(scope_map, base_url)
        return cls(imports, _sort_descending(scopes), base_url)

    @classmethod
    def from_json(cls, text: str, base_url: str) -> "ImportMap":
        """Parse import map JSON text."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ImportMapError(f"Import map is not valid JSON: {exc}") from exc
        return cls.from_dict(data, base_url)

    def to_dict(self) -> Dict[str, Any]:
        """Normalized form, mainly for diagnostics."""
        return {
            "imports": dict(self._imports),
            "scopes": {prefix: dict(entries) for prefix, entries in self._scopes},
        }

    def resolve(self, specifier: str, referrer: str) -> Optional[str]:
        """Map ``specifier`` imported from ``referrer``; None if nothing matches.

        Raises:
            ImportMapError: the match is blocked by an invalid entry or would
                back-track above its prefix target.
        """
        as_url = parse_url_like_specifier(specifier, referrer)
        normalized = as_url or specifier

        for scope_prefix, scope_imports in self._scopes:
            if scope_prefix == referrer or (
                scope_prefix.endswith("/") and referrer.startswith(scope_prefix)
            ):
                result = _resolve_imports_match(normalized, as_url, scope_imports)
                if result is not None:
                    return result

        return _resolve_imports_match(normalized, as_url, self._imports)


def _resolve_imports_match(
    normalized: str, as_url: Optional[str], specifier_map: SpecifierMap
) -> Optional[str]:
    for key, address in specifier_map:
        if key == normalized:
            if address is None:
                raise ImportMapError(f"Blocked by null entry for \"{key}\"", specifier=normalized)
            return address

        if not key.endswith("/") or not normalized.startswith(key):
            continue
        if as_url is not None and url_scheme(as_url) not in _SPECIAL_SCHEMES:
            continue
        if address is None:
            raise ImportMapError(f"Blocked by null entry for \"{key}\"", specifier=normalized)

        after_prefix = normalized[len(key):]
        url = join_url(address, after_prefix)
        if url is None:
            raise ImportMapError(
                f"Failed to resolve the specifier \"{normalized}\" as its after-prefix "
                f"portion \"{after_prefix}\" could not be URL-parsed relative to the URL "
                f"prefix \"{address}\" mapped to by the prefix \"{key}\"",
                specifier=normalized,
            )
        if not url.startswith(address):
            raise ImportMapError(
                f"The specifier \"{normalized}\" backtracks above its prefix \"{key}\"",
                specifier=normalized,
            )
        return url
    return None
