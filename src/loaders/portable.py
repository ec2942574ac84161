"""Backend that fetches and caches modules itself, without a Deno install."""

from __future__ import annotations

import base64
import binascii
import logging
import urllib.parse
from dataclasses import dataclass
from typing import Optional

from constants import Constants
from common.logging_utils import safe_url
from resolution.classifier import classify, url_scheme
from resolution.errors import GraphError, UnsupportedSchemeError
from resolution.media_type import map_content_type, media_type_from_path
from resolution.models import GraphEntry, LoadResult, ResolutionKind, ResolutionResult
from resolution.npm_specifier import canonical_npm_specifier, parse_npm_specifier
from registry.npm.client import NpmRegistryClient
from registry.npm.layout import NpmPackageLayout

from .base import (
    Loader,
    ensure_exists,
    entry_to_resolution,
    file_url_to_path,
    node_resolution,
    read_materialized,
)
from .cache import InfoCache
from .fetcher import RemoteFetcher
from .module_store import ModuleStore

logger = logging.getLogger(__name__)


@dataclass
class PortableLoaderOptions:
    """Options for the portable backend."""

    cache_dir: str = Constants.DEFAULT_CACHE_DIR
    npm_registry: str = Constants.REGISTRY_URL_NPM
    timeout: int = Constants.REQUEST_TIMEOUT


def decode_data_url(url: str):
    """Split a ``data:`` URL into (mime type, body bytes).

    Raises:
        GraphError: the URL has no payload separator or bad base64.
    """
    header, sep, payload = url[len("data:"):].partition(",")
    if not sep:
        raise GraphError("Malformed data: URL", specifier=url)
    params = header.split(";")
    mime = params[0].strip() or "text/plain"
    raw = urllib.parse.unquote_to_bytes(payload)
    if params[-1].strip().lower() == "base64":
        try:
            raw = base64.b64decode(raw, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise GraphError(f"Invalid base64 in data: URL: {exc}", specifier=url) from exc
    return mime, raw


class PortableLoader(Loader):
    """Resolves remote, data, file and npm specifiers with its own fetcher and store.

    Each HTTP hop is one request, so every redirect lands in the cache as an
    alias of its target. Bodies and redirects are persisted in a
    content-addressed store and reused by later sessions.
    """

    def __init__(
        self,
        options: Optional[PortableLoaderOptions] = None,
        fetcher: Optional[RemoteFetcher] = None,
    ):
        """Initialize the loader.

        Args:
            options: Cache location, registry and timeout.
            fetcher: HTTP client; one is created and owned when omitted.
        """
        self._options = options or PortableLoaderOptions()
        self._owns_fetcher = fetcher is None
        self._fetcher = fetcher or RemoteFetcher(timeout=self._options.timeout)
        self._store = ModuleStore(self._options.cache_dir)
        self._cache = InfoCache()
        self.layout = NpmPackageLayout(self._options.cache_dir, self._options.npm_registry)
        self._npm = NpmRegistryClient(self._fetcher, self.layout, self._options.npm_registry)

    @property
    def cache(self) -> InfoCache:
        return self._cache

    @property
    def store(self) -> ModuleStore:
        return self._store

    async def _load(self, specifier: str) -> None:
        scheme = url_scheme(specifier)
        if scheme in ("http", "https"):
            await self._load_remote(specifier)
        elif scheme == "data":
            self._load_data(specifier)
        elif scheme == "file":
            self._load_file(specifier)
        elif scheme == "npm":
            await self._load_npm(specifier)
        else:
            raise UnsupportedSchemeError(f"Unsupported scheme: '{scheme}:'", specifier=specifier)

    async def _load_remote(self, url: str) -> None:
        stored = self._store.get(url)
        if stored is not None:
            location = stored.headers.get("location")
            if location:
                self._cache.commit(redirects={url: location})
            else:
                self._cache.commit([GraphEntry(
                    specifier=url,
                    media_type=map_content_type(url, stored.headers.get("content-type")),
                    local=stored.path,
                )])
            return

        response = await self._fetcher.fetch_once(url)
        target = response.location
        if target is not None:
            if not self._fetcher.is_allowed_redirect(target):
                raise GraphError(f"Redirect to '{target}' is not allowed", specifier=url)
            self._store.put(url, b"", {"location": target})
            self._cache.commit(redirects={url: target})
            logger.debug("Redirect %s -> %s", safe_url(url), safe_url(target))
            return

        if response.status >= 300:
            logger.warning("Import %s failed with status %d", safe_url(url), response.status)
            self._cache.commit([GraphEntry(
                specifier=url,
                error=f"Import '{url}' failed: {response.status}",
            )])
            return

        headers = {}
        if response.content_type:
            headers["content-type"] = response.content_type
        stored = self._store.put(url, response.body, headers)
        self._cache.commit([GraphEntry(
            specifier=url,
            media_type=map_content_type(url, response.content_type),
            local=stored.path,
        )])

    def _load_data(self, url: str) -> None:
        mime, body = decode_data_url(url)
        stored = self._store.put(url, body, {"content-type": mime})
        self._cache.commit([GraphEntry(
            specifier=url,
            media_type=map_content_type(url, mime),
            local=stored.path,
        )])

    def _load_file(self, url: str) -> None:
        path = file_url_to_path(url)
        ensure_exists(path, url)
        self._cache.commit([GraphEntry(
            specifier=url,
            media_type=media_type_from_path(path),
            local=path,
        )])

    async def _load_npm(self, specifier: str) -> None:
        parsed = parse_npm_specifier(specifier)
        package = await self._npm.resolve_package(parsed.name, parsed.version)
        canonical = canonical_npm_specifier(package.name, package.version, parsed.sub_path)
        entry = GraphEntry(specifier=canonical, kind=ResolutionKind.NPM, npm_package=package.id)
        redirects = {specifier: canonical} if canonical != specifier else {}
        self._cache.commit([entry], redirects)

    async def resolve(self, specifier: str) -> ResolutionResult:
        if classify(specifier) == ResolutionKind.NODE:
            return node_resolution(specifier)
        entry = await self._cache.get(specifier, self._load)
        return entry_to_resolution(entry)

    async def load_esm(self, specifier: str) -> LoadResult:
        entry = await self._cache.get(specifier, self._load)
        return read_materialized(specifier, entry)

    async def package_dir(self, package_id: str) -> str:
        return await self._npm.ensure_downloaded(package_id)

    async def package_id_from_name(self, name: str, parent_package_id: str) -> str:
        if self.layout.get(parent_package_id) is not None:
            await self._npm.expand(parent_package_id)
        return self.layout.resolve_dependency_id(name, parent_package_id)

    async def close(self) -> None:
        await self._npm.close()
        await self._cache.close()
        if self._owns_fetcher:
            await self._fetcher.stop()
