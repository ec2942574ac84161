"""NPM registry client: packuments, version selection and tarball materialization."""

from __future__ import annotations

import base64
import hashlib
import io
import json
import logging
import os
import shutil
import tarfile
import tempfile
from typing import Any, Dict, Optional, Set

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, Timer, safe_url
from loaders.cache import SingleFlight
from loaders.fetcher import RemoteFetcher
from resolution.errors import GraphError
from resolution.models import NpmPackage
from resolution.npm_specifier import format_package_id

from .layout import NpmPackageLayout
from .resolver import pick_version

logger = logging.getLogger(__name__)


def packument_url(registry_url: str, name: str) -> str:
    """Registry URL of a package document; scoped names keep ``@`` and encode the slash."""
    encoded = name.replace("/", "%2f") if name.startswith("@") else name
    return registry_url.rstrip("/") + "/" + encoded


def verify_integrity(body: bytes, dist: Dict[str, Any], package_id: str) -> None:
    """Check a tarball against ``dist.integrity`` (SRI) or ``dist.shasum``.

    Raises:
        GraphError: the digest does not match.
    """
    integrity = dist.get("integrity")
    if integrity:
        for candidate in str(integrity).split():
            algorithm, _, expected = candidate.partition("-")
            if algorithm not in ("sha512", "sha384", "sha256", "sha1"):
                continue
            actual = base64.b64encode(hashlib.new(algorithm, body).digest()).decode("ascii")
            if actual == expected:
                return
        raise GraphError(f"Tarball checksum did not match for {package_id}")
    shasum = dist.get("shasum")
    if shasum and hashlib.sha1(body).hexdigest() != str(shasum).lower():
        raise GraphError(f"Tarball checksum did not match for {package_id}")


def extract_tarball(body: bytes, destination: str) -> None:
    """Extract a package tarball into ``destination``, dropping the top-level directory.

    Raises:
        GraphError: the archive is unreadable or a member escapes ``destination``.
    """
    root = os.path.abspath(destination)
    try:
        with tarfile.open(fileobj=io.BytesIO(body), mode="r:*") as archive:
            for member in archive.getmembers():
                if not (member.isfile() or member.isdir()):
                    continue
                parts = member.name.replace("\\", "/").split("/", 1)
                if len(parts) < 2 or not parts[1]:
                    continue
                target = os.path.abspath(os.path.join(root, parts[1]))
                if target != root and not target.startswith(root + os.sep):
                    raise GraphError(f"Tarball entry escapes package directory: {member.name}")
                if member.isdir():
                    os.makedirs(target, exist_ok=True)
                    continue
                os.makedirs(os.path.dirname(target), exist_ok=True)
                source = archive.extractfile(member)
                if source is None:
                    continue
                with source, open(target, "wb") as handle:
                    shutil.copyfileobj(source, handle)
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise GraphError(f"Failed to extract npm tarball: {exc}") from exc


class NpmRegistryClient:
    """Resolves npm requests to concrete packages and materializes them on disk.

    Packuments and package downloads are memoized for the session and
    de-duplicated while in flight. A package's direct dependencies are
    registered with the layout when the package is first resolved; their own
    dependencies are resolved only when something imports from inside them.
    """

    def __init__(
        self,
        fetcher: RemoteFetcher,
        layout: NpmPackageLayout,
        registry_url: str = Constants.REGISTRY_URL_NPM,
    ):
        """Initialize the client.

        Args:
            fetcher: HTTP client shared with the loader.
            layout: Package registry and directory layout to populate.
            registry_url: Base URL of the npm registry.
        """
        self._fetcher = fetcher
        self._layout = layout
        self._registry_url = registry_url
        self._packuments: Dict[str, Dict[str, Any]] = {}
        self._packument_flight: SingleFlight[Dict[str, Any]] = SingleFlight()
        self._download_flight: SingleFlight[str] = SingleFlight()
        self._expand_flight: SingleFlight[NpmPackage] = SingleFlight()
        self._expanded: Set[str] = set()

    @property
    def layout(self) -> NpmPackageLayout:
        return self._layout

    async def packument(self, name: str) -> Dict[str, Any]:
        """Registry document for ``name``.

        Raises:
            GraphError: the package does not exist or the registry fails.
        """
        cached = self._packuments.get(name)
        if cached is not None:
            return cached
        return await self._packument_flight.run(name, lambda: self._fetch_packument(name))

    async def _fetch_packument(self, name: str) -> Dict[str, Any]:
        url = packument_url(self._registry_url, name)
        with Timer() as timer:
            response = await self._fetcher.fetch_following(
                url, headers={"Accept": Constants.NPM_PACKUMENT_ACCEPT}
            )
        if response.status == 404:
            logger.warning(
                "NPM package not found",
                extra=extra_context(
                    event="http_response",
                    outcome="not_found",
                    status_code=404,
                    target=safe_url(url),
                    package_manager="npm"
                )
            )
            raise GraphError(f"npm package '{name}' does not exist.")
        if response.status >= 400:
            raise GraphError(f"Registry returned {response.status} for npm package '{name}'")
        try:
            data = json.loads(response.body.decode("utf-8"))
        except ValueError as exc:
            raise GraphError(f"Invalid packument for npm package '{name}': {exc}") from exc

        if is_debug_enabled(logger):
            logger.debug(
                "Fetched packument",
                extra=extra_context(
                    event="function_exit",
                    component="npm_client",
                    action="fetch_packument",
                    outcome="success",
                    duration_ms=timer.duration_ms(),
                    count=len(data.get("versions") or {}),
                    package_manager="npm"
                )
            )
        self._packuments[name] = data
        return data

    async def _version_record(self, name: str, version: str) -> Dict[str, Any]:
        data = await self.packument(name)
        record = (data.get("versions") or {}).get(version)
        if record is None:
            raise GraphError(f"npm package '{name}' has no version {version}")
        return record

    async def resolve_package(self, name: str, requested: Optional[str]) -> NpmPackage:
        """Pick a version for ``name@requested`` and register it with its direct dependencies.

        Raises:
            GraphError: no matching version, or a dependency cannot be resolved.
        """
        version = pick_version(name, requested, await self.packument(name))
        return await self.expand(format_package_id(name, version))

    async def expand(self, package_id: str) -> NpmPackage:
        """Register ``package_id`` together with its resolved direct dependencies."""
        if package_id in self._expanded:
            return self._layout.require(package_id)
        return await self._expand_flight.run(package_id, lambda: self._expand(package_id))

    async def _expand(self, package_id: str) -> NpmPackage:
        name, _, version = package_id.rpartition("@")
        record = await self._version_record(name, version)
        dependency_ids = []
        for dep_name, dep_range in sorted((record.get("dependencies") or {}).items()):
            dep_version = pick_version(dep_name, dep_range, await self.packument(dep_name))
            dep_id = format_package_id(dep_name, dep_version)
            if self._layout.get(dep_id) is None:
                # Placeholder until something imports from inside the dependency
                self._layout.register(NpmPackage(id=dep_id, name=dep_name, version=dep_version))
            dependency_ids.append(dep_id)

        package = NpmPackage(
            id=package_id, name=name, version=version, dependencies=tuple(dependency_ids)
        )
        self._layout.register(package)
        self._expanded.add(package_id)
        logger.debug("Registered %s with %d dependencies", package_id, len(dependency_ids))
        return package

    async def ensure_downloaded(self, package_id: str) -> str:
        """Directory of ``package_id``, downloading and extracting it if needed."""
        directory = self._layout.path_for(package_id)
        if os.path.isdir(directory):
            return directory
        return await self._download_flight.run(package_id, lambda: self._download(package_id))

    async def _download(self, package_id: str) -> str:
        package = self._layout.require(package_id)
        record = await self._version_record(package.name, package.version)
        dist = record.get("dist") or {}
        tarball = dist.get("tarball")
        if not tarball:
            raise GraphError(f"npm package {package_id} has no tarball")

        response = await self._fetcher.fetch_following(tarball)
        if response.status >= 400:
            raise GraphError(f"Registry returned {response.status} for tarball of {package_id}")
        verify_integrity(response.body, dist, package_id)

        directory = self._layout.path_for(package_id)
        parent = os.path.dirname(directory)
        os.makedirs(parent, exist_ok=True)
        staging = tempfile.mkdtemp(dir=parent, prefix=".tmp-")
        try:
            extract_tarball(response.body, staging)
            try:
                os.replace(staging, directory)
            except OSError:
                # Another process finished the same package first
                if not os.path.isdir(directory):
                    raise
        finally:
            if os.path.isdir(staging):
                shutil.rmtree(staging, ignore_errors=True)

        logger.info("Downloaded %s", package_id)
        return directory

    async def close(self) -> None:
        """Cancel in-flight registry work."""
        await self._packument_flight.cancel_all()
        await self._download_flight.cancel_all()
        await self._expand_flight.cancel_all()
