"""Backend that asks the ``deno`` executable for module graph facts."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, Timer, redact
from resolution.classifier import classify
from resolution.errors import GraphError
from resolution.media_type import MediaType
from resolution.models import GraphEntry, LoadResult, NpmPackage, ResolutionKind, ResolutionResult
from registry.npm.layout import NpmPackageLayout

from .base import Loader, entry_to_resolution, node_resolution, read_materialized
from .cache import InfoCache, SingleFlight

logger = logging.getLogger(__name__)

_KINDS = {
    "esm": ResolutionKind.ESM,
    "npm": ResolutionKind.NPM,
    "node": ResolutionKind.NODE,
}


@dataclass
class NativeLoaderOptions:
    """Options for the ``deno info`` invocation."""

    deno_executable: str = Constants.DENO_EXECUTABLE
    cwd: Optional[str] = None
    config_path: Optional[str] = None
    import_map_url: Optional[str] = None
    lock_path: Optional[str] = None
    deno_dir: Optional[str] = None
    npm_registry: str = Constants.REGISTRY_URL_NPM
    timeout: int = Constants.REQUEST_TIMEOUT * 4


class DenoInfo:
    """Runs ``deno info --json`` and returns its parsed output."""

    def __init__(self, options: NativeLoaderOptions):
        self._options = options

    def command(self, specifier: Optional[str] = None) -> List[str]:
        opts = self._options
        args = [opts.deno_executable, "info", "--json"]
        if opts.config_path:
            args += ["--config", opts.config_path]
        if opts.import_map_url:
            args += ["--import-map", opts.import_map_url]
        if opts.lock_path:
            args += ["--lock", opts.lock_path]
        if specifier is not None:
            args.append(specifier)
        return args

    def environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["NO_COLOR"] = "1"
        if self._options.deno_dir:
            env[Constants.ENV_DENO_DIR] = self._options.deno_dir
        if self._options.npm_registry != Constants.REGISTRY_URL_NPM:
            env["NPM_CONFIG_REGISTRY"] = self._options.npm_registry
        return env

    async def run(self, specifier: Optional[str] = None) -> Dict[str, Any]:
        """Execute the command for ``specifier`` (or with none, for cache info).

        Raises:
            GraphError: the executable is missing, exits non-zero, times out
                or prints something that is not JSON.
        """
        args = self.command(specifier)
        with Timer() as timer:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *args,
                    cwd=self._options.cwd,
                    env=self.environment(),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as exc:
                raise GraphError(
                    f"Could not find the '{self._options.deno_executable}' executable. "
                    "Install Deno or use the portable loader.",
                    specifier=specifier,
                ) from exc

            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(), timeout=self._options.timeout
                )
            except asyncio.TimeoutError as exc:
                raise GraphError(
                    f"deno info timed out after {self._options.timeout}s", specifier=specifier
                ) from exc
            finally:
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()

        if is_debug_enabled(logger):
            logger.debug(
                "deno info finished",
                extra=extra_context(
                    event="subprocess_exit",
                    component="native_loader",
                    action="deno_info",
                    outcome="success" if proc.returncode == 0 else "error",
                    target=specifier,
                    duration_ms=timer.duration_ms()
                )
            )

        if proc.returncode != 0:
            message = redact(stderr.decode("utf-8", errors="replace").strip())
            raise GraphError(message or f"deno info exited with {proc.returncode}", specifier=specifier)
        try:
            return json.loads(stdout.decode("utf-8"))
        except ValueError as exc:
            raise GraphError(f"Invalid output from deno info: {exc}", specifier=specifier) from exc


def parse_module(data: Dict[str, Any]) -> GraphEntry:
    """One ``modules[]`` record of ``deno info --json`` as a graph entry."""
    specifier = data["specifier"]
    if "error" in data:
        return GraphEntry(specifier=specifier, error=data["error"])
    return GraphEntry(
        specifier=specifier,
        kind=_KINDS.get(data.get("kind", "esm"), ResolutionKind.ESM),
        media_type=MediaType.parse(data.get("mediaType")),
        local=data.get("local"),
        npm_package=data.get("npmPackage"),
    )


def parse_npm_packages(data: Dict[str, Any]) -> List[NpmPackage]:
    """The ``npmPackages`` map of ``deno info --json`` as package records."""
    return [
        NpmPackage(
            id=package_id,
            name=record["name"],
            version=record["version"],
            dependencies=tuple(record.get("dependencies") or ()),
        )
        for package_id, record in (data or {}).items()
    ]


class NativeLoader(Loader):
    """Resolves through ``deno info``; content comes from Deno's own cache."""

    def __init__(self, options: Optional[NativeLoaderOptions] = None, info: Optional[DenoInfo] = None):
        """Initialize the loader.

        Args:
            options: Invocation options.
            info: Command runner; replaced in tests.
        """
        self._options = options or NativeLoaderOptions()
        self._info = info or DenoInfo(self._options)
        self._cache = InfoCache()
        self._deno_dir = self._options.deno_dir or os.environ.get(Constants.ENV_DENO_DIR)
        self._deno_dir_flight: SingleFlight[str] = SingleFlight()
        self.layout = NpmPackageLayout(self._deno_dir or "", self._options.npm_registry)

    @property
    def cache(self) -> InfoCache:
        return self._cache

    async def _load(self, specifier: str) -> None:
        output = await self._info.run(specifier)
        modules = [parse_module(item) for item in output.get("modules") or []]
        packages = parse_npm_packages(output.get("npmPackages"))
        self._cache.commit(modules, output.get("redirects") or {})
        self.layout.register_all(packages)
        logger.debug(
            "Committed %d modules and %d npm packages for %s",
            len(modules), len(packages), specifier,
        )

    async def resolve(self, specifier: str) -> ResolutionResult:
        if classify(specifier) == ResolutionKind.NODE:
            return node_resolution(specifier)
        entry = await self._cache.get(specifier, self._load)
        return entry_to_resolution(entry)

    async def load_esm(self, specifier: str) -> LoadResult:
        entry = await self._cache.get(specifier, self._load)
        return read_materialized(specifier, entry)

    async def deno_dir(self) -> str:
        """Deno cache directory, asking ``deno info`` once when not configured."""
        if self._deno_dir is None:
            self._deno_dir = await self._deno_dir_flight.run("denoDir", self._query_deno_dir)
            self.layout.root = self._deno_dir
        return self._deno_dir

    async def _query_deno_dir(self) -> str:
        output = await self._info.run()
        deno_dir = output.get("denoDir")
        if not deno_dir:
            raise GraphError("deno info did not report a cache directory")
        return deno_dir

    async def package_dir(self, package_id: str) -> str:
        await self.deno_dir()
        return self.layout.path_for(package_id)

    async def package_id_from_name(self, name: str, parent_package_id: str) -> str:
        return self.layout.resolve_dependency_id(name, parent_package_id)

    async def close(self) -> None:
        await self._deno_dir_flight.cancel_all()
        await self._cache.close()
