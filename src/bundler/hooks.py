"""Resolve and load hooks connecting a bundler to a resolution backend."""

from __future__ import annotations

import logging
import os
from typing import Optional

from common.logging_utils import extra_context, is_debug_enabled, Timer
from loaders.base import Loader
from resolution.classifier import ESM_SCHEMES, classify, is_node_builtin, url_scheme
from resolution.errors import ResolutionError
from resolution.import_map import ImportMap
from resolution.models import LoadResult, ResolutionKind
from resolution.resolver import cwd_url, is_url_like, rewrite

from .namespaces import PluginResolution, resolution_to_url, split_package_name, url_to_resolution

logger = logging.getLogger(__name__)

_OWNED_SCHEMES = set(ESM_SCHEMES) | {"npm", "node"}


class LoaderHooks:
    """Bundler-facing adapter over one ``Loader``.

    ``on_resolve`` applies the import map, classifies the result and asks the
    backend; ``on_load`` serves ESM content. Namespaces this engine does not
    own are left to other plugins of the host.
    """

    def __init__(
        self,
        loader: Loader,
        import_map: Optional[ImportMap] = None,
        cwd: Optional[str] = None,
    ):
        """Initialize the hooks.

        Args:
            loader: Backend answering resolve and load questions.
            import_map: Import map applied before classification.
            cwd: Directory used as referrer for entry points.
        """
        self.loader = loader
        self.import_map = import_map
        self._cwd_url = cwd_url(cwd)

    async def on_resolve(
        self, specifier: str, importer: Optional[str] = None, namespace: str = "file"
    ) -> Optional[PluginResolution]:
        """Resolve an import statement.

        Args:
            specifier: The string as written in the import.
            importer: Path of the importing module within ``namespace``; None
                for entry points.
            namespace: Namespace of the importing module.

        Returns:
            Where the bundler should load the module from.

        Raises:
            ResolutionError: any failure, with specifier and importer attached.
        """
        referrer = resolution_to_url(importer, namespace) if importer else self._cwd_url
        with Timer() as timer:
            try:
                result = await self._resolve(specifier, importer, namespace, referrer)
            except ResolutionError as exc:
                raise exc.with_context(specifier=specifier, importer=referrer)

        if is_debug_enabled(logger):
            logger.debug(
                "Resolved import",
                extra=extra_context(
                    event="resolve",
                    component="hooks",
                    action="on_resolve",
                    outcome="external" if result and result.external else "success",
                    target=specifier,
                    duration_ms=timer.duration_ms()
                )
            )
        return result

    async def _resolve(
        self, specifier: str, importer: Optional[str], namespace: str, referrer: str
    ) -> Optional[PluginResolution]:
        if namespace == "file" and importer and not is_url_like(specifier):
            package = self.loader.package_for_path(importer)
            if package is not None and not is_node_builtin(specifier):
                name, sub_path = split_package_name(specifier)
                dependency_id = await self.loader.package_id_from_name(name, package.id)
                directory = await self.loader.package_dir(dependency_id)
                return PluginResolution(path=_join(directory, sub_path))

        url = rewrite(specifier, self.import_map, referrer)
        scheme = url_scheme(url)
        if scheme is not None and scheme not in _OWNED_SCHEMES:
            # computed:, virtual: and friends belong to other plugins
            return PluginResolution(path=url[len(scheme) + 1:], namespace=scheme)

        classify(url)
        resolution = await self.loader.resolve(url)
        if resolution.kind == ResolutionKind.ESM:
            return url_to_resolution(resolution.specifier)
        if resolution.kind == ResolutionKind.NPM:
            directory = await self.loader.package_dir(resolution.package_id)
            return PluginResolution(path=_join(directory, resolution.sub_path))
        return PluginResolution(path=resolution.path, namespace="node", external=True)

    async def on_load(self, path: str, namespace: str = "file") -> Optional[LoadResult]:
        """Load module content, or return None for modules the host should load itself."""
        if namespace not in ESM_SCHEMES:
            return None
        if namespace == "file" and self.loader.package_for_path(path) is not None:
            return None
        url = resolution_to_url(path, namespace)
        try:
            return await self.loader.load_esm(url)
        except ResolutionError as exc:
            raise exc.with_context(specifier=url)


def _join(directory: str, sub_path: str) -> str:
    if not sub_path:
        return directory
    return os.path.join(directory, *sub_path.split("/"))
