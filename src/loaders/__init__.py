"""Resolution backends.

Two interchangeable implementations of the ``Loader`` contract: the native
backend delegates to the ``deno`` executable, the portable backend fetches
and caches modules itself. ``create_loader`` picks one from configuration.
"""

from constants import Constants, LoaderKind
from resolution.errors import ResolutionError

from .base import Loader, entry_to_resolution
from .cache import InfoCache, SingleFlight
from .fetcher import RemoteFetcher
from .module_store import ModuleStore
from .native import DenoInfo, NativeLoader, NativeLoaderOptions
from .portable import PortableLoader, PortableLoaderOptions


def create_loader(config) -> Loader:
    """Build the backend named by ``config.loader``.

    Args:
        config: A ``LoaderConfig`` (or any object with the same attributes).

    Raises:
        ResolutionError: the loader name is not supported.
    """
    kind = (config.loader or Constants.DEFAULT_LOADER).lower()
    if kind == LoaderKind.NATIVE.value:
        return NativeLoader(NativeLoaderOptions(
            deno_executable=config.deno_executable or Constants.DENO_EXECUTABLE,
            cwd=config.cwd,
            config_path=config.config_path,
            import_map_url=config.import_map_url,
            lock_path=config.lock_path,
            deno_dir=config.deno_dir,
            npm_registry=config.npm_registry,
        ))
    if kind == LoaderKind.PORTABLE.value:
        return PortableLoader(PortableLoaderOptions(
            cache_dir=config.cache_dir,
            npm_registry=config.npm_registry,
            timeout=config.timeout,
        ))
    raise ResolutionError(
        f"Unsupported loader '{config.loader}'. Expected one of: "
        + ", ".join(Constants.SUPPORTED_LOADERS)
    )


__all__ = [
    "Loader",
    "entry_to_resolution",
    "InfoCache",
    "SingleFlight",
    "RemoteFetcher",
    "ModuleStore",
    "DenoInfo",
    "NativeLoader",
    "NativeLoaderOptions",
    "PortableLoader",
    "PortableLoaderOptions",
    "create_loader",
]
