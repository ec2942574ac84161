"""Loader configuration: YAML settings, environment and CLI overrides.

Precedence, lowest first: built-in defaults, the YAML settings file, the
environment, then CLI arguments.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import urllib.parse
import urllib.request
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

import yaml

from constants import Constants
from common import jsonc
from common.http_client import robust_get
from common.logging_utils import safe_url
from resolution.classifier import url_scheme
from resolution.errors import ImportMapError
from resolution.import_map import ImportMap, join_url
from resolution.resolver import cwd_url

logger = logging.getLogger(__name__)

_ENV_OVERRIDES = {
    "loader": Constants.ENV_LOADER,
    "cache_dir": Constants.ENV_CACHE_DIR,
    "deno_dir": Constants.ENV_DENO_DIR,
    "npm_registry": Constants.ENV_NPM_REGISTRY,
    "deno_executable": Constants.ENV_DENO_EXECUTABLE,
}


class ConfigError(Exception):
    """The settings file or a referenced config file is unusable."""


@dataclass
class LoaderConfig:
    """Everything needed to build a backend and its import map."""

    loader: str = Constants.DEFAULT_LOADER
    import_map: Optional[Dict[str, Any]] = None
    import_map_url: Optional[str] = None
    config_path: Optional[str] = None
    cwd: Optional[str] = None
    deno_executable: str = Constants.DENO_EXECUTABLE
    deno_dir: Optional[str] = None
    cache_dir: str = Constants.DEFAULT_CACHE_DIR
    npm_registry: str = Constants.REGISTRY_URL_NPM
    timeout: int = Constants.REQUEST_TIMEOUT
    lock_path: Optional[str] = None

    def update(self, values: Dict[str, Any]) -> None:
        """Overwrite known fields from ``values``; None and unknown keys are ignored."""
        known = {f.name for f in fields(self)}
        for key, value in values.items():
            if value is None:
                continue
            if key not in known:
                logger.warning("Ignoring unknown setting '%s'", key)
                continue
            setattr(self, key, value)
        self.timeout = int(self.timeout)
        self.loader = str(self.loader).lower()
        if self.loader not in Constants.SUPPORTED_LOADERS:
            raise ConfigError(
                f"Unsupported loader '{self.loader}'. Expected one of: "
                + ", ".join(Constants.SUPPORTED_LOADERS)
            )

    @classmethod
    def load(
        cls,
        settings_path: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> "LoaderConfig":
        """Build a config from every source.

        Args:
            settings_path: Explicit YAML settings file; otherwise the
                default locations are searched.
            overrides: CLI values, highest precedence.
            environ: Environment mapping; defaults to ``os.environ``.
        """
        env = os.environ if environ is None else environ
        config = cls()
        path = settings_path or env.get(Constants.ENV_SETTINGS) or find_settings_file()
        if path:
            config.update(load_settings_file(path))
        config.update({key: env.get(var) for key, var in _ENV_OVERRIDES.items()})
        config.update(overrides or {})
        return config

    @classmethod
    def from_args(cls, args, environ: Optional[Dict[str, str]] = None) -> "LoaderConfig":
        """Build a config from parsed CLI arguments."""
        overrides = {
            "loader": getattr(args, "LOADER", None),
            "import_map_url": getattr(args, "IMPORT_MAP", None),
            "config_path": getattr(args, "DENO_CONFIG", None),
            "cwd": getattr(args, "CWD", None),
            "deno_dir": getattr(args, "DENO_DIR", None),
            "cache_dir": getattr(args, "CACHE_DIR", None),
            "npm_registry": getattr(args, "NPM_REGISTRY", None),
            "timeout": getattr(args, "TIMEOUT", None),
            "lock_path": getattr(args, "LOCK", None),
        }
        return cls.load(getattr(args, "CONFIG", None), overrides, environ)

    def base_url(self) -> str:
        return cwd_url(self.cwd)

    def load_import_map(self) -> Optional[ImportMap]:
        """Import map from inline settings, ``import_map_url`` or the deno config file.

        Raises:
            ImportMapError: the map cannot be fetched or parsed.
            ConfigError: the deno config file cannot be read.
        """
        if self.import_map is not None:
            return ImportMap.from_dict(self.import_map, self.base_url())
        if self.import_map_url:
            return fetch_import_map(self._absolute(self.import_map_url))
        if self.config_path:
            return import_map_from_config_file(self._path(self.config_path))
        return None

    def _path(self, path: str) -> str:
        return os.path.join(self.cwd or os.getcwd(), path)

    def _absolute(self, location: str) -> str:
        if url_scheme(location) in ("http", "https", "file"):
            return location
        return pathlib.Path(os.path.abspath(self._path(location))).as_uri()


def find_settings_file() -> Optional[str]:
    """First existing settings file in the working directory or the user config dir."""
    for directory in (os.getcwd(), Constants.SETTINGS_DIR):
        for name in Constants.SETTINGS_FILE_NAMES:
            candidate = os.path.join(directory, name)
            if os.path.isfile(candidate):
                return candidate
    return None


def load_settings_file(path: str) -> Dict[str, Any]:
    """Read a YAML (or JSON) settings file; the ``loader`` section wins if present."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            if path.lower().endswith(".json"):
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Settings file not found: {path}") from exc
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to load settings file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping")
    section = data.get("loader")
    if isinstance(section, dict):
        return section
    return data


def fetch_import_map(url: str) -> ImportMap:
    """Load an import map from a ``file:`` or http(s) URL; addresses resolve against it."""
    if url.startswith("file:"):
        path = pathlib.Path(_file_url_path(url))
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ImportMapError(f"Failed to read import map {path}: {exc}") from exc
    else:
        status, _, text = robust_get(url)
        if status != 200:
            raise ImportMapError(
                f"Failed to fetch import map {safe_url(url)}: "
                + (f"HTTP {status}" if status else text)
            )
    logger.debug("Loaded import map from %s", safe_url(url))
    return ImportMap.from_json(text, url)


def import_map_from_config_file(path: str) -> Optional[ImportMap]:
    """Import map named by a deno.json(c) ``importMap`` key, or its inline ``imports``/``scopes``."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = jsonc.loads(fh.read())
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    except ValueError as exc:
        raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain an object")

    config_url = pathlib.Path(os.path.abspath(path)).as_uri()
    target = data.get("importMap")
    if isinstance(target, str):
        resolved = join_url(config_url, target)
        if resolved is None:
            raise ImportMapError(f"Invalid importMap '{target}' in {path}")
        return fetch_import_map(resolved)
    if "imports" in data or "scopes" in data:
        inline = {key: data[key] for key in ("imports", "scopes") if key in data}
        return ImportMap.from_dict(inline, config_url)
    return None


def _file_url_path(url: str) -> str:
    return urllib.request.url2pathname(urllib.parse.urlsplit(url).path)
