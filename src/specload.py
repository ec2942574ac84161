"""specload: resolve and load module specifiers from the command line.

Prints one JSON record per specifier, in the order given.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import os
import sys
from typing import Any, Dict, List

from args import parse_args
from bundler.hooks import LoaderHooks
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from constants import Constants, ExitCodes
from loader_config import ConfigError, LoaderConfig
from loaders import create_loader
from resolution.errors import (
    FetchError,
    ImportMapError,
    ModuleIOError,
    NotDownloadedError,
    ResolutionError,
)

logger = logging.getLogger(__name__)


def _setup_logging(args: Any) -> None:
    """Configure logging based on CLI arguments."""
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()

    configure_logging()

    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


async def _process(hooks: LoaderHooks, specifier: str, importer, load: bool) -> Dict[str, Any]:
    resolution = await hooks.on_resolve(specifier, importer, "file")
    record: Dict[str, Any] = {"specifier": specifier}
    record.update(dataclasses.asdict(resolution))
    if load and not resolution.external:
        result = await hooks.on_load(resolution.path, resolution.namespace)
        record["loader"] = result.loader if result else None
        record["contents"] = result.contents if result else None
        record["watch_files"] = result.watch_files if result else []
    return record


async def run(args: Any, config: LoaderConfig) -> List[Dict[str, Any]]:
    """Resolve (and optionally load) every specifier in ``args`` concurrently."""
    import_map = config.load_import_map()
    importer = os.path.abspath(args.IMPORTER) if getattr(args, "IMPORTER", None) else None
    async with create_loader(config) as loader:
        hooks = LoaderHooks(loader, import_map, cwd=config.cwd)
        return list(await asyncio.gather(*(
            _process(hooks, specifier, importer, args.COMMAND == "load")
            for specifier in args.specifiers
        )))


def exit_code_for(exc: BaseException) -> ExitCodes:
    """Exit code reported for a failure."""
    if isinstance(exc, (ConfigError, ImportMapError, ModuleIOError)):
        return ExitCodes.FILE_ERROR
    if isinstance(exc, NotDownloadedError):
        return ExitCodes.INTERNAL_ERROR
    if isinstance(exc, FetchError):
        return ExitCodes.CONNECTION_ERROR
    if isinstance(exc, ResolutionError):
        return ExitCodes.RESOLUTION_ERROR
    return ExitCodes.INTERNAL_ERROR


def main(argv=None) -> None:
    """Main function of the program."""
    args = parse_args(argv)
    _setup_logging(args)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action="main")
        )

    try:
        config = LoaderConfig.from_args(args)
        records = asyncio.run(run(args, config))
    except (ConfigError, ResolutionError) as exc:
        logger.error("%s", exc)
        sys.exit(exit_code_for(exc).value)

    sys.stdout.write(json.dumps(records, indent=2) + "\n")
    sys.exit(ExitCodes.SUCCESS.value)


if __name__ == "__main__":
    main()
