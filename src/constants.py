"""Constants used in the project."""

import os
from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    RESOLUTION_ERROR = 3
    INTERNAL_ERROR = 4


class LoaderKind(Enum):
    """Resolution backends supported by the program.

    Args:
        Enum (string): Backend selector accepted from CLI and config.
    """

    NATIVE = "native"
    PORTABLE = "portable"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL_NPM = "https://registry.npmjs.org/"
    NPM_PACKUMENT_ACCEPT = (
        "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8, */*"
    )
    SUPPORTED_LOADERS = [LoaderKind.NATIVE.value, LoaderKind.PORTABLE.value]
    DEFAULT_LOADER = LoaderKind.NATIVE.value
    SETTINGS_FILE_NAMES = ["specload.yml", "specload.yaml"]
    SETTINGS_DIR = os.path.join(os.path.expanduser("~"), ".config", "specload")
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    USER_AGENT = "specload/0.1"

    # Deno executable and environment
    DENO_EXECUTABLE = "deno"
    ENV_DENO_DIR = "DENO_DIR"
    ENV_DENO_EXECUTABLE = "SPECLOAD_DENO"

    # Project environment variables
    ENV_LOG_LEVEL = "SPECLOAD_LOG_LEVEL"
    ENV_LOADER = "SPECLOAD_LOADER"
    ENV_CACHE_DIR = "SPECLOAD_CACHE_DIR"
    ENV_NPM_REGISTRY = "SPECLOAD_NPM_REGISTRY"
    ENV_SETTINGS = "SPECLOAD_CONFIG"
    DEFAULT_CACHE_DIR = os.path.join(os.path.expanduser("~"), ".cache", "specload")

    # Network
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_CACHE_TTL_SEC = 300
    MAX_REDIRECTS = 10
    MAX_RESPONSE_BYTES = 64 * 1024 * 1024
