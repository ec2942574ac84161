"""Argument parsing for the specload command line."""

import argparse
from constants import Constants


def _add_common_arguments(parser):
    parser.add_argument("specifiers",
                        metavar="SPECIFIER",
                        help="Module specifier(s), resolved against --importer or the working directory",
                        nargs="+")
    parser.add_argument("-i", "--importer",
                        dest="IMPORTER",
                        help="Path of the importing module",
                        action="store",
                        type=str)


def build_parser():
    """Build the argument parser (exposed for tests)."""
    parser = argparse.ArgumentParser(
        prog="specload",
        description="Resolve and load Deno-style module specifiers for bundlers",
        add_help=True,
    )

    parser.add_argument("-l", "--loader",
                        dest="LOADER",
                        help="Resolution backend (default: native)",
                        action="store",
                        type=str.lower,
                        choices=Constants.SUPPORTED_LOADERS)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to specload settings file (YAML or JSON)",
                        action="store",
                        type=str)
    parser.add_argument("--deno-config",
                        dest="DENO_CONFIG",
                        help="Path to deno.json or deno.jsonc",
                        action="store",
                        type=str)
    parser.add_argument("--import-map",
                        dest="IMPORT_MAP",
                        help="Import map file path or URL",
                        action="store",
                        type=str)
    parser.add_argument("--cwd",
                        dest="CWD",
                        help="Working directory used as referrer for entry points",
                        action="store",
                        type=str)
    parser.add_argument("--deno-dir",
                        dest="DENO_DIR",
                        help="Deno cache directory (native loader)",
                        action="store",
                        type=str)
    parser.add_argument("--cache-dir",
                        dest="CACHE_DIR",
                        help="Module cache directory (portable loader)",
                        action="store",
                        type=str)
    parser.add_argument("--npm-registry",
                        dest="NPM_REGISTRY",
                        help="npm registry URL",
                        action="store",
                        type=str)
    parser.add_argument("--lock",
                        dest="LOCK",
                        help="Lockfile passed to deno (native loader)",
                        action="store",
                        type=str)
    parser.add_argument("--timeout",
                        dest="TIMEOUT",
                        help="Network timeout in seconds",
                        action="store",
                        type=int)
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='WARNING')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)

    subparsers = parser.add_subparsers(dest="COMMAND", required=True)
    resolve_parser = subparsers.add_parser("resolve", help="Print where specifiers resolve to")
    _add_common_arguments(resolve_parser)
    load_parser = subparsers.add_parser("load", help="Resolve specifiers and print their compile-ready content")
    _add_common_arguments(load_parser)
    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)
