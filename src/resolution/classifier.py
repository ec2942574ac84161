"""Classification of absolute specifiers into resolution kinds."""

from __future__ import annotations

import re
from typing import FrozenSet, Optional

from .errors import UnsupportedSchemeError
from .models import ResolutionKind

_SCHEME_PATTERN = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")

ESM_SCHEMES: FrozenSet[str] = frozenset({"http", "https", "file", "data"})

NODE_BUILTIN_MODULES: FrozenSet[str] = frozenset({
    "assert",
    "assert/strict",
    "async_hooks",
    "buffer",
    "child_process",
    "cluster",
    "console",
    "constants",
    "crypto",
    "dgram",
    "diagnostics_channel",
    "dns",
    "dns/promises",
    "domain",
    "events",
    "fs",
    "fs/promises",
    "http",
    "http2",
    "https",
    "inspector",
    "module",
    "net",
    "os",
    "path",
    "path/posix",
    "path/win32",
    "perf_hooks",
    "process",
    "punycode",
    "querystring",
    "readline",
    "readline/promises",
    "repl",
    "stream",
    "stream/consumers",
    "stream/promises",
    "stream/web",
    "string_decoder",
    "sys",
    "timers",
    "timers/promises",
    "tls",
    "trace_events",
    "tty",
    "url",
    "util",
    "util/types",
    "v8",
    "vm",
    "wasi",
    "worker_threads",
    "zlib",
})


def url_scheme(specifier: str) -> Optional[str]:
    """Return the lower-cased scheme of a URL-shaped string, or None."""
    match = _SCHEME_PATTERN.match(specifier)
    if not match:
        return None
    return match.group(1).lower()


def is_node_builtin(name: str) -> bool:
    """True for bare node built-in names such as ``fs`` or ``fs/promises``."""
    return name in NODE_BUILTIN_MODULES


def classify(specifier: str) -> ResolutionKind:
    """Decide how a specifier is resolved. Pure, performs no I/O.

    Raises:
        UnsupportedSchemeError: for any scheme other than npm, node, http,
            https, file and data, and for bare names that are not node
            built-ins.
    """
    scheme = url_scheme(specifier)
    if scheme == "npm":
        return ResolutionKind.NPM
    if scheme == "node" or (scheme is None and is_node_builtin(specifier)):
        return ResolutionKind.NODE
    if scheme in ESM_SCHEMES:
        return ResolutionKind.ESM
    if scheme is None:
        raise UnsupportedSchemeError(
            f"Relative import path \"{specifier}\" not prefixed with / or ./ or ../ "
            "and not in the import map",
            specifier=specifier,
        )
    raise UnsupportedSchemeError(f"Unsupported scheme: '{scheme}:'", specifier=specifier)
