"""Media type inference and raw content normalization.

Media type names match the ones reported by ``deno info --json`` so graph
entries produced by either backend share one vocabulary.
"""

from __future__ import annotations

import json
import posixpath
import urllib.parse
from enum import Enum
from typing import Optional

from .errors import UnsupportedMediaTypeError


class MediaType(Enum):
    """Module media types."""

    JAVASCRIPT = "JavaScript"
    JSX = "JSX"
    MJS = "Mjs"
    CJS = "Cjs"
    TYPESCRIPT = "TypeScript"
    MTS = "Mts"
    CTS = "Cts"
    DTS = "Dts"
    DMTS = "Dmts"
    DCTS = "Dcts"
    TSX = "TSX"
    JSON = "Json"
    WASM = "Wasm"
    TS_BUILD_INFO = "TsBuildInfo"
    SOURCE_MAP = "SourceMap"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MediaType":
        """Map a reported media type name to the enum, defaulting to UNKNOWN."""
        for member in cls:
            if member.value == value:
                return member
        return cls.UNKNOWN


_EXTENSIONS = {
    ".ts": MediaType.TYPESCRIPT,
    ".mts": MediaType.MTS,
    ".cts": MediaType.CTS,
    ".tsx": MediaType.TSX,
    ".js": MediaType.JAVASCRIPT,
    ".jsx": MediaType.JSX,
    ".mjs": MediaType.MJS,
    ".cjs": MediaType.CJS,
    ".json": MediaType.JSON,
    ".wasm": MediaType.WASM,
    ".tsbuildinfo": MediaType.TS_BUILD_INFO,
    ".map": MediaType.SOURCE_MAP,
}

_TYPESCRIPT_CONTENT_TYPES = {
    "application/typescript",
    "text/typescript",
    "video/vnd.dlna.mpeg-tts",
    "video/mp2t",
    "application/x-typescript",
}

_JAVASCRIPT_CONTENT_TYPES = {
    "application/javascript",
    "text/javascript",
    "application/ecmascript",
    "text/ecmascript",
    "application/x-javascript",
    "application/node",
}


def media_type_from_path(path: str) -> MediaType:
    """Infer a media type from a file path or URL path."""
    name = posixpath.basename(path).lower()
    if name.endswith(".d.ts"):
        return MediaType.DTS
    if name.endswith(".d.mts"):
        return MediaType.DMTS
    if name.endswith(".d.cts"):
        return MediaType.DCTS
    _, ext = posixpath.splitext(name)
    return _EXTENSIONS.get(ext, MediaType.UNKNOWN)


def map_content_type(url: str, content_type: Optional[str]) -> MediaType:
    """Infer a media type from a response Content-Type, refined by the URL path.

    Without a content type (local files) the URL path decides alone.
    """
    path = urllib.parse.urlsplit(url).path
    if not content_type:
        return media_type_from_path(path)

    mime = content_type.split(";", 1)[0].strip().lower()
    if mime in _TYPESCRIPT_CONTENT_TYPES:
        from_path = media_type_from_path(path)
        if from_path in (MediaType.TSX, MediaType.DTS, MediaType.DMTS, MediaType.DCTS,
                         MediaType.MTS, MediaType.CTS):
            return from_path
        return MediaType.TYPESCRIPT
    if mime in _JAVASCRIPT_CONTENT_TYPES:
        from_path = media_type_from_path(path)
        if from_path in (MediaType.JSX, MediaType.MJS, MediaType.CJS):
            return from_path
        return MediaType.JAVASCRIPT
    if mime == "text/jsx":
        return MediaType.JSX
    if mime == "text/tsx":
        return MediaType.TSX
    if mime in ("application/json", "text/json"):
        return MediaType.JSON
    if mime == "application/wasm":
        return MediaType.WASM
    if mime in ("text/plain", "application/octet-stream"):
        return media_type_from_path(path)
    return MediaType.UNKNOWN


def media_type_to_loader(media_type: MediaType) -> str:
    """Return the bundler loader name used to compile a module of this type."""
    if media_type in (MediaType.JAVASCRIPT, MediaType.MJS, MediaType.CJS):
        return "js"
    if media_type == MediaType.JSX:
        return "jsx"
    if media_type in (MediaType.TYPESCRIPT, MediaType.MTS, MediaType.CTS):
        return "ts"
    if media_type == MediaType.TSX:
        return "tsx"
    if media_type == MediaType.JSON:
        return "js"
    raise UnsupportedMediaTypeError(f"Unhandled media type {media_type.value}.")


def transform_raw_into_content(raw: bytes, media_type: MediaType) -> str:
    """Turn raw module bytes into text ready for the compiler."""
    if media_type == MediaType.JSON:
        return json_to_esm(raw)
    return raw.decode("utf-8-sig")


def json_to_esm(source: bytes) -> str:
    """Wrap a JSON document as an ES module with a default export.

    ``__proto__`` is emitted as a computed key so the object literal defines
    an own property instead of setting the prototype.
    """
    data = json.loads(source.decode("utf-8-sig"))
    text = json.dumps(data, indent=2, ensure_ascii=False)
    text = text.replace('"__proto__":', '["__proto__"]:')
    return f"export default {text};"
