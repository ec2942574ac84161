"""Tests for the native (deno info) backend."""

import asyncio
import json
import os
from unittest.mock import AsyncMock, patch

import pytest

from loaders.native import DenoInfo, NativeLoader, NativeLoaderOptions, parse_module
from resolution.errors import GraphError, NotDownloadedError
from resolution.media_type import MediaType
from resolution.models import EsmResolution, NodeResolution, NpmResolution, ResolutionKind


class FakeDenoInfo:
    """Serves canned ``deno info --json`` documents and counts invocations."""

    def __init__(self, outputs, deno_dir="/deno"):
        self.outputs = outputs
        self.deno_dir = deno_dir
        self.calls = []

    async def run(self, specifier=None):
        self.calls.append(specifier)
        await asyncio.sleep(0.01)
        if specifier is None:
            return {"denoDir": self.deno_dir}
        return self.outputs[specifier]


def _npm_output():
    return {
        "roots": ["npm:preact@10/hooks"],
        "modules": [{
            "kind": "npm",
            "specifier": "npm:/preact@10.13.0/hooks",
            "npmPackage": "preact@10.13.0",
        }],
        "redirects": {"npm:preact@10/hooks": "npm:/preact@10.13.0/hooks"},
        "npmPackages": {
            "preact@10.13.0": {"name": "preact", "version": "10.13.0", "dependencies": []},
        },
    }


@pytest.fixture
def module_file(tmp_path):
    """A local TypeScript module on disk."""
    path = tmp_path / "mod.ts"
    path.write_text("export const bool = 'asd2';\n", encoding="utf-8")
    return path


class TestNativeResolve:
    """Resolution through deno info output."""

    def test_npm_specifier(self):
        info = FakeDenoInfo({"npm:preact@10/hooks": _npm_output()})
        loader = NativeLoader(NativeLoaderOptions(deno_dir="/deno"), info=info)

        result = asyncio.run(loader.resolve("npm:preact@10/hooks"))

        assert result == NpmResolution(package_id="preact@10.13.0", package_name="preact", sub_path="hooks")
        assert result.kind == ResolutionKind.NPM

    def test_npm_package_dir_under_deno_dir(self):
        info = FakeDenoInfo({"npm:preact@10/hooks": _npm_output()})
        loader = NativeLoader(NativeLoaderOptions(deno_dir="/deno"), info=info)

        async def run():
            await loader.resolve("npm:preact@10/hooks")
            return await loader.package_dir("preact@10.13.0")

        assert asyncio.run(run()) == os.path.join("/deno", "npm", "registry.npmjs.org", "preact", "10.13.0")

    def test_deno_dir_queried_once(self):
        info = FakeDenoInfo({"npm:preact@10/hooks": _npm_output()}, deno_dir="/from-info")
        with patch.dict(os.environ, {}, clear=True):
            loader = NativeLoader(NativeLoaderOptions(), info=info)

        async def run():
            await loader.resolve("npm:preact@10/hooks")
            return await asyncio.gather(*(loader.package_dir("preact@10.13.0") for _ in range(3)))

        dirs = asyncio.run(run())
        assert set(dirs) == {os.path.join("/from-info", "npm", "registry.npmjs.org", "preact", "10.13.0")}
        assert info.calls.count(None) == 1

    def test_remote_esm_with_redirect(self, tmp_path):
        local = tmp_path / "abc"
        local.write_text("export {};", encoding="utf-8")
        output = {
            "modules": [{
                "kind": "esm",
                "specifier": "https://deno.land/std@0.173.0/mod.ts",
                "local": str(local),
                "mediaType": "TypeScript",
            }],
            "redirects": {"https://deno.land/std/mod.ts": "https://deno.land/std@0.173.0/mod.ts"},
        }
        info = FakeDenoInfo({"https://deno.land/std/mod.ts": output})
        loader = NativeLoader(NativeLoaderOptions(deno_dir="/deno"), info=info)

        async def run():
            first = await loader.resolve("https://deno.land/std/mod.ts")
            second = await loader.resolve("https://deno.land/std@0.173.0/mod.ts")
            loaded = await loader.load_esm("https://deno.land/std/mod.ts")
            return first, second, loaded

        first, second, loaded = asyncio.run(run())
        assert first == second == EsmResolution("https://deno.land/std@0.173.0/mod.ts")
        assert loaded.loader == "ts"
        assert loaded.watch_files == []
        assert len(info.calls) == 1

    def test_node_specifier_short_circuits(self):
        info = FakeDenoInfo({})
        loader = NativeLoader(NativeLoaderOptions(deno_dir="/deno"), info=info)
        assert asyncio.run(loader.resolve("node:fs")) == NodeResolution("node:fs")
        assert asyncio.run(loader.resolve("fs")) == NodeResolution("node:fs")
        assert info.calls == []

    def test_error_entry_raises_graph_error(self):
        output = {"modules": [{"specifier": "https://x.test/404.ts", "error": "Module not found"}]}
        info = FakeDenoInfo({"https://x.test/404.ts": output})
        loader = NativeLoader(NativeLoaderOptions(deno_dir="/deno"), info=info)

        with pytest.raises(GraphError, match="Module not found"):
            asyncio.run(loader.resolve("https://x.test/404.ts"))

    def test_concurrent_resolves_run_deno_once(self):
        info = FakeDenoInfo({"npm:preact@10/hooks": _npm_output()})
        loader = NativeLoader(NativeLoaderOptions(deno_dir="/deno"), info=info)

        async def run():
            return await asyncio.gather(*(loader.resolve("npm:preact@10/hooks") for _ in range(10)))

        results = asyncio.run(run())
        assert len(set(results)) == 1
        assert info.calls == ["npm:preact@10/hooks"]


class TestNativeLoad:
    """Loading materialized content."""

    def test_local_file_is_watched(self, module_file):
        url = module_file.as_uri()
        output = {"modules": [{
            "kind": "esm", "specifier": url, "local": str(module_file), "mediaType": "TypeScript",
        }]}
        loader = NativeLoader(NativeLoaderOptions(deno_dir="/deno"), info=FakeDenoInfo({url: output}))

        result = asyncio.run(loader.load_esm(url))

        assert result.contents == "export const bool = 'asd2';\n"
        assert result.loader == "ts"
        assert result.watch_files == [str(module_file)]

    def test_json_module(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text('{"__proto__": 1}', encoding="utf-8")
        url = path.as_uri()
        output = {"modules": [{"kind": "esm", "specifier": url, "local": str(path), "mediaType": "Json"}]}
        loader = NativeLoader(NativeLoaderOptions(deno_dir="/deno"), info=FakeDenoInfo({url: output}))

        result = asyncio.run(loader.load_esm(url))

        assert result.loader == "js"
        assert result.contents == 'export default {\n  ["__proto__"]: 1\n};'

    def test_not_downloaded(self):
        output = {"modules": [{"kind": "esm", "specifier": "https://x.test/a.ts", "mediaType": "TypeScript"}]}
        loader = NativeLoader(NativeLoaderOptions(deno_dir="/deno"),
                              info=FakeDenoInfo({"https://x.test/a.ts": output}))
        with pytest.raises(NotDownloadedError):
            asyncio.run(loader.load_esm("https://x.test/a.ts"))

    def test_npm_entry_is_not_loadable(self):
        loader = NativeLoader(NativeLoaderOptions(deno_dir="/deno"),
                              info=FakeDenoInfo({"npm:preact@10/hooks": _npm_output()}))
        with pytest.raises(NotDownloadedError):
            asyncio.run(loader.load_esm("npm:preact@10/hooks"))


class TestDenoInfo:
    """Subprocess invocation."""

    def test_command_flags(self):
        info = DenoInfo(NativeLoaderOptions(
            deno_executable="/usr/bin/deno",
            config_path="deno.json",
            import_map_url="import_map.json",
            lock_path="deno.lock",
        ))
        assert info.command("https://x.test/mod.ts") == [
            "/usr/bin/deno", "info", "--json",
            "--config", "deno.json",
            "--import-map", "import_map.json",
            "--lock", "deno.lock",
            "https://x.test/mod.ts",
        ]

    def test_environment_sets_deno_dir(self):
        env = DenoInfo(NativeLoaderOptions(deno_dir="/tmp/deno")).environment()
        assert env["DENO_DIR"] == "/tmp/deno"
        assert env["NO_COLOR"] == "1"

    def test_missing_executable(self):
        info = DenoInfo(NativeLoaderOptions(deno_executable="definitely-not-deno-xyz"))
        with pytest.raises(GraphError, match="Could not find"):
            asyncio.run(info.run("https://x.test/mod.ts"))

    def test_nonzero_exit(self):
        proc = AsyncMock()
        proc.communicate.return_value = (b"", b"error: Module not found\n")
        proc.returncode = 1
        with patch("loaders.native.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(GraphError, match="Module not found"):
                asyncio.run(DenoInfo(NativeLoaderOptions()).run("https://x.test/mod.ts"))

    def test_parses_stdout(self):
        proc = AsyncMock()
        proc.communicate.return_value = (json.dumps({"denoDir": "/d"}).encode(), b"")
        proc.returncode = 0
        with patch("loaders.native.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            assert asyncio.run(DenoInfo(NativeLoaderOptions()).run()) == {"denoDir": "/d"}

    def test_parse_module_kinds(self):
        entry = parse_module({"kind": "node", "specifier": "node:fs", "moduleName": "fs"})
        assert entry.kind == ResolutionKind.NODE
        entry = parse_module({"kind": "esm", "specifier": "file:///a.tsx", "mediaType": "TSX", "local": "/a.tsx"})
        assert entry.media_type == MediaType.TSX
        assert entry.local == "/a.tsx"
