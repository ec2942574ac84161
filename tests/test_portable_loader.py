"""Tests for the portable backend against a local HTTP server."""

import asyncio
import base64
import collections
import hashlib
import io
import json
import os
import tarfile

import aiohttp.test_utils
import pytest
from aiohttp import web

from bundler.hooks import LoaderHooks
from bundler.namespaces import PluginResolution
from loaders.portable import PortableLoader, PortableLoaderOptions, decode_data_url
from resolution.errors import GraphError, ModuleIOError, UnsupportedSchemeError
from resolution.models import EsmResolution, NodeResolution, NpmResolution


def make_tarball(files):
    """Gzipped npm-style tarball with every file under ``package/``."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"package/{name}")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def sri(data):
    return "sha512-" + base64.b64encode(hashlib.sha512(data).digest()).decode("ascii")


TARBALLS = {
    "preact-10.13.0.tgz": make_tarball({
        "package.json": '{"name": "preact", "version": "10.13.0"}',
        "hooks/index.js": "export const useState = () => {};",
    }),
    "tslib-2.5.0.tgz": make_tarball({"package.json": '{"name": "tslib"}'}),
    "broken-1.0.0.tgz": make_tarball({"package.json": '{"name": "broken"}'}),
}


def build_app(hits):
    """Module host plus a tiny npm registry; ``hits`` counts requests per path."""
    async def counted(request):
        hits[request.path] += 1

    async def redirect_a(request):
        await counted(request)
        raise web.HTTPFound("/b")

    async def redirect_b(request):
        await counted(request)
        raise web.HTTPMovedPermanently("/c")

    async def module_c(request):
        await counted(request)
        return web.Response(text="export const v = 'c';", content_type="application/typescript")

    async def data_json(request):
        await counted(request)
        return web.Response(text='{"a": 1}', content_type="application/json")

    async def evil(request):
        await counted(request)
        raise web.HTTPFound("file:///etc/passwd")

    async def missing(request):
        await counted(request)
        raise web.HTTPNotFound()

    def packument(request, name, versions, integrity=None):
        origin = f"http://{request.host}"
        docs = {}
        for version, deps in versions.items():
            tarball_name = f"{name}-{version}.tgz"
            docs[version] = {
                "name": name,
                "version": version,
                "dependencies": deps,
                "dist": {
                    "tarball": f"{origin}/{name}/-/{tarball_name}",
                    "integrity": integrity or sri(TARBALLS[tarball_name]),
                },
            }
        latest = max(versions, key=lambda v: [int(p) for p in v.split(".")])
        return web.json_response({"name": name, "dist-tags": {"latest": latest}, "versions": docs})

    async def preact(request):
        await counted(request)
        return packument(request, "preact", {"10.12.1": {}, "10.13.0": {"tslib": "^2.0.0"}})

    async def tslib(request):
        await counted(request)
        return packument(request, "tslib", {"2.5.0": {}})

    async def broken(request):
        await counted(request)
        return packument(request, "broken", {"1.0.0": {}}, integrity=sri(b"something else"))

    async def tarball(request):
        await counted(request)
        return web.Response(body=TARBALLS[request.match_info["file"]],
                            content_type="application/octet-stream")

    app = web.Application()
    app.router.add_get("/a", redirect_a)
    app.router.add_get("/b", redirect_b)
    app.router.add_get("/c", module_c)
    app.router.add_get("/data.json", data_json)
    app.router.add_get("/evil", evil)
    app.router.add_get("/missing.ts", missing)
    app.router.add_get("/preact", preact)
    app.router.add_get("/tslib", tslib)
    app.router.add_get("/broken", broken)
    app.router.add_get("/{name}/-/{file}", tarball)
    return app


def run_with_server(tmp_path, scenario):
    """Run ``scenario(loader, base, hits)`` against a fresh server and loader."""
    hits = collections.Counter()

    async def _run():
        async with aiohttp.test_utils.TestServer(build_app(hits)) as server:
            base = f"http://{server.host}:{server.port}"
            options = PortableLoaderOptions(cache_dir=str(tmp_path / "cache"), npm_registry=base + "/")
            async with PortableLoader(options) as loader:
                return await scenario(loader, base, hits)

    return asyncio.run(_run()), hits


class TestPortableRemote:
    """HTTP modules and redirects."""

    def test_redirect_chain_collapses(self, tmp_path):
        async def scenario(loader, base, hits):
            first = await loader.resolve(f"{base}/a")
            second = await loader.resolve(f"{base}/b")
            loaded = await loader.load_esm(f"{base}/a")
            return base, first, second, loaded

        (base, first, second, loaded), hits = run_with_server(tmp_path, scenario)
        assert first == second == EsmResolution(f"{base}/c")
        assert loaded.contents == "export const v = 'c';"
        assert loaded.loader == "ts"
        assert hits == {"/a": 1, "/b": 1, "/c": 1}

    def test_concurrent_resolves_fetch_once(self, tmp_path):
        async def scenario(loader, base, hits):
            return await asyncio.gather(*(loader.resolve(f"{base}/a") for _ in range(10)))

        results, hits = run_with_server(tmp_path, scenario)
        assert len(set(results)) == 1
        assert hits["/c"] == 1

    def test_mixed_aliases_resolve_concurrently(self, tmp_path):
        async def scenario(loader, base, hits):
            aliases = [f"{base}/{name}" for name in ("a", "b", "c", "a", "b", "c")]
            return base, await asyncio.gather(*(loader.resolve(url) for url in aliases))

        (base, results), hits = run_with_server(tmp_path, scenario)
        assert set(results) == {EsmResolution(f"{base}/c")}
        assert hits == {"/a": 1, "/b": 1, "/c": 1}

    def test_store_reused_by_next_session(self, tmp_path):
        async def scenario(loader, base, hits):
            await loader.resolve(f"{base}/a")
            before = sum(hits.values())
            options = PortableLoaderOptions(cache_dir=str(tmp_path / "cache"), npm_registry=base + "/")
            async with PortableLoader(options) as fresh:
                result = await fresh.resolve(f"{base}/a")
                loaded = await fresh.load_esm(f"{base}/b")
            return before, sum(hits.values()), result, loaded

        (before, after, result, loaded), _ = run_with_server(tmp_path, scenario)
        assert before == after == 3
        assert result.specifier.endswith("/c")
        assert loaded.contents == "export const v = 'c';"

    def test_json_module(self, tmp_path):
        async def scenario(loader, base, hits):
            await loader.resolve(f"{base}/data.json")
            return await loader.load_esm(f"{base}/data.json")

        result, _ = run_with_server(tmp_path, scenario)
        assert result.loader == "js"
        assert result.contents.startswith("export default {")

    def test_http_error_is_graph_error_and_cached(self, tmp_path):
        async def scenario(loader, base, hits):
            errors = []
            for _ in range(2):
                with pytest.raises(GraphError) as exc_info:
                    await loader.resolve(f"{base}/missing.ts")
                errors.append(exc_info.value)
            return errors

        errors, hits = run_with_server(tmp_path, scenario)
        assert "404" in str(errors[0])
        assert hits["/missing.ts"] == 1

    def test_redirect_to_non_http_is_rejected(self, tmp_path):
        async def scenario(loader, base, hits):
            with pytest.raises(GraphError, match="not allowed"):
                await loader.resolve(f"{base}/evil")

        run_with_server(tmp_path, scenario)

    def test_connection_failure_is_not_cached(self, tmp_path):
        async def scenario():
            options = PortableLoaderOptions(cache_dir=str(tmp_path / "cache"), timeout=5)
            async with PortableLoader(options) as loader:
                for _ in range(2):
                    with pytest.raises(GraphError):
                        await loader.resolve("http://127.0.0.1:9/mod.ts")
                return loader.cache.stats()

        stats = asyncio.run(scenario())
        assert stats["modules"] == 0
        assert stats["loads_started"] == 2


class TestPortableLocal:
    """data:, file:, node: and unsupported schemes."""

    def test_data_url(self, tmp_path):
        source = "export const bool = 'asd';"
        url = "data:application/javascript;base64," + base64.b64encode(source.encode()).decode()

        async def scenario():
            async with PortableLoader(PortableLoaderOptions(cache_dir=str(tmp_path))) as loader:
                return await loader.resolve(url), await loader.load_esm(url)

        resolution, loaded = asyncio.run(scenario())
        assert resolution == EsmResolution(url)
        assert loaded.contents == source
        assert loaded.loader == "js"

    def test_decode_data_url_percent_encoded(self):
        assert decode_data_url("data:text/javascript,export%20default%201") == (
            "text/javascript", b"export default 1")
        with pytest.raises(GraphError):
            decode_data_url("data:text/javascript")

    def test_file_url(self, tmp_path):
        path = tmp_path / "mod.ts"
        path.write_text("export const x = 1;", encoding="utf-8")

        async def scenario():
            async with PortableLoader(PortableLoaderOptions(cache_dir=str(tmp_path / "c"))) as loader:
                return await loader.resolve(path.as_uri()), await loader.load_esm(path.as_uri())

        resolution, loaded = asyncio.run(scenario())
        assert resolution == EsmResolution(path.as_uri())
        assert loaded.loader == "ts"
        assert loaded.watch_files == [str(path)]

    def test_missing_file(self, tmp_path):
        async def scenario():
            async with PortableLoader(PortableLoaderOptions(cache_dir=str(tmp_path))) as loader:
                await loader.resolve((tmp_path / "nope.ts").as_uri())

        with pytest.raises(GraphError, match="Module not found"):
            asyncio.run(scenario())

    def test_node_and_unsupported(self, tmp_path):
        async def scenario():
            async with PortableLoader(PortableLoaderOptions(cache_dir=str(tmp_path))) as loader:
                node = await loader.resolve("node:path")
                with pytest.raises(UnsupportedSchemeError):
                    await loader.resolve("ftp://example.com/mod.ts")
                return node

        assert asyncio.run(scenario()) == NodeResolution("node:path")


class TestPortableNpm:
    """Registry packages."""

    def test_resolve_npm_and_materialize(self, tmp_path):
        async def scenario(loader, base, hits):
            resolution = await loader.resolve("npm:preact@^10/hooks")
            directory = await loader.package_dir(resolution.package_id)
            dependency = await loader.package_id_from_name("tslib", resolution.package_id)
            again = await loader.resolve("npm:/preact@10.13.0/hooks")
            return resolution, directory, dependency, again

        (resolution, directory, dependency, again), hits = run_with_server(tmp_path, scenario)
        assert resolution == NpmResolution(package_id="preact@10.13.0", package_name="preact", sub_path="hooks")
        assert again == resolution
        assert dependency == "tslib@2.5.0"
        assert directory.endswith(os.path.join("preact", "10.13.0"))
        with open(os.path.join(directory, "hooks", "index.js"), encoding="utf-8") as fh:
            assert "useState" in fh.read()
        with open(os.path.join(directory, "package.json"), encoding="utf-8") as fh:
            assert json.load(fh)["version"] == "10.13.0"
        assert hits["/preact"] == 1
        assert hits["/preact/-/preact-10.13.0.tgz"] == 1

    def test_concurrent_package_dir_downloads_once(self, tmp_path):
        async def scenario(loader, base, hits):
            await loader.resolve("npm:preact@10.13.0")
            return await asyncio.gather(*(loader.package_dir("preact@10.13.0") for _ in range(5)))

        dirs, hits = run_with_server(tmp_path, scenario)
        assert len(set(dirs)) == 1
        assert hits["/preact/-/preact-10.13.0.tgz"] == 1

    def test_integrity_mismatch(self, tmp_path):
        async def scenario(loader, base, hits):
            resolution = await loader.resolve("npm:broken")
            with pytest.raises(GraphError, match="checksum"):
                await loader.package_dir(resolution.package_id)
            return resolution

        resolution, _ = run_with_server(tmp_path, scenario)
        assert resolution.package_id == "broken@1.0.0"

    def test_unknown_package(self, tmp_path):
        async def scenario(loader, base, hits):
            with pytest.raises(GraphError):
                await loader.resolve("npm:does-not-exist@1")

        run_with_server(tmp_path, scenario)


class TestPortableThroughHooks:
    """Entry points resolved against the working directory and loaded via the hooks."""

    @staticmethod
    def _resolve_and_load(tmp_path, specifier):
        async def scenario():
            options = PortableLoaderOptions(cache_dir=str(tmp_path / "cache"))
            async with PortableLoader(options) as loader:
                hooks = LoaderHooks(loader, cwd=str(tmp_path / "project"))
                resolution = await hooks.on_resolve(specifier)
                return resolution, await hooks.on_load(resolution.path, resolution.namespace)

        return asyncio.run(scenario())

    def test_local_json(self, tmp_path):
        project = tmp_path / "project"
        project.mkdir()
        data = {"name": "local", "items": [1, 2, 3], "nested": {"ok": True}}
        (project / "local.json").write_text(json.dumps(data), encoding="utf-8")

        resolution, loaded = self._resolve_and_load(tmp_path, "./local.json")
        assert resolution == PluginResolution(path=str(project.resolve() / "local.json"))
        assert loaded.loader == "js"
        assert loaded.contents.startswith("export default ")
        assert loaded.contents.endswith(";")
        assert json.loads(loaded.contents[len("export default "):-1]) == data

    def test_undecodable_module(self, tmp_path):
        project = tmp_path / "project"
        project.mkdir()
        (project / "mod.js").write_bytes(b"\xff\xfe export {};")

        with pytest.raises(ModuleIOError) as exc_info:
            self._resolve_and_load(tmp_path, "./mod.js")
        assert exc_info.value.specifier == (project.resolve() / "mod.js").as_uri()

    def test_malformed_json_module(self, tmp_path):
        project = tmp_path / "project"
        project.mkdir()
        (project / "local.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(ModuleIOError, match="Failed to decode Json module") as exc_info:
            self._resolve_and_load(tmp_path, "./local.json")
        assert exc_info.value.specifier == (project.resolve() / "local.json").as_uri()
