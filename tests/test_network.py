"""Tests for the aiohttp gateway and Kubo blob store clients against a local server."""

from __future__ import annotations

import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from cairn.errors import GatewayError, TransportError, UploadError
from cairn.network.base import BlobFile
from cairn.network.gateway import GatewayClient
from cairn.network.kubo import KuboBlobStore


class FakeKubo:
    """Just enough of the Kubo RPC API and a path gateway."""

    def __init__(self) -> None:
        self.files: dict[str, dict[str, bytes]] = {}
        self.pinned: set[str] = set()
        self.headers: list[dict[str, str]] = []
        self.params: list[dict[str, str]] = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/v0/add", self.add)
        app.router.add_post("/api/v0/pin/rm", self.pin_rm)
        app.router.add_get("/ipfs/{cid}/{filename}", self.get)
        return app

    async def add(self, request: web.Request) -> web.Response:
        self.headers.append(dict(request.headers))
        self.params.append(dict(request.query))
        reader = await request.multipart()
        directory: dict[str, bytes] = {}
        lines = []
        while True:
            part = await reader.next()
            if part is None:
                break
            data = await part.read()
            directory[part.filename] = bytes(data)
            lines.append({"Name": part.filename, "Hash": f"bafyfile{len(lines)}", "Size": str(len(data))})
        cid = f"bafydir{len(self.files)}"
        self.files[cid] = directory
        self.pinned.add(cid)
        lines.append({"Name": "", "Hash": cid, "Size": "0"})
        return web.Response(text="\n".join(json.dumps(line) for line in lines) + "\n")

    async def pin_rm(self, request: web.Request) -> web.Response:
        cid = request.query.get("arg", "")
        if cid not in self.pinned:
            return web.json_response({"Message": "not pinned or pinned indirectly", "Code": 0}, status=500)
        self.pinned.discard(cid)
        return web.json_response({"Pins": [cid]})

    async def get(self, request: web.Request) -> web.Response:
        cid = request.match_info["cid"]
        filename = request.match_info["filename"]
        try:
            return web.Response(body=self.files[cid][filename])
        except KeyError:
            raise web.HTTPNotFound()


@pytest.fixture
async def kubo():
    fake = FakeKubo()
    server = TestServer(fake.app())
    await server.start_server()
    fake.base_url = str(server.make_url("/")).rstrip("/")
    yield fake
    await server.close()


@pytest.fixture
async def clients(kubo: FakeKubo):
    store = KuboBlobStore(kubo.base_url, signing_key="secret", delegation="proof")
    gateway = GatewayClient(f"{kubo.base_url}/ipfs")
    yield store, gateway
    await store.close()
    await gateway.close()


class TestKuboBlobStore:
    @pytest.mark.asyncio
    async def test_upload_returns_directory_cid(self, kubo, clients):
        store, _ = clients
        cid = await store.upload([BlobFile("index.json", b'{"items":[]}')])
        assert cid == "bafydir0"
        assert kubo.files[cid] == {"index.json": b'{"items":[]}'}

    @pytest.mark.asyncio
    async def test_upload_wraps_in_directory(self, kubo, clients):
        store, _ = clients
        await store.upload([BlobFile("a.json", b"{}")])
        assert kubo.params[0]["wrap-with-directory"] == "true"
        assert kubo.params[0]["cid-version"] == "1"

    @pytest.mark.asyncio
    async def test_sends_credentials(self, kubo, clients):
        store, _ = clients
        await store.upload([BlobFile("a.json", b"{}")])
        assert kubo.headers[0]["X-Auth-Secret"] == "secret"
        assert kubo.headers[0]["Authorization"] == "Bearer proof"

    @pytest.mark.asyncio
    async def test_upload_nothing(self, clients):
        store, _ = clients
        with pytest.raises(ValueError):
            await store.upload([])

    @pytest.mark.asyncio
    async def test_upload_error_status(self):
        app = web.Application()

        async def reject(request):
            return web.Response(status=403, text="unauthorized")

        app.router.add_post("/api/v0/add", reject)
        server = TestServer(app)
        await server.start_server()
        store = KuboBlobStore(str(server.make_url("/")).rstrip("/"))
        try:
            with pytest.raises(UploadError, match="403"):
                await store.upload([BlobFile("a.json", b"{}")])
        finally:
            await store.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_upload_unreachable(self):
        store = KuboBlobStore("http://127.0.0.1:9", timeout=2)
        try:
            with pytest.raises(UploadError):
                await store.upload([BlobFile("a.json", b"{}")])
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_evict(self, kubo, clients):
        store, _ = clients
        cid = await store.upload([BlobFile("a.json", b"{}")])
        await store.evict(cid)
        assert cid not in kubo.pinned

    @pytest.mark.asyncio
    async def test_evict_unknown(self, clients):
        store, _ = clients
        with pytest.raises(TransportError, match="not pinned"):
            await store.evict("bafyunknown")

    def test_directory_cid_requires_directory_line(self):
        with pytest.raises(UploadError):
            KuboBlobStore._directory_cid('{"Name":"a.json","Hash":"bafyfile"}\n')


class TestGatewayClient:
    @pytest.mark.asyncio
    async def test_fetch(self, clients):
        store, gateway = clients
        cid = await store.upload([BlobFile("m1.json", b'{"id":"m1"}')])
        assert await gateway.fetch(cid, "m1.json") == b'{"id":"m1"}'

    @pytest.mark.asyncio
    async def test_not_found(self, clients):
        _, gateway = clients
        with pytest.raises(GatewayError) as exc:
            await gateway.fetch("bafymissing", "root.json")
        assert exc.value.status == 404

    @pytest.mark.asyncio
    async def test_unreachable(self):
        gateway = GatewayClient("http://127.0.0.1:9/ipfs", timeout=2)
        try:
            with pytest.raises(GatewayError):
                await gateway.fetch("bafy", "root.json")
        finally:
            await gateway.close()

    def test_url_for(self):
        gateway = GatewayClient("https://w3s.link/ipfs/")
        assert gateway.url_for("bafy", "index.json") == "https://w3s.link/ipfs/bafy/index.json"
