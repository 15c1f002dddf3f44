from __future__ import annotations

import io
import json
import zipfile
from collections import Counter
from typing import Callable, Dict, List, Optional, Union

import httpx
import pytest

from feedrestore.domain.models import PackageSource
from feedrestore.services.content_lock import ContentLock, InProcessLockFactory
from feedrestore.services.http_cache import DiskCacheTransport

Handler = Callable[[httpx.Request], httpx.Response]


def make_archive(package_id: str = "foo", version: str = "1.0.0", extra: Optional[Dict[str, bytes]] = None) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(
            f"{package_id}.nuspec",
            f"<package><metadata><id>{package_id}</id><version>{version}</version></metadata></package>",
        )
        archive.writestr("lib/net45/lib.dll", b"binary")
        for name, data in (extra or {}).items():
            archive.writestr(name, data)
    return buffer.getvalue()


class StubServer:
    """
    Routes requests by full URL to canned responses and counts the calls.

    A route value may be bytes, a dict/list (served as JSON), an int status
    code, an httpx.Response, an exception instance to raise, or a callable
    taking the request.
    """

    def __init__(self):
        self.routes: Dict[str, Union[bytes, dict, list, int, httpx.Response, Exception, Handler]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, url: str, response) -> None:
        self.routes[url] = response

    def calls(self, url: Optional[str] = None) -> int:
        if url is None:
            return len(self.requests)
        return Counter(str(r.url) for r in self.requests)[url]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, request=request)
        if callable(route) and not isinstance(route, httpx.Response):
            route = route(request)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, httpx.Response):
            return route
        if isinstance(route, int):
            return httpx.Response(route, request=request)
        if isinstance(route, (dict, list)):
            return httpx.Response(200, content=json.dumps(route).encode("utf-8"), request=request)
        return httpx.Response(200, content=route, request=request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def server() -> StubServer:
    return StubServer()


@pytest.fixture
def make_server():
    return StubServer


@pytest.fixture
def cache_dir(tmp_path):
    d = tmp_path / "cache"
    d.mkdir()
    return d


@pytest.fixture
def lock() -> ContentLock:
    # asyncio locks stand in for the OS file lock
    return ContentLock(lock_factory=InProcessLockFactory())


@pytest.fixture
def make_transport(server, cache_dir, lock):
    def _make(base_uri: str = "https://feed.test/v3/", username=None, password=None) -> DiskCacheTransport:
        return DiskCacheTransport(
            base_uri,
            cache_dir,
            username=username,
            password=password,
            timeout=5.0,
            lock=lock,
            transport=server.transport,
        )

    return _make


@pytest.fixture
def remote_source() -> PackageSource:
    return PackageSource(source="https://feed.test/v3/index.json", name="test")


@pytest.fixture
def archive():
    return make_archive
