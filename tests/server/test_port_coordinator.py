import asyncio
import socket

import httpx
import pytest
import uvicorn

from query_cache.config.models import QueryCachePluginOptions
from query_cache.exceptions import StartupFailure
from query_cache.server.app import STATS_PATH
from query_cache.server.port_coordinator import PortCoordinator


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _coordinator(fake_fetch, **overrides):
    return PortCoordinator.from_options(QueryCachePluginOptions(fetch=fake_fetch, **overrides))


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_bind(fake_fetch):
    coordinator = _coordinator(fake_fetch)
    try:
        ports = await asyncio.gather(*(coordinator.ensure_started() for _ in range(5)))
        assert len(set(ports)) == 1
        assert ports[0] > 0
        assert coordinator.bind_attempts == 1

        # Later sequential calls reuse the finished startup
        assert await coordinator.ensure_started() == ports[0]
        assert coordinator.bind_attempts == 1
        assert coordinator.state.require() == ports[0]
        assert coordinator.is_running
    finally:
        await coordinator.aclose()
    assert not coordinator.is_running


@pytest.mark.asyncio
async def test_preferred_port_is_honored(fake_fetch):
    preferred = _free_port()
    coordinator = _coordinator(fake_fetch, port=preferred)
    try:
        assert await coordinator.ensure_started() == preferred
    finally:
        await coordinator.aclose()


@pytest.mark.asyncio
async def test_occupied_port_fails_without_retry(fake_fetch):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupant:
        occupant.bind(("127.0.0.1", 0))
        occupant.listen(1)
        taken = occupant.getsockname()[1]

        coordinator = _coordinator(fake_fetch, port=taken)
        with pytest.raises(StartupFailure):
            await coordinator.ensure_started()
        with pytest.raises(StartupFailure):
            await coordinator.ensure_started()

        assert coordinator.bind_attempts == 1
        assert not coordinator.state.is_resolved


@pytest.mark.asyncio
async def test_path_style_address_is_a_startup_failure(fake_fetch, monkeypatch):
    monkeypatch.setattr(
        PortCoordinator,
        "_listening_address",
        staticmethod(lambda server: "/tmp/query-cache.sock"),
    )
    coordinator = _coordinator(fake_fetch)

    with pytest.raises(StartupFailure, match="Could not get port"):
        await coordinator.ensure_started()
    with pytest.raises(StartupFailure):
        await coordinator.ensure_started()

    assert coordinator.bind_attempts == 1
    await coordinator.aclose()
    assert not coordinator.is_running
    assert coordinator._socket.fileno() == -1
    assert not coordinator.state.is_resolved


@pytest.mark.asyncio
async def test_started_server_answers_requests(fake_fetch):
    coordinator = _coordinator(fake_fetch)
    try:
        port = await coordinator.ensure_started()
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}", trust_env=False) as client:
            stats = await client.get(STATS_PATH)
            proxied = await client.post("/", json={"url": "https://api.example.com/items"})

        assert stats.status_code == 200
        assert stats.json()["size"] == 0
        assert proxied.status_code == 200
        assert proxied.json()["url"] == "https://api.example.com/items"
        assert len(fake_fetch.calls) == 1
    finally:
        await coordinator.aclose()


@pytest.mark.parametrize(
    "address",
    [None, "/tmp/query-cache.sock", ("127.0.0.1",), ("127.0.0.1", 0), ("127.0.0.1", "80")],
)
def test_resolve_port_rejects_unusable_addresses(address):
    with pytest.raises(StartupFailure):
        PortCoordinator._resolve_port(address)


def test_resolve_port_reads_inet_addresses():
    assert PortCoordinator._resolve_port(("127.0.0.1", 8123)) == 8123
    assert PortCoordinator._resolve_port(("::1", 8123, 0, 0)) == 8123


def test_server_outlives_the_loop_that_started_it(fake_fetch):
    coordinator = _coordinator(fake_fetch)
    try:
        port = asyncio.run(coordinator.ensure_started())
        assert coordinator.is_running

        response = httpx.get(f"http://127.0.0.1:{port}{STATS_PATH}", timeout=5, trust_env=False)
        assert response.status_code == 200

        # A second loop gets the same server
        assert asyncio.run(coordinator.ensure_started()) == port
        assert coordinator.bind_attempts == 1
    finally:
        coordinator.close()
    assert not coordinator.is_running


def test_startup_timeout_fails_once_and_releases_socket(fake_fetch, monkeypatch):
    async def never_listens(self, sockets=None):
        await asyncio.Event().wait()

    monkeypatch.setattr(uvicorn.Server, "startup", never_listens)
    coordinator = _coordinator(fake_fetch, startup_timeout=0.2)

    with pytest.raises(StartupFailure, match="did not start within"):
        asyncio.run(coordinator.ensure_started())
    coordinator.close()

    assert coordinator.bind_attempts == 1
    assert coordinator._socket.fileno() == -1
    assert not coordinator.state.is_resolved

    with pytest.raises(StartupFailure):
        asyncio.run(coordinator.ensure_started())
    assert coordinator.bind_attempts == 1


def test_server_exiting_before_listen_is_a_startup_failure(fake_fetch, monkeypatch):
    async def returns_immediately(self, sockets=None):
        return None

    monkeypatch.setattr(uvicorn.Server, "serve", returns_immediately)
    coordinator = _coordinator(fake_fetch)

    with pytest.raises(StartupFailure, match="stopped before it started listening"):
        asyncio.run(coordinator.ensure_started())
    coordinator.close()

    assert coordinator.bind_attempts == 1
    assert coordinator._socket.fileno() == -1
    assert not coordinator.is_running


def test_unexpected_startup_errors_close_the_socket(fake_fetch, monkeypatch):
    def broken_address(server):
        raise OSError("listening socket vanished")

    monkeypatch.setattr(PortCoordinator, "_listening_address", staticmethod(broken_address))
    coordinator = _coordinator(fake_fetch)

    with pytest.raises(StartupFailure, match="crashed during startup") as excinfo:
        asyncio.run(coordinator.ensure_started())
    coordinator.close()

    assert isinstance(excinfo.value.__cause__, OSError)
    assert coordinator._socket.fileno() == -1
    assert not coordinator.is_running

    with pytest.raises(StartupFailure):
        asyncio.run(coordinator.ensure_started())
    assert coordinator.bind_attempts == 1
