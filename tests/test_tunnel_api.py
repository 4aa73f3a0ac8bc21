import pytest
from aiohttp.test_utils import TestClient, TestServer

from notarybridge.shared.errors import HostUnresolvable, RequestValidationError, TunnelConflict, TunnelNotFound
from notarybridge.shared.models import TunnelSpec
from notarybridge.tunnels.client import TunnelClient
from notarybridge.tunnels.server import TunnelServer

BODY = {"localPort": 9001, "remoteHost": "example.com", "remotePort": 443}


def make_server(settings, fake_manager) -> TestServer:
    return TestServer(TunnelServer(settings, fake_manager).create_app())


@pytest.mark.asyncio
async def test_index_and_head(settings, fake_manager):
    async with TestClient(make_server(settings, fake_manager)) as client:
        response = await client.get("/")
        assert response.status == 200
        assert await response.text() == "Hello, Tunnel World!"

        response = await client.head("/tunnels")
        assert response.status == 200


@pytest.mark.asyncio
async def test_tunnel_crud(settings, fake_manager):
    async with TestClient(make_server(settings, fake_manager)) as client:
        response = await client.post("/tunnels", json=BODY)
        assert response.status == 201
        created = await response.json()
        assert created["id"] == TunnelSpec.model_validate(BODY).tunnel_id
        assert created["bridgeAddress"] == "ws://localhost:9001"
        assert created["localPort"] == 9001

        response = await client.post("/tunnels", json=BODY)
        assert response.status == 409
        assert await response.json() == {"error": "Tunnel with these parameters already exists"}

        response = await client.get("/tunnels")
        assert [item["id"] for item in await response.json()] == [created["id"]]

        response = await client.get(f"/tunnels/{created['id']}")
        assert (await response.json())["pid"] == created["pid"]

        response = await client.put(f"/tunnels/{created['id']}", json={**BODY, "localPort": 9002})
        assert response.status == 200
        updated = await response.json()
        assert updated["bridgeAddress"] == "ws://localhost:9002"

        response = await client.delete(f"/tunnels/{updated['id']}")
        assert response.status == 204

        response = await client.delete(f"/tunnels/{updated['id']}")
        assert response.status == 404
        assert "error" in await response.json()


@pytest.mark.asyncio
async def test_validation_errors(settings, fake_manager):
    async with TestClient(make_server(settings, fake_manager)) as client:
        response = await client.post("/tunnels", json={**BODY, "localPort": 70000})
        assert response.status == 400
        errors = (await response.json())["error"]
        assert errors[0]["field"] == "localPort"

        response = await client.post("/tunnels", data=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status == 400

        response = await client.post("/tunnels", json=[BODY])
        assert response.status == 400

        response = await client.post("/tunnels", json={**BODY, "remoteHost": "nope.invalid"})
        assert response.status == 400
        assert (await response.json())["error"] == "Invalid remoteHost: nope.invalid"

        response = await client.get("/tunnels/unknown")
        assert response.status == 404

    assert fake_manager.get_tunnel_count() == 0


@pytest.mark.asyncio
async def test_delete_all_route(settings, fake_manager):
    async with TestClient(make_server(settings, fake_manager)) as client:
        await client.post("/tunnels", json=BODY)
        await client.post("/tunnels", json={**BODY, "localPort": 9002})

        response = await client.delete("/tunnels")
        assert response.status == 204
        assert fake_manager.get_tunnel_count() == 0


@pytest.mark.asyncio
async def test_cors_preflight(settings, fake_manager):
    async with TestClient(make_server(settings, fake_manager)) as client:
        response = await client.options(
            "/tunnels",
            headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
        )
        assert response.status == 200
        assert "Access-Control-Allow-Origin" in response.headers


@pytest.mark.asyncio
async def test_shutdown_stops_all_bridges(settings, fake_manager):
    server = make_server(settings, fake_manager)
    async with TestClient(server) as client:
        await client.post("/tunnels", json=BODY)
    assert fake_manager.get_tunnel_count() == 0


@pytest.mark.asyncio
async def test_tunnel_client_round_trip(settings, fake_manager):
    async with TestClient(make_server(settings, fake_manager)) as http:
        async with TunnelClient(str(http.make_url("/tunnels")), settings=settings) as tunnels:
            assert await tunnels.is_reachable()

            spec = TunnelSpec.model_validate(BODY)
            tunnel = await tunnels.create(spec)
            assert tunnel.id == spec.tunnel_id

            with pytest.raises(TunnelConflict):
                await tunnels.create(spec)
            with pytest.raises(HostUnresolvable):
                await tunnels.create(TunnelSpec(local_port=9001, remote_host="nope.invalid", remote_port=443))

            assert [t.id for t in await tunnels.list()] == [tunnel.id]
            assert (await tunnels.get(tunnel.id)).pid == tunnel.pid

            assert await tunnels.delete_matching(spec) == [tunnel.id]
            with pytest.raises(TunnelNotFound):
                await tunnels.delete(tunnel.id)
            with pytest.raises(TunnelNotFound):
                await tunnels.get(tunnel.id)

            await tunnels.create(spec)
            await tunnels.delete_all()
            assert await tunnels.list() == []


@pytest.mark.asyncio
async def test_tunnel_client_maps_validation_errors(settings, fake_manager):
    async with TestClient(make_server(settings, fake_manager)) as http:
        async with TunnelClient(str(http.make_url("/tunnels")), settings=settings) as tunnels:
            with pytest.raises(RequestValidationError):
                await tunnels.update(
                    "anything",
                    TunnelSpec.model_construct(local_port=0, remote_host="example.com", remote_port=443),
                )


@pytest.mark.asyncio
async def test_tunnel_client_unreachable(settings):
    async with TunnelClient("http://127.0.0.1:1/tunnels", settings=settings) as tunnels:
        assert not await tunnels.is_reachable()
