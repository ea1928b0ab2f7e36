"""Tests for the phpIPAM client against an in-process fake phpIPAM."""

import asyncio

import httpx
import pytest

from fakes import FakePhpIpam
from overlayip.exceptions import IpamApiError, IpamError, IpamReservationError
from overlayip.ipam.client import PhpIpamClient
from overlayip.ipam.config import IpamConfig


async def _with_client(ipam_config, server, fn):
    client = await PhpIpamClient.create(
        ipam_config, transport=httpx.MockTransport(server.handler)
    )
    async with client:
        return await fn(client)


def run(ipam_config, server, fn):
    return asyncio.run(_with_client(ipam_config, server, fn))


# =============================================================================
# Reservation
# =============================================================================


def test_reserve_falls_back_to_next_subnet_in_order(ipam_config):
    server = FakePhpIpam(exhausted={7})

    ip = run(ipam_config, server, lambda c: c.reserve_ip_address("node-a", "wdc04"))

    assert ip.startswith("10.1.8.")
    assert ip.endswith("/24")
    assert server.first_free_calls() == [7, 8]
    assert server.owned_by("node-a") == [ip.split("/")[0]]


def test_reserve_uses_first_subnet_that_succeeds(ipam_config):
    server = FakePhpIpam()

    ip = run(ipam_config, server, lambda c: c.reserve_ip_address("node-a", "wdc04"))

    assert ip.startswith("10.1.7.")
    assert server.first_free_calls() == [7]


def test_reserve_fails_when_every_subnet_fails(ipam_config):
    server = FakePhpIpam(exhausted={7, 8})

    with pytest.raises(IpamReservationError) as exc:
        run(ipam_config, server, lambda c: c.reserve_ip_address("node-a", "wdc04"))

    assert exc.value.zone == "wdc04"
    assert server.first_free_calls() == [7, 8]
    assert server.addresses == {}


def test_reserve_in_unknown_zone_fails_without_calls(ipam_config):
    server = FakePhpIpam()

    with pytest.raises(IpamReservationError):
        run(ipam_config, server, lambda c: c.reserve_ip_address("node-a", "dal10"))

    assert server.first_free_calls() == []


def test_reserve_releases_address_when_mask_lookup_fails(ipam_config):
    server = FakePhpIpam(broken_subnets={7})

    ip = run(ipam_config, server, lambda c: c.reserve_ip_address("node-a", "wdc04"))

    assert ip.startswith("10.1.8.")
    # The address taken from subnet 7 was given back
    assert server.owned_by("node-a") == [ip.split("/")[0]]


# =============================================================================
# Lookup and release
# =============================================================================


def test_get_subnet_for_ip_returns_gateway(ipam_config):
    server = FakePhpIpam()

    async def scenario(client):
        ip = await client.reserve_ip_address("node-c", "wdc06")
        return ip, await client.get_subnet_for_ip(ip.split("/")[0])

    ip, subnet = run(ipam_config, server, scenario)

    assert ip.endswith("/26")
    assert subnet.gateway == "10.3.12.1"
    assert subnet.cidr == "10.3.12.0/26"


def test_get_subnet_for_unknown_ip_fails(ipam_config):
    server = FakePhpIpam()

    with pytest.raises(IpamError):
        run(ipam_config, server, lambda c: c.get_subnet_for_ip("10.9.9.9"))


def test_delete_address_without_reservation_succeeds(ipam_config):
    server = FakePhpIpam()

    run(ipam_config, server, lambda c: c.delete_ip_address("10.1.7.55"))

    assert not any(method == "DELETE" for method, _ in server.calls)


def test_delete_releases_reservation(ipam_config):
    server = FakePhpIpam()

    async def scenario(client):
        ip = await client.reserve_ip_address("node-a", "wdc04")
        await client.delete_ip_address(ip.split("/")[0])

    run(ipam_config, server, scenario)

    assert server.owned_by("node-a") == []


# =============================================================================
# Authentication and transport
# =============================================================================


def test_bad_credentials_fail_client_creation(ipam_config):
    server = FakePhpIpam()
    config = IpamConfig(
        url=ipam_config.url,
        app_id=ipam_config.app_id,
        username="svc",
        password="wrong",
        subnet_map=ipam_config.subnet_map,
    )

    with pytest.raises(IpamApiError):
        run(config, server, lambda c: c.reserve_ip_address("node-a", "wdc04"))


def test_expired_token_is_refreshed_once(ipam_config):
    server = FakePhpIpam()

    async def scenario(client):
        server.expire_tokens()
        return await client.reserve_ip_address("node-a", "wdc04")

    ip = run(ipam_config, server, scenario)

    assert ip.startswith("10.1.7.")
    assert server.logins == 2


def test_rejected_refresh_is_an_error(ipam_config):
    server = FakePhpIpam()

    async def scenario(client):
        server.reject_all_tokens = True
        await client.get_subnet_for_ip("10.1.7.10")

    with pytest.raises(IpamApiError) as exc:
        run(ipam_config, server, scenario)

    assert exc.value.code == 401
    assert server.logins == 2


def test_token_refresh_can_be_disabled(ipam_config):
    server = FakePhpIpam()
    config = IpamConfig(
        url=ipam_config.url,
        app_id=ipam_config.app_id,
        username="svc",
        password="secret",
        subnet_map=ipam_config.subnet_map,
        refresh_token=False,
    )

    async def scenario(client):
        server.expire_tokens()
        await client.get_subnet_for_ip("10.1.7.10")

    with pytest.raises(IpamApiError):
        run(config, server, scenario)

    assert server.logins == 1


def test_undecodable_response_is_an_error(ipam_config):
    server = FakePhpIpam()

    def handler(request):
        if request.url.path.endswith("/user/"):
            return server.handler(request)
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    async def scenario():
        client = await PhpIpamClient.create(ipam_config, transport=httpx.MockTransport(handler))
        async with client:
            await client.delete_ip_address("10.1.7.10")

    with pytest.raises(IpamError, match="cannot decode"):
        asyncio.run(scenario())


def test_transport_failure_is_an_error(ipam_config):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(IpamError, match="token request failed"):
        asyncio.run(
            PhpIpamClient.create(ipam_config, transport=httpx.MockTransport(handler))
        )


def test_requests_go_to_app_api_path(ipam_config):
    server = FakePhpIpam()
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return server.handler(request)

    async def scenario():
        client = await PhpIpamClient.create(ipam_config, transport=httpx.MockTransport(handler))
        async with client:
            await client.delete_ip_address("10.1.7.10")

    asyncio.run(scenario())

    assert seen == [
        "https://ipam.example.com/api/overlay/user/",
        "https://ipam.example.com/api/overlay/addresses/search/10.1.7.10/",
    ]
