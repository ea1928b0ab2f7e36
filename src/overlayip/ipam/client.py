"""
phpIPAM API client.

Reserves, looks up and releases overlay addresses. The client
authenticates once on creation and sends the resulting token with every
call. If a later call is rejected as unauthorized (token expired), it
re-authenticates once and retries that call; a second rejection is
returned as a plain error.

API calls used:
    POST   /api/{app}/user/                         obtain token (basic auth)
    POST   /api/{app}/addresses/first_free/{id}/    reserve next free address
    GET    /api/{app}/subnets/{id}/                 subnet mask and gateway
    GET    /api/{app}/addresses/search/{ip}/        reverse lookup by address
    DELETE /api/{app}/addresses/{id}/               release an address
"""

from __future__ import annotations

import httpx
from pydantic import ValidationError

from overlayip.exceptions import IpamApiError, IpamError, IpamReservationError
from overlayip.ipam.config import IpamConfig
from overlayip.ipam.models import IpamAddress, IpamResponse, SubnetInfo
from overlayip.utils.logger import get_logger

logger = get_logger(__name__)

# Envelope/HTTP codes that mean the token is no longer accepted
_UNAUTHORIZED_CODES = (401, 403)


class PhpIpamClient:
    """
    Async phpIPAM client.

    Use ``PhpIpamClient.create(config)`` to get an authenticated client, and
    ``aclose()`` (or ``async with``) to release the HTTP connection pool.
    """

    def __init__(
        self,
        config: IpamConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._token: str | None = None
        self._http = httpx.AsyncClient(
            base_url=f"{config.url}/api/{config.app_id}/",
            timeout=config.timeout,
            transport=transport,
        )

    @classmethod
    async def create(
        cls,
        config: IpamConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> PhpIpamClient:
        """Build a client and fetch its token."""
        client = cls(config, transport=transport)
        try:
            await client.authenticate()
        except BaseException:
            await client.aclose()
            raise
        return client

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> PhpIpamClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    # =========================================================================
    # Transport
    # =========================================================================

    @staticmethod
    def _decode(response: httpx.Response, path: str) -> IpamResponse:
        try:
            return IpamResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise IpamError(
                f"IPAM {path}: cannot decode response "
                f"(HTTP {response.status_code}): {e}"
            ) from e

    async def authenticate(self) -> None:
        """Obtain a new API token with basic auth."""
        path = "user/"
        try:
            response = await self._http.post(
                path, auth=(self.config.username, self.config.password)
            )
        except httpx.HTTPError as e:
            raise IpamError(f"IPAM token request failed: {e}") from e

        envelope = self._decode(response, path)
        if not envelope.success:
            raise IpamApiError(
                f"error retrieving token: {envelope.message}",
                code=envelope.code,
                path=path,
            )
        try:
            self._token = str(envelope.value("token"))
        except KeyError as e:
            raise IpamError(f"IPAM token response has no token: {e}") from e
        logger.info(f"Authenticated to phpIPAM at {self.config.url}")

    async def _request(
        self, method: str, path: str, data: dict[str, str] | None
    ) -> tuple[httpx.Response, IpamResponse]:
        logger.debug(f"Calling phpIPAM: {method} {path}")
        try:
            response = await self._http.request(
                method,
                path,
                data=data,
                headers={"token": self._token or ""},
            )
        except httpx.HTTPError as e:
            raise IpamError(f"IPAM {method} {path} failed: {e}") from e
        return response, self._decode(response, path)

    async def call(
        self, method: str, path: str, data: dict[str, str] | None = None
    ) -> IpamResponse:
        """
        Issue one API call and return the decoded envelope.

        Non-success envelopes are returned, not raised; see ``call_ok``.
        """
        response, envelope = await self._request(method, path, data)
        unauthorized = (
            response.status_code in _UNAUTHORIZED_CODES
            or envelope.code in _UNAUTHORIZED_CODES
        )
        if unauthorized and not envelope.success and self.config.refresh_token:
            logger.info(f"phpIPAM rejected token on {path}, re-authenticating")
            await self.authenticate()
            response, envelope = await self._request(method, path, data)
        return envelope

    async def call_ok(
        self, method: str, path: str, data: dict[str, str] | None = None
    ) -> IpamResponse:
        """Like ``call`` but raise IpamApiError on a non-success envelope."""
        envelope = await self.call(method, path, data)
        if not envelope.success:
            raise IpamApiError(envelope.message, code=envelope.code, path=path)
        return envelope

    @staticmethod
    def _address_records(envelope: IpamResponse) -> list[IpamAddress]:
        if not envelope.data:
            return []
        if not isinstance(envelope.data, list):
            raise IpamError(f"unexpected address search payload: {envelope.data!r}")
        try:
            return [IpamAddress.model_validate(item) for item in envelope.data]
        except ValidationError as e:
            raise IpamError(f"cannot decode address record: {e}") from e

    # =========================================================================
    # Address operations
    # =========================================================================

    async def get_subnet(self, subnet_id: int | str) -> IpamResponse:
        return await self.call_ok("GET", f"subnets/{subnet_id}/")

    async def reserve_ip_address(self, owner: str, zone: str) -> str:
        """
        Reserve the first free address in the zone's candidate subnets.

        Subnets are tried in configured order and the first one that can
        hand out an address wins. A subnet that refuses (exhausted, missing)
        is skipped with a warning.

        Returns:
            The reserved address with its prefix length, e.g. "10.1.2.3/24".

        Raises:
            IpamReservationError: If every candidate subnet failed.
            IpamError: If phpIPAM cannot be reached.
        """
        subnet_ids = self.config.subnets_for_zone(zone)
        logger.info(f"Reserve IP in zone {zone} for {owner}, candidates={list(subnet_ids)}")
        if not subnet_ids:
            logger.warning(f"No subnets configured for zone '{zone}'")

        for subnet_id in subnet_ids:
            logger.info(f"Trying to reserve IP in subnet {subnet_id} (zone={zone}, owner={owner})")
            envelope = await self.call(
                "POST", f"addresses/first_free/{subnet_id}/", data={"owner": owner}
            )
            if not envelope.success:
                logger.warning(
                    f"Unable to reserve IP on subnet {subnet_id} (zone={zone}): {envelope.message}"
                )
                continue

            ip_addr = envelope.data
            if not isinstance(ip_addr, str) or not ip_addr:
                raise IpamError(
                    f"first_free on subnet {subnet_id} returned no address: {ip_addr!r}"
                )

            try:
                subnet = await self.get_subnet(subnet_id)
                mask = str(subnet.value("mask"))
            except (IpamApiError, KeyError) as e:
                logger.warning(
                    f"Unable to get mask of subnet {subnet_id} for IP {ip_addr}: {e}; "
                    f"releasing it and trying the next subnet"
                )
                await self._release_quietly(ip_addr)
                continue

            cidr = f"{ip_addr}/{mask}"
            logger.info(f"Reserved {cidr} in subnet {subnet_id} for {owner}")
            return cidr

        raise IpamReservationError(zone, owner)

    async def _release_quietly(self, ip_addr: str) -> None:
        try:
            await self.delete_ip_address(ip_addr)
        except IpamError as e:
            logger.error(f"Failed to release {ip_addr} after a partial reservation: {e}")

    async def get_subnet_for_ip(self, ip_addr: str) -> SubnetInfo:
        """
        Find the subnet an address was reserved from.

        Uses the first matching address record.

        Raises:
            IpamError: If no record matches, or the subnet or its gateway
                cannot be read.
        """
        envelope = await self.call("GET", f"addresses/search/{ip_addr}/")
        if not envelope.success:
            raise IpamApiError(
                f"unable to find subnet for IP {ip_addr}: {envelope.message}",
                code=envelope.code,
                path=f"addresses/search/{ip_addr}/",
            )
        records = self._address_records(envelope)
        if not records:
            raise IpamError(f"no address record found for IP {ip_addr}")

        record = records[0]
        subnet = await self.get_subnet(record.subnet_id)
        try:
            info = SubnetInfo(
                subnet=str(subnet.value("subnet")),
                mask=str(subnet.value("mask")),
                gateway=str(subnet.value("gateway.ip_addr")),
            )
        except KeyError as e:
            raise IpamError(f"subnet {record.subnet_id} of {ip_addr} is incomplete: {e}") from e

        logger.debug(f"IP {ip_addr} belongs to {info.cidr}, gateway {info.gateway}")
        return info

    async def delete_ip_address(self, ip_addr: str) -> None:
        """
        Release an address. An address that is already gone counts as released.

        Raises:
            IpamError: If the lookup or the delete call fails.
        """
        search_path = f"addresses/search/{ip_addr}/"
        envelope = await self.call("GET", search_path)
        if not envelope.success:
            if "not found" in envelope.message.lower():
                logger.info(f"IP {ip_addr} is not in IPAM, nothing to release")
                return
            raise IpamApiError(envelope.message, code=envelope.code, path=search_path)

        records = self._address_records(envelope)
        if not records:
            logger.info(f"IP {ip_addr} is not in IPAM, nothing to release")
            return

        record = records[0]
        await self.call_ok("DELETE", f"addresses/{record.id}/")
        logger.info(f"Released IP {ip_addr} (address id {record.id})")
