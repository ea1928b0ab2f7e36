"""
Idempotent host network primitives.

Every method inspects current state through the backend first and only
mutates when the state differs from the target. Mutating methods return
True when they changed something, so applying the same target twice in a
row performs no second mutation.

The methods are synchronous; async callers run them with
``asyncio.to_thread``.
"""

from __future__ import annotations

import ipaddress

from overlayip.exceptions import NetworkError
from overlayip.models.enums import NetworkBackendType
from overlayip.netlink.backend import (
    DEFAULT_COMMAND_TIMEOUT,
    IpCommandBackend,
    NetlinkBackend,
    NetworkBackend,
)
from overlayip.utils.logger import get_logger

logger = get_logger(__name__)

# The host's route toward this range supplies the fallback gateway
FALLBACK_DESTINATION = "10.0.0.0/8"


def create_backend(
    backend_type: NetworkBackendType,
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> NetworkBackend:
    match backend_type:
        case NetworkBackendType.NETLINK:
            return NetlinkBackend()
        case NetworkBackendType.IPROUTE2:
            return IpCommandBackend(timeout=command_timeout)
    raise ValueError(f"Unknown network backend: {backend_type}")


def _network(value: str) -> ipaddress.IPv4Network:
    try:
        net = ipaddress.ip_network(value)
    except ValueError as e:
        raise NetworkError(f"Invalid subnet {value!r}: {e}") from e
    if net.version != 4:
        raise NetworkError(f"Only IPv4 subnets are supported, got {value}")
    return net


def _address(value: str) -> ipaddress.IPv4Address:
    try:
        addr = ipaddress.ip_address(value)
    except ValueError as e:
        raise NetworkError(f"Invalid address {value!r}: {e}") from e
    if addr.version != 4:
        raise NetworkError(f"Only IPv4 addresses are supported, got {value}")
    return addr


def _interface(value: str) -> ipaddress.IPv4Interface:
    try:
        iface = ipaddress.ip_interface(value)
    except ValueError as e:
        raise NetworkError(f"Invalid address {value!r}: {e}") from e
    if iface.version != 4 or "/" not in value:
        raise NetworkError(f"Expected an IPv4 address with prefix length, got {value}")
    return iface


class HostNetworkApplier:
    """Converges devices, addresses and routes on the local host."""

    def __init__(self, backend: NetworkBackend):
        self.backend = backend

    def close(self) -> None:
        self.backend.close()

    # =========================================================================
    # Devices
    # =========================================================================

    def ensure_overlay_device(self, parent: str, label: str) -> bool:
        """
        Make sure a macvlan device ``label`` on ``parent`` exists and is up.

        An existing device named ``label`` is reused as is; only its
        administrative state is corrected.
        """
        created = False
        link = self.backend.get_link(label)
        if link is None:
            logger.info(f"Creating macvlan device {label} on {parent}")
            self.backend.add_macvlan(label, parent)
            created = True
            link = self.backend.get_link(label)
            if link is None:
                raise NetworkError(f"Device {label} is missing right after creation")

        if link.up:
            logger.debug(f"Device {label} is already up")
            return created

        logger.info(f"Bringing device {label} up")
        self.backend.set_link_up(label)
        return True

    def remove_overlay_device(self, label: str) -> bool:
        if self.backend.get_link(label) is None:
            logger.debug(f"Device {label} is already deleted")
            return False
        logger.info(f"Deleting device {label}")
        self.backend.delete_link(label)
        return True

    # =========================================================================
    # Addresses
    # =========================================================================

    def ensure_address(self, device: str, cidr: str) -> bool:
        """
        Make ``cidr`` the only IPv4 address on ``device``.

        Any other IPv4 address found on the device is removed first.
        """
        target = _interface(cidr)
        current = self.backend.get_addresses(device)

        changed = False
        present = False
        for existing in current:
            if ipaddress.ip_interface(existing) == target:
                present = True
                continue
            logger.info(f"IP addr {existing} is currently set on device {device}, removing")
            self.backend.delete_address(device, existing)
            changed = True

        if present:
            logger.debug(f"IP {cidr} is already set on device {device}")
            return changed

        logger.info(f"Adding IP {cidr} to device {device}")
        self.backend.add_address(device, str(target))
        return True

    # =========================================================================
    # Routes
    # =========================================================================

    def ensure_route(self, subnet: str, gateway: str) -> bool:
        """Route ``subnet`` via ``gateway``, replacing a route via another gateway."""
        net = str(_network(subnet))
        gw = str(_address(gateway))

        existing = self.backend.get_route(net)
        if existing is not None:
            if existing.gateway == gw:
                logger.debug(f"Route {net} via {gw} already exists")
                return False
            logger.info(
                f"Route {net} goes via {existing.gateway or 'direct'}, replacing with {gw}"
            )
            self.backend.delete_route(net)

        logger.info(f"Adding route {net} via {gw}")
        self.backend.add_route(net, gw)
        return True

    def remove_route(self, subnet: str) -> bool:
        net = str(_network(subnet))
        if self.backend.get_route(net) is None:
            logger.debug(f"Route {net} is already absent")
            return False
        logger.info(f"Deleting route {net}")
        self.backend.delete_route(net)
        return True

    def route_device(self, subnet: str) -> str:
        """Return the device traffic toward ``subnet`` currently leaves through."""
        net = _network(subnet)
        route = self.backend.lookup_route(str(net.network_address))
        if route is None or not route.device:
            raise NetworkError(f"Unable to resolve the device used to reach {net}")
        return route.device

    def fallback_gateway(self) -> str:
        """Return the gateway the host uses toward the private 10.0.0.0/8 range."""
        net = _network(FALLBACK_DESTINATION)
        route = self.backend.lookup_route(str(net.network_address))
        if route is None or not route.gateway:
            raise NetworkError(f"Unable to resolve a gateway toward {FALLBACK_DESTINATION}")
        return route.gateway
