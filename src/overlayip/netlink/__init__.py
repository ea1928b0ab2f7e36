"""Host network state: backends and the idempotent applier built on them."""

from overlayip.netlink.applier import (
    FALLBACK_DESTINATION,
    HostNetworkApplier,
    create_backend,
)
from overlayip.netlink.backend import (
    IpCommandBackend,
    NetlinkBackend,
    NetworkBackend,
    parse_addresses,
    parse_link,
    parse_route,
)
from overlayip.netlink.models import LinkInfo, RouteInfo

__all__ = [
    "FALLBACK_DESTINATION",
    "HostNetworkApplier",
    "IpCommandBackend",
    "LinkInfo",
    "NetlinkBackend",
    "NetworkBackend",
    "RouteInfo",
    "create_backend",
    "parse_addresses",
    "parse_link",
    "parse_route",
]
