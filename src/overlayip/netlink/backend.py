"""
Network backends: the only code that touches the host's network stack.

NetlinkBackend talks to the kernel through pyroute2 and is the default.
IpCommandBackend drives the ``ip`` command and parses its output; it is
kept for hosts where the netlink socket is not usable from the agent's
sandbox. Both expose the same synchronous NetworkBackend protocol and
raise NetworkError for anything other than "object is absent".
"""

from __future__ import annotations

import contextlib
import ipaddress
import re
import shlex
import socket
import subprocess
import threading
from typing import Iterator, Protocol

from pyroute2.netlink.exceptions import NetlinkError

from overlayip.exceptions import NetworkError
from overlayip.netlink.models import LinkInfo, RouteInfo
from overlayip.utils.logger import get_logger

logger = get_logger(__name__)

IFF_UP = 0x1
MAIN_ROUTE_TABLE = 254
DEFAULT_COMMAND_TIMEOUT = 10.0


class NetworkBackend(Protocol):
    """Primitive host network operations used by HostNetworkApplier."""

    def get_link(self, name: str) -> LinkInfo | None: ...

    def add_macvlan(self, name: str, parent: str) -> None: ...

    def set_link_up(self, name: str) -> None: ...

    def delete_link(self, name: str) -> None: ...

    def get_addresses(self, device: str) -> list[str]: ...

    def add_address(self, device: str, cidr: str) -> None: ...

    def delete_address(self, device: str, cidr: str) -> None: ...

    def get_route(self, destination: str) -> RouteInfo | None: ...

    def add_route(self, destination: str, gateway: str) -> None: ...

    def delete_route(self, destination: str) -> None: ...

    def lookup_route(self, address: str) -> RouteInfo | None: ...

    def close(self) -> None: ...


# =============================================================================
# Netlink (pyroute2)
# =============================================================================


class NetlinkBackend:
    """NetworkBackend on top of a pyroute2 IPRoute socket."""

    def __init__(self):
        self._ipr = None
        # Reconcilers call in from several worker threads
        self._ipr_lock = threading.Lock()

    def _get_ipr(self):
        """Get or create IPRoute instance."""
        with self._ipr_lock:
            if self._ipr is None:
                from pyroute2 import IPRoute

                self._ipr = IPRoute()
            return self._ipr

    def close(self) -> None:
        with self._ipr_lock:
            if self._ipr is not None:
                self._ipr.close()
                self._ipr = None

    @contextlib.contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except NetlinkError as e:
            raise NetworkError(f"{action} failed: {e}", command=action) from e

    def _index(self, name: str) -> int | None:
        found = self._get_ipr().link_lookup(ifname=name)
        return found[0] if found else None

    def _require_index(self, name: str) -> int:
        index = self._index(name)
        if index is None:
            raise NetworkError(f"Device {name} does not exist")
        return index

    def _ifname(self, index: int | None) -> str:
        if not index:
            return ""
        links = self._get_ipr().get_links(index)
        return links[0].get_attr("IFLA_IFNAME") if links else ""

    def get_link(self, name: str) -> LinkInfo | None:
        with self._errors(f"link show {name}"):
            index = self._index(name)
            if index is None:
                return None
            link = self._get_ipr().get_links(index)[0]

        kind = ""
        linkinfo = link.get_attr("IFLA_LINKINFO")
        if linkinfo:
            kind = linkinfo.get_attr("IFLA_INFO_KIND") or ""
        return LinkInfo(
            name=name,
            index=index,
            up=bool(link["flags"] & IFF_UP),
            kind=kind,
        )

    def add_macvlan(self, name: str, parent: str) -> None:
        with self._errors(f"link add {name} link {parent} type macvlan"):
            parent_index = self._require_index(parent)
            self._get_ipr().link("add", ifname=name, kind="macvlan", link=parent_index)

    def set_link_up(self, name: str) -> None:
        with self._errors(f"link set {name} up"):
            self._get_ipr().link("set", index=self._require_index(name), state="up")

    def delete_link(self, name: str) -> None:
        with self._errors(f"link del {name}"):
            index = self._index(name)
            if index is not None:
                self._get_ipr().link("del", index=index)

    def get_addresses(self, device: str) -> list[str]:
        with self._errors(f"addr show {device}"):
            index = self._require_index(device)
            return [
                f"{addr.get_attr('IFA_ADDRESS')}/{addr['prefixlen']}"
                for addr in self._get_ipr().get_addr(index=index, family=socket.AF_INET)
            ]

    def add_address(self, device: str, cidr: str) -> None:
        iface = ipaddress.ip_interface(cidr)
        with self._errors(f"addr add {cidr} dev {device}"):
            self._get_ipr().addr(
                "add",
                index=self._require_index(device),
                address=str(iface.ip),
                prefixlen=iface.network.prefixlen,
            )

    def delete_address(self, device: str, cidr: str) -> None:
        iface = ipaddress.ip_interface(cidr)
        with self._errors(f"addr del {cidr} dev {device}"):
            self._get_ipr().addr(
                "del",
                index=self._require_index(device),
                address=str(iface.ip),
                prefixlen=iface.network.prefixlen,
            )

    def get_route(self, destination: str) -> RouteInfo | None:
        net = ipaddress.ip_network(destination)
        with self._errors(f"route show {destination}"):
            routes = self._get_ipr().get_routes(
                family=socket.AF_INET,
                table=MAIN_ROUTE_TABLE,
                dst=str(net.network_address),
                dst_len=net.prefixlen,
            )
            for route in routes:
                if route["dst_len"] != net.prefixlen:
                    continue
                if route.get_attr("RTA_DST") != str(net.network_address):
                    continue
                return RouteInfo(
                    destination=str(net),
                    gateway=route.get_attr("RTA_GATEWAY") or "",
                    device=self._ifname(route.get_attr("RTA_OIF")),
                )
        return None

    def add_route(self, destination: str, gateway: str) -> None:
        net = ipaddress.ip_network(destination)
        with self._errors(f"route add {destination} via {gateway}"):
            self._get_ipr().route(
                "add",
                dst=str(net.network_address),
                dst_len=net.prefixlen,
                gateway=gateway,
            )

    def delete_route(self, destination: str) -> None:
        net = ipaddress.ip_network(destination)
        with self._errors(f"route del {destination}"):
            self._get_ipr().route(
                "del",
                dst=str(net.network_address),
                dst_len=net.prefixlen,
                table=MAIN_ROUTE_TABLE,
            )

    def lookup_route(self, address: str) -> RouteInfo | None:
        with self._errors(f"route get {address}"):
            answers = self._get_ipr().route("get", dst=address)
            for answer in answers:
                return RouteInfo(
                    destination=address,
                    gateway=answer.get_attr("RTA_GATEWAY") or "",
                    device=self._ifname(answer.get_attr("RTA_OIF")),
                )
        return None


# =============================================================================
# iproute2 command
# =============================================================================

# Output of `ip link show` when the device is missing
ABSENT_SIGNATURES = ("does not exist", "Cannot find device")

_LINK_RE = re.compile(r"^\d+:\s+(?P<name>[^:@\s]+)(?:@\S+)?:\s+<(?P<flags>[^>]*)>", re.M)
_LINK_INDEX_RE = re.compile(r"^(?P<index>\d+):", re.M)
_LINK_KIND_RE = re.compile(
    r"^\s+(?P<kind>macvlan|macvtap|ipvlan|vlan|vxlan|bridge|bond|dummy|veth|tun)\b",
    re.M,
)
_INET_RE = re.compile(r"^\s*inet\s+(?P<cidr>\S+)", re.M)
_VIA_RE = re.compile(r"\bvia\s+(?P<gateway>\S+)")
_DEV_RE = re.compile(r"\bdev\s+(?P<device>\S+)")


def parse_link(output: str) -> LinkInfo | None:
    """Parse `ip -d link show dev X` output. Returns None if no link header is found."""
    match = _LINK_RE.search(output)
    if match is None:
        return None
    flags = match.group("flags").split(",")
    index = int(_LINK_INDEX_RE.search(output).group("index"))
    kind_match = _LINK_KIND_RE.search(output)
    return LinkInfo(
        name=match.group("name"),
        index=index,
        up="UP" in flags,
        kind=kind_match.group("kind") if kind_match else "",
    )


def parse_addresses(output: str) -> list[str]:
    """Parse `ip -4 addr show dev X` output into CIDR strings."""
    return [m.group("cidr") for m in _INET_RE.finditer(output)]


def parse_route(output: str, destination: str) -> RouteInfo | None:
    """Parse the first line of `ip route show X` / `ip route get X` output."""
    for line in output.splitlines():
        line = line.strip()
        if not line or line == "cache":
            continue
        via = _VIA_RE.search(line)
        dev = _DEV_RE.search(line)
        return RouteInfo(
            destination=destination,
            gateway=via.group("gateway") if via else "",
            device=dev.group("device") if dev else "",
        )
    return None


class IpCommandBackend:
    """NetworkBackend that runs the iproute2 ``ip`` binary."""

    def __init__(self, binary: str = "ip", timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.binary = binary
        self.timeout = timeout

    def close(self) -> None:
        pass

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        command = " ".join(shlex.quote(c) for c in cmd)
        logger.debug(f"Running: {command}")
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise NetworkError(
                f"Command timed out after {self.timeout}s", command=command
            ) from e
        except OSError as e:
            raise NetworkError(f"Cannot run {self.binary}: {e}", command=command) from e

    def _check(self, *args: str) -> str:
        result = self._run(*args)
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            raise NetworkError(
                f"Command exited with {result.returncode}",
                command=" ".join((self.binary, *args)),
                output=output.strip(),
            )
        return result.stdout or ""

    def _show(self, *args: str) -> str | None:
        """Run a show command; None means the object does not exist."""
        result = self._run(*args)
        if result.returncode != 0:
            output = (result.stdout or "") + (result.stderr or "")
            if any(sig in output for sig in ABSENT_SIGNATURES):
                return None
            raise NetworkError(
                f"Command exited with {result.returncode}",
                command=" ".join((self.binary, *args)),
                output=output.strip(),
            )
        return result.stdout or ""

    def get_link(self, name: str) -> LinkInfo | None:
        output = self._show("-d", "link", "show", "dev", name)
        if output is None:
            return None
        link = parse_link(output)
        if link is None:
            raise NetworkError(
                f"Unexpected output for device {name}",
                command=f"{self.binary} -d link show dev {name}",
                output=output,
            )
        return link

    def add_macvlan(self, name: str, parent: str) -> None:
        self._check("link", "add", name, "link", parent, "type", "macvlan")

    def set_link_up(self, name: str) -> None:
        self._check("link", "set", "dev", name, "up")

    def delete_link(self, name: str) -> None:
        self._check("link", "del", "dev", name)

    def get_addresses(self, device: str) -> list[str]:
        output = self._show("-4", "addr", "show", "dev", device)
        if output is None:
            raise NetworkError(f"Device {device} does not exist")
        return parse_addresses(output)

    def add_address(self, device: str, cidr: str) -> None:
        self._check("addr", "add", cidr, "dev", device)

    def delete_address(self, device: str, cidr: str) -> None:
        self._check("addr", "del", cidr, "dev", device)

    def get_route(self, destination: str) -> RouteInfo | None:
        output = self._check("-4", "route", "show", "exact", destination)
        return parse_route(output, destination)

    def add_route(self, destination: str, gateway: str) -> None:
        self._check("route", "add", destination, "via", gateway)

    def delete_route(self, destination: str) -> None:
        self._check("route", "del", destination)

    def lookup_route(self, address: str) -> RouteInfo | None:
        output = self._check("-4", "route", "get", address)
        return parse_route(output, address)
