"""Tests for the iproute2 command backend and its output parsers."""

import subprocess

import pytest

from overlayip.exceptions import NetworkError
from overlayip.netlink import IpCommandBackend, parse_addresses, parse_link, parse_route

LINK_UP = """\
7: overlay0@eth0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500 qdisc noqueue state UP mode DEFAULT group default qlen 1000
    link/ether 5a:1e:0b:44:7c:21 brd ff:ff:ff:ff:ff:ff promiscuity 0 minmtu 68 maxmtu 9194
    macvlan mode vepa addrgenmode eui64 numtxqueues 1 numrxqueues 1
"""

LINK_DOWN = """\
7: overlay0@eth0: <BROADCAST,MULTICAST> mtu 1500 qdisc noop state DOWN mode DEFAULT group default qlen 1000
    link/ether 5a:1e:0b:44:7c:21 brd ff:ff:ff:ff:ff:ff
"""

ADDR_SHOW = """\
7: overlay0@eth0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500 qdisc noqueue state UP group default qlen 1000
    inet 10.1.7.10/24 brd 10.1.7.255 scope global overlay0
       valid_lft forever preferred_lft forever
    inet 10.9.9.9/24 scope global secondary overlay0
       valid_lft forever preferred_lft forever
"""


def test_parse_link_up():
    link = parse_link(LINK_UP)
    assert link.name == "overlay0"
    assert link.index == 7
    assert link.up is True
    assert link.kind == "macvlan"


def test_parse_link_down():
    link = parse_link(LINK_DOWN)
    assert link.up is False
    assert link.kind == ""


def test_parse_link_without_header():
    assert parse_link("") is None


def test_parse_addresses():
    assert parse_addresses(ADDR_SHOW) == ["10.1.7.10/24", "10.9.9.9/24"]
    assert parse_addresses("7: overlay0: <BROADCAST> mtu 1500\n") == []


@pytest.mark.parametrize(
    "output, gateway, device",
    [
        ("10.2.0.0/16 via 10.0.0.1 dev eth0 proto static\n", "10.0.0.1", "eth0"),
        ("10.0.0.0 via 10.176.0.1 dev bond0 src 10.176.0.5 uid 0 \n    cache \n", "10.176.0.1", "bond0"),
        ("10.1.7.0/24 dev overlay0 proto kernel scope link src 10.1.7.10\n", "", "overlay0"),
    ],
)
def test_parse_route(output, gateway, device):
    route = parse_route(output, "x")
    assert route.gateway == gateway
    assert route.device == device


def test_parse_route_empty():
    assert parse_route("\n", "10.2.0.0/16") is None


# =============================================================================
# Command execution
# =============================================================================


class FakeIp:
    """Replaces subprocess.run with canned results keyed by argument tuple."""

    def __init__(self, results):
        self.results = results
        self.calls = []

    def __call__(self, cmd, capture_output, text, timeout):
        self.calls.append((tuple(cmd[1:]), timeout))
        returncode, stdout, stderr = self.results.get(tuple(cmd[1:]), (0, "", ""))
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)


@pytest.fixture
def fake_ip(monkeypatch):
    def install(results):
        fake = FakeIp(results)
        monkeypatch.setattr(subprocess, "run", fake)
        return fake

    return install


def test_missing_link_is_absent(fake_ip):
    fake_ip({("-d", "link", "show", "dev", "overlay0"): (1, "", 'Device "overlay0" does not exist.\n')})
    assert IpCommandBackend().get_link("overlay0") is None


def test_link_show_failure_is_error(fake_ip):
    fake_ip({("-d", "link", "show", "dev", "overlay0"): (255, "", "RTNETLINK answers: Operation not permitted\n")})
    with pytest.raises(NetworkError, match="Operation not permitted"):
        IpCommandBackend().get_link("overlay0")


def test_unexpected_link_output_is_error(fake_ip):
    fake_ip({("-d", "link", "show", "dev", "overlay0"): (0, "garbage\n", "")})
    with pytest.raises(NetworkError, match="Unexpected output"):
        IpCommandBackend().get_link("overlay0")


def test_commands_and_timeout(fake_ip):
    fake = fake_ip(
        {
            ("-d", "link", "show", "dev", "overlay0"): (0, LINK_UP, ""),
            ("-4", "route", "show", "exact", "10.2.0.0/16"): (0, "10.2.0.0/16 via 10.0.0.1 dev eth0\n", ""),
        }
    )
    ip = IpCommandBackend(timeout=4.0)

    assert ip.get_link("overlay0").up
    ip.add_macvlan("overlay0", "eth0")
    ip.set_link_up("overlay0")
    ip.add_address("overlay0", "10.1.7.10/24")
    assert ip.get_route("10.2.0.0/16").gateway == "10.0.0.1"
    ip.add_route("10.3.0.0/16", "10.0.0.1")
    ip.delete_route("10.3.0.0/16")

    args = [call[0] for call in fake.calls]
    assert ("link", "add", "overlay0", "link", "eth0", "type", "macvlan") in args
    assert ("link", "set", "dev", "overlay0", "up") in args
    assert ("addr", "add", "10.1.7.10/24", "dev", "overlay0") in args
    assert ("route", "add", "10.3.0.0/16", "via", "10.0.0.1") in args
    assert ("route", "del", "10.3.0.0/16") in args
    assert all(timeout == 4.0 for _, timeout in fake.calls)


def test_failed_mutation_is_error(fake_ip):
    fake_ip({("route", "add", "10.3.0.0/16", "via", "10.0.0.1"): (2, "", "RTNETLINK answers: File exists\n")})
    with pytest.raises(NetworkError) as exc:
        IpCommandBackend().add_route("10.3.0.0/16", "10.0.0.1")
    assert "File exists" in exc.value.output


def test_timeout_is_error(monkeypatch):
    def hang(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", hang)
    with pytest.raises(NetworkError, match="timed out"):
        IpCommandBackend(timeout=0.5).lookup_route("10.0.0.0")


def test_missing_binary_is_error(monkeypatch):
    def missing(cmd, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", cmd[0])

    monkeypatch.setattr(subprocess, "run", missing)
    with pytest.raises(NetworkError, match="Cannot run"):
        IpCommandBackend().get_addresses("overlay0")
