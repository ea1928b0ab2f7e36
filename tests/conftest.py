"""Pytest configuration and shared fixtures."""

import pytest
from hypothesis import Verbosity, settings

from fakes import FakeBackend, FakeStore, node_body
from overlayip.ipam.config import IpamConfig
from overlayip.models.enums import ResourceKind
from overlayip.netlink.applier import HostNetworkApplier

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def applier(backend):
    return HostNetworkApplier(backend)


@pytest.fixture
def ipam_config():
    return IpamConfig(
        url="https://ipam.example.com/",
        app_id="overlay",
        username="svc",
        password="secret",
        subnet_map={"wdc04": [7, 8], "wdc06": [12]},
    )


@pytest.fixture
def seeded_store(store):
    """Store with two nodes in wdc04 and one in wdc06."""
    for name, zone in (("node-a", "wdc04"), ("node-b", "wdc04"), ("node-c", "wdc06")):
        store.put(ResourceKind.NODE, node_body(name, zone=zone))
    return store
