"""Tests for the kubernetes-client backed store, with the API objects mocked."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException
from urllib3.exceptions import ProtocolError, ReadTimeoutError

from overlayip.exceptions import ConflictError, NotFoundError, StoreError
from overlayip.kube import store as store_module
from overlayip.kube.store import KubeStore
from overlayip.models.enums import ResourceKind


@pytest.fixture
def kube():
    kube = KubeStore(api_client=MagicMock(), group="iks.ibm.com", version="v1alpha1")
    kube.core = MagicMock()
    kube.custom = MagicMock()
    return kube


def test_get_custom_object(kube):
    kube.custom.get_cluster_custom_object.return_value = {"metadata": {"name": "node-a"}}

    body = asyncio.run(kube.get(ResourceKind.NODE_OVERLAY_IP, "node-a"))

    assert body == {"metadata": {"name": "node-a"}}
    kwargs = kube.custom.get_cluster_custom_object.call_args.kwargs
    assert kwargs["group"] == "iks.ibm.com"
    assert kwargs["version"] == "v1alpha1"
    assert kwargs["plural"] == "nodeoverlayips"
    assert kwargs["name"] == "node-a"


def test_get_node_is_serialized(kube):
    kube.api_client.sanitize_for_serialization.return_value = {"metadata": {"name": "node-a"}}

    body = asyncio.run(kube.get(ResourceKind.NODE, "node-a"))

    assert body["metadata"]["name"] == "node-a"
    kube.core.read_node.assert_called_once()


@pytest.mark.parametrize(
    "status, error",
    [(404, NotFoundError), (409, ConflictError), (500, StoreError)],
)
def test_api_errors_are_translated(kube, status, error):
    kube.custom.replace_cluster_custom_object_status.side_effect = ApiException(
        status=status, reason="nope"
    )
    body = {"metadata": {"name": "r1", "resourceVersion": "1"}}

    with pytest.raises(error) as exc:
        asyncio.run(kube.update_status(ResourceKind.STATIC_ROUTE, body))

    assert exc.value.status == status


@pytest.mark.parametrize(
    "error",
    [
        ReadTimeoutError(None, "/apis", "Read timed out."),
        ProtocolError("Connection aborted.", ConnectionResetError()),
        ConnectionRefusedError("refused"),
    ],
)
def test_transport_errors_become_store_errors(kube, error):
    kube.custom.replace_cluster_custom_object_status.side_effect = error
    body = {"metadata": {"name": "r1", "resourceVersion": "1"}}

    with pytest.raises(StoreError, match="request failed") as exc:
        asyncio.run(kube.update_status(ResourceKind.STATIC_ROUTE, body))

    assert not isinstance(exc.value, (ConflictError, NotFoundError))


def test_discovery_transport_error_is_store_error(kube):
    kube.custom.get_api_resources.side_effect = ReadTimeoutError(None, "/apis", "Read timed out.")

    with pytest.raises(StoreError, match="discovery"):
        asyncio.run(kube.served_kinds())


def test_update_uses_main_resource(kube):
    body = {"metadata": {"name": "r1", "resourceVersion": "1"}}

    asyncio.run(kube.update(ResourceKind.STATIC_ROUTE, body))

    kube.custom.replace_cluster_custom_object.assert_called_once()
    kube.custom.replace_cluster_custom_object_status.assert_not_called()


def test_nodes_are_read_only(kube):
    with pytest.raises(StoreError):
        asyncio.run(kube.create(ResourceKind.NODE, {"metadata": {"name": "node-a"}}))


def test_served_kinds_skips_subresources(kube):
    kube.custom.get_api_resources.return_value = SimpleNamespace(
        resources=[
            SimpleNamespace(kind="StaticRoute", name="staticroutes"),
            SimpleNamespace(kind="StaticRoute", name="staticroutes/status"),
        ]
    )

    assert asyncio.run(kube.served_kinds()) == {"StaticRoute"}


def test_served_kinds_of_missing_group_is_empty(kube):
    kube.custom.get_api_resources.side_effect = ApiException(status=404, reason="Not Found")

    assert asyncio.run(kube.served_kinds()) == set()


class FakeWatch:
    def __init__(self, events=(), error=None):
        self.events = events
        self.error = error
        self.stopped = False
        self.kwargs = None

    def stream(self, func, **kwargs):
        self.kwargs = kwargs
        yield from self.events
        if self.error is not None:
            raise self.error

    def stop(self):
        self.stopped = True


def test_watch_yields_events_with_field_selector(kube, monkeypatch):
    fake = FakeWatch(events=[{"type": "ADDED", "object": {"metadata": {"name": "node-a"}}}])
    monkeypatch.setattr(store_module.watch, "Watch", lambda: fake)

    events = list(kube.watch(ResourceKind.NODE_OVERLAY_IP, "metadata.name=node-a"))

    assert events == [("ADDED", {"metadata": {"name": "node-a"}})]
    assert fake.kwargs["field_selector"] == "metadata.name=node-a"
    assert fake.stopped


def test_expired_watch_ends_quietly(kube, monkeypatch):
    fake = FakeWatch(error=ApiException(status=410, reason="Gone"))
    monkeypatch.setattr(store_module.watch, "Watch", lambda: fake)

    assert list(kube.watch(ResourceKind.STATIC_ROUTE)) == []
    assert fake.stopped


def test_failed_watch_is_an_error(kube, monkeypatch):
    fake = FakeWatch(error=ApiException(status=403, reason="Forbidden"))
    monkeypatch.setattr(store_module.watch, "Watch", lambda: fake)

    with pytest.raises(StoreError):
        list(kube.watch(ResourceKind.STATIC_ROUTE))
