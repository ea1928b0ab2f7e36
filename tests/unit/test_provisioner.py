"""Tests for the Node -> NodeOverlayIp provisioner."""

import asyncio

from fakes import overlay_ip_body
from overlayip.controller.node import NodeProvisioner
from overlayip.kube.runtime import ReconcileResult
from overlayip.models.enums import ResourceKind
from overlayip.models.resources import NodeOverlayIp


def provision(store, name, api_version="iks.ibm.com/v1alpha1"):
    return asyncio.run(NodeProvisioner(store, api_version=api_version).reconcile(name))


def test_creates_overlay_ip_for_node(seeded_store):
    result = provision(seeded_store, "node-c")

    assert result == ReconcileResult(requeue=True)
    body = seeded_store.peek(ResourceKind.NODE_OVERLAY_IP, "node-c")
    assert body["metadata"]["labels"] == {"node": "node-c", "region": "us-east", "zone": "wdc06"}
    node_uid = seeded_store.peek(ResourceKind.NODE, "node-c")["metadata"]["uid"]
    assert body["metadata"]["ownerReferences"][0]["uid"] == node_uid
    assert NodeOverlayIp.from_body(body).metadata.owned_by("Node", "node-c")


def test_uses_configured_api_version(seeded_store):
    provision(seeded_store, "node-a", api_version="net.example.com/v1")

    body = seeded_store.peek(ResourceKind.NODE_OVERLAY_IP, "node-a")
    assert body["apiVersion"] == "net.example.com/v1"


def test_existing_overlay_ip_is_left_alone(seeded_store):
    seeded_store.put(ResourceKind.NODE_OVERLAY_IP, overlay_ip_body("node-a"))

    assert provision(seeded_store, "node-a") == ReconcileResult()
    assert seeded_store.writes == []


def test_second_pass_is_a_no_op(seeded_store):
    provision(seeded_store, "node-a")

    assert provision(seeded_store, "node-a") == ReconcileResult()
    assert seeded_store.count_writes("create") == 1


def test_missing_node_is_ignored(store):
    assert provision(store, "node-x") == ReconcileResult()
    assert store.writes == []


def test_node_deletion_removes_owned_overlay_ip(seeded_store):
    provision(seeded_store, "node-a")

    seeded_store.delete(ResourceKind.NODE, "node-a")

    assert not seeded_store.exists(ResourceKind.NODE_OVERLAY_IP, "node-a")
    assert provision(seeded_store, "node-a") == ReconcileResult()


def test_node_deletion_waits_for_overlay_ip_finalizer(seeded_store):
    seeded_store.put(ResourceKind.NODE_OVERLAY_IP, overlay_ip_body("node-a"))
    body = seeded_store.peek(ResourceKind.NODE_OVERLAY_IP, "node-a")
    body["metadata"]["ownerReferences"] = [{"apiVersion": "v1", "kind": "Node", "name": "node-a"}]
    seeded_store.put(ResourceKind.NODE_OVERLAY_IP, body)

    seeded_store.delete(ResourceKind.NODE, "node-a")

    body = seeded_store.peek(ResourceKind.NODE_OVERLAY_IP, "node-a")
    assert body["metadata"]["deletionTimestamp"]
