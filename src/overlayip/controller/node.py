"""
Node -> NodeOverlayIp provisioner.

Every Node gets a NodeOverlayIp with the same name. The object carries
the node's region and zone as labels (the zone selects IPAM subnets) and
a controller owner reference back to the Node, so the store removes it
when the Node goes away.
"""

from __future__ import annotations

from overlayip.exceptions import NotFoundError
from overlayip.kube.runtime import ReconcileResult
from overlayip.kube.store import ResourceStore
from overlayip.models.enums import ResourceKind
from overlayip.models.resources import Node, NodeOverlayIp
from overlayip.utils.logger import get_logger

logger = get_logger(__name__)


class NodeProvisioner:
    """Reconciler keyed by Node name."""

    def __init__(self, store: ResourceStore, api_version: str | None = None):
        self.store = store
        self.api_version = api_version

    async def reconcile(self, name: str) -> ReconcileResult:
        try:
            node = Node.from_body(await self.store.get(ResourceKind.NODE, name))
        except NotFoundError:
            logger.debug(f"Node {name} not found, ignoring")
            return ReconcileResult()

        try:
            await self.store.get(ResourceKind.NODE_OVERLAY_IP, name)
            return ReconcileResult()
        except NotFoundError:
            pass

        obj = NodeOverlayIp.for_node(node, api_version=self.api_version)
        logger.info(
            f"Creating NodeOverlayIp {name} (region={node.region or '-'}, zone={node.zone or '-'})"
        )
        await self.store.create(ResourceKind.NODE_OVERLAY_IP, obj.to_body())
        return ReconcileResult(requeue=True)
