"""
NodeOverlayIp agent reconciler (node-local).

Applies this node's overlay address to the host: a macvlan device on the
configured parent interface carrying the address the controller reserved.
Objects for other nodes are ignored. The finalizer belongs to the
controller and is never touched here.
"""

from __future__ import annotations

import asyncio

from overlayip.exceptions import NotFoundError
from overlayip.kube.runtime import ReconcileResult
from overlayip.kube.store import ResourceStore
from overlayip.models.enums import ResourceKind
from overlayip.models.resources import NodeOverlayIp
from overlayip.netlink.applier import HostNetworkApplier
from overlayip.utils.logger import get_logger

logger = get_logger(__name__)

KIND = ResourceKind.NODE_OVERLAY_IP


class NodeOverlayIpAgent:
    """Reconciler for the NodeOverlayIp named after this node."""

    def __init__(
        self,
        store: ResourceStore,
        network: HostNetworkApplier,
        hostname: str,
        interface: str,
        interface_label: str,
    ):
        self.store = store
        self.network = network
        self.hostname = hostname
        self.interface = interface
        self.interface_label = interface_label

    async def reconcile(self, name: str) -> ReconcileResult:
        if name != self.hostname:
            logger.debug(f"NodeOverlayIp {name} belongs to another node, ignoring")
            return ReconcileResult()

        try:
            obj = NodeOverlayIp.from_body(await self.store.get(KIND, name))
        except NotFoundError:
            logger.debug(f"NodeOverlayIp {name} not found, ignoring")
            return ReconcileResult()

        if obj.metadata.is_deleting:
            label = obj.status.interface_label
            if label:
                await asyncio.to_thread(self.network.remove_overlay_device, label)
            return ReconcileResult()

        await asyncio.to_thread(
            self.network.ensure_overlay_device, self.interface, self.interface_label
        )

        if obj.status.ip_addr:
            await asyncio.to_thread(
                self.network.ensure_address, self.interface_label, obj.status.ip_addr
            )
        else:
            logger.info(f"NodeOverlayIp {name} has no IP yet, waiting for the controller")

        if (
            obj.status.interface != self.interface
            or obj.status.interface_label != self.interface_label
        ):
            obj.status.interface = self.interface
            obj.status.interface_label = self.interface_label
            await self.store.update_status(KIND, obj.to_body())
            logger.info(
                f"NodeOverlayIp {name} status updated: "
                f"interface={self.interface}, interfaceLabel={self.interface_label}"
            )

        return ReconcileResult()
