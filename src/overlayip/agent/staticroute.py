"""
StaticRoute reconciler (node-local).

Every node agent installs each StaticRoute on its own host and records
``{hostname, gateway, device}`` in the object's shared status list. The
list is written by many agents at once, so each write is a merge of this
node's entry into the copy just read, sent with that copy's
resourceVersion. A conflict re-runs the whole reconcile from a fresh read.

Deletion is two-phase: each agent removes its route and then its own
status entry. Only when the list is empty does an agent drop the
finalizer, so no node is left with a stale route.

Gateway precedence:
    1. spec.gateway
    2. status.gateway of this node's NodeOverlayIp (requeue while it is unset)
    3. the host's gateway toward 10.0.0.0/8
"""

from __future__ import annotations

import asyncio

from overlayip.exceptions import NotFoundError
from overlayip.kube.runtime import ReconcileResult
from overlayip.kube.store import ResourceStore
from overlayip.models.enums import ResourceKind
from overlayip.models.resources import (
    FINALIZER,
    NodeOverlayIp,
    StaticRoute,
    StaticRouteNodeStatus,
)
from overlayip.netlink.applier import HostNetworkApplier
from overlayip.utils.logger import get_logger

logger = get_logger(__name__)

KIND = ResourceKind.STATIC_ROUTE


class StaticRouteController:
    """Reconciler keyed by StaticRoute name, bound to one node."""

    def __init__(
        self,
        store: ResourceStore,
        network: HostNetworkApplier,
        hostname: str,
        zone: str = "",
        has_node_overlay_ip: bool = True,
    ):
        self.store = store
        self.network = network
        self.hostname = hostname
        self.zone = zone
        self.has_node_overlay_ip = has_node_overlay_ip

    async def _update(self, route: StaticRoute) -> StaticRoute:
        return StaticRoute.from_body(await self.store.update(KIND, route.to_body()))

    async def reconcile(self, name: str) -> ReconcileResult:
        try:
            route = StaticRoute.from_body(await self.store.get(KIND, name))
        except NotFoundError:
            logger.debug(f"StaticRoute {name} not found, ignoring")
            return ReconcileResult()

        if route.metadata.is_deleting:
            try:
                await self._finalize(route)
            except NotFoundError:
                # Another agent dropped the finalizer first
                logger.debug(f"StaticRoute {name} is already deleted")
            return ReconcileResult()

        if route.metadata.add_finalizer(FINALIZER):
            logger.info(f"Adding finalizer to StaticRoute {name}")
            route = await self._update(route)

        if route.zone and route.zone != self.zone:
            logger.debug(
                f"Ignoring StaticRoute {name}, zone {route.zone} does not match node zone {self.zone or '-'}"
            )
            return ReconcileResult()

        gateway = await self.resolve_gateway(route)
        if gateway is None:
            return ReconcileResult(requeue=True)

        subnet = route.spec.destination
        await asyncio.to_thread(self.network.ensure_route, subnet, gateway)
        device = await asyncio.to_thread(self.network.route_device, subnet)

        entry = StaticRouteNodeStatus(hostname=self.hostname, gateway=gateway, device=device)
        if route.status.upsert_node(entry):
            await self.store.update_status(KIND, route.to_body())
            logger.info(f"StaticRoute {name}: {subnet} via {gateway} dev {device}")
        return ReconcileResult()

    async def resolve_gateway(self, route: StaticRoute) -> str | None:
        """
        Pick the gateway for ``route`` on this node.

        Returns None when this node's NodeOverlayIp exists but has no
        gateway yet; the caller requeues instead of falling back.
        """
        if route.spec.gateway:
            return route.spec.gateway

        if self.has_node_overlay_ip:
            try:
                body = await self.store.get(ResourceKind.NODE_OVERLAY_IP, self.hostname)
            except NotFoundError:
                body = None
            if body is not None:
                overlay_ip = NodeOverlayIp.from_body(body)
                if not overlay_ip.status.gateway:
                    logger.info(
                        f"NodeOverlayIp {self.hostname} has no gateway in status yet, requeuing"
                    )
                    return None
                return overlay_ip.status.gateway

        return await asyncio.to_thread(self.network.fallback_gateway)

    async def _finalize(self, route: StaticRoute) -> None:
        name = route.metadata.name
        await asyncio.to_thread(self.network.remove_route, route.spec.destination)

        if route.status.node_status:
            if route.status.remove_node(self.hostname):
                await self.store.update_status(KIND, route.to_body())
                logger.info(f"Removed {self.hostname} from StaticRoute {name} status")
            # The last agent to leave the list drops the finalizer
            return

        if route.metadata.remove_finalizer(FINALIZER):
            await self._update(route)
            logger.info(f"Removed finalizer from StaticRoute {name}")
