"""
NodeOverlayIp IPAM reconciler (control plane).

Owns the IPAM side of a NodeOverlayIp: reserves an address in the
object's zone, resolves the subnet gateway, and releases the address
before the object is allowed to go away.

State machine per reconcile:
    1. object gone                    -> nothing to do
    2. no finalizer, not deleting     -> add finalizer, persist
    3. deleting                       -> release address, clear status,
                                         drop finalizer (store finishes delete)
    4. live                           -> reserve address if missing,
                                         resolve gateway if missing
"""

from __future__ import annotations

from overlayip.exceptions import (
    ConflictError,
    IpamError,
    NotFoundError,
    StoreError,
)
from overlayip.ipam.client import PhpIpamClient
from overlayip.kube.runtime import ReconcileResult
from overlayip.kube.store import ResourceStore
from overlayip.models.enums import ResourceKind
from overlayip.models.resources import FINALIZER, NodeOverlayIp
from overlayip.utils.logger import get_logger

logger = get_logger(__name__)

KIND = ResourceKind.NODE_OVERLAY_IP


class NodeOverlayIpController:
    """Reconciler keyed by NodeOverlayIp name (= node hostname)."""

    def __init__(self, store: ResourceStore, ipam: PhpIpamClient):
        self.store = store
        self.ipam = ipam

    async def _fetch(self, name: str) -> NodeOverlayIp | None:
        try:
            body = await self.store.get(KIND, name)
        except NotFoundError:
            return None
        return NodeOverlayIp.from_body(body)

    async def _update(self, obj: NodeOverlayIp) -> NodeOverlayIp:
        return NodeOverlayIp.from_body(await self.store.update(KIND, obj.to_body()))

    async def _update_status(self, obj: NodeOverlayIp) -> NodeOverlayIp:
        return NodeOverlayIp.from_body(
            await self.store.update_status(KIND, obj.to_body())
        )

    async def reconcile(self, name: str) -> ReconcileResult:
        obj = await self._fetch(name)
        if obj is None:
            logger.debug(f"NodeOverlayIp {name} not found, ignoring")
            return ReconcileResult()

        if obj.metadata.is_deleting:
            await self._finalize(obj)
            return ReconcileResult()

        if obj.metadata.add_finalizer(FINALIZER):
            logger.info(f"Adding finalizer to NodeOverlayIp {name}")
            obj = await self._update(obj)

        if not obj.status.ip_addr:
            obj = await self._reserve(obj)

        if not obj.status.gateway:
            obj = await self._resolve_gateway(obj)

        return ReconcileResult()

    # =========================================================================
    # Live object
    # =========================================================================

    async def _reserve(self, obj: NodeOverlayIp) -> NodeOverlayIp:
        name = obj.metadata.name
        zone = obj.zone
        ip_addr = await self.ipam.reserve_ip_address(name, zone)
        logger.info(f"Reserved IP {ip_addr} for NodeOverlayIp {name} (zone={zone})")

        # The reservation only exists in IPAM until this write lands. Retry
        # on conflict against a fresh copy; release it if it cannot be kept.
        while True:
            obj.status.ip_addr = ip_addr
            try:
                return await self._update_status(obj)
            except ConflictError:
                try:
                    fresh = await self._fetch(name)
                except StoreError:
                    await self._release_unrecorded(name, ip_addr)
                    raise
                if fresh is None or fresh.metadata.is_deleting or fresh.status.ip_addr:
                    await self._release_unrecorded(name, ip_addr)
                    raise
                obj = fresh
            except StoreError as e:
                # A transport failure may hide a write that landed
                try:
                    fresh = await self._fetch(name)
                except StoreError:
                    logger.error(
                        f"IP {ip_addr} reserved for {name} may be unrecorded, status could not be read back"
                    )
                    raise e
                if fresh is not None and fresh.status.ip_addr == ip_addr:
                    logger.info(f"IP {ip_addr} of NodeOverlayIp {name} was recorded despite: {e}")
                    return fresh
                await self._release_unrecorded(name, ip_addr)
                raise

    async def _release_unrecorded(self, name: str, ip_addr: str) -> None:
        address = ip_addr.split("/", 1)[0]
        logger.warning(f"Releasing IP {ip_addr} of NodeOverlayIp {name}, status write did not land")
        try:
            await self.ipam.delete_ip_address(address)
        except IpamError as e:
            logger.error(
                f"IP {address} reserved for {name} could not be recorded or released: {e}"
            )

    async def _resolve_gateway(self, obj: NodeOverlayIp) -> NodeOverlayIp:
        name = obj.metadata.name
        address = obj.status.address
        logger.info(f"Finding gateway for NodeOverlayIp {name} (ip={address})")
        subnet = await self.ipam.get_subnet_for_ip(address)
        if subnet.gateway == obj.status.gateway:
            return obj

        obj.status.gateway = subnet.gateway
        obj = await self._update_status(obj)
        logger.info(f"Gateway {subnet.gateway} set on NodeOverlayIp {name}")
        return obj

    # =========================================================================
    # Deletion
    # =========================================================================

    async def _finalize(self, obj: NodeOverlayIp) -> None:
        name = obj.metadata.name
        if not obj.metadata.has_finalizer(FINALIZER):
            logger.debug(f"NodeOverlayIp {name} is being deleted without our finalizer")
            return

        if obj.status.ip_addr:
            address = obj.status.address
            try:
                await self.ipam.delete_ip_address(address)
            except IpamError as e:
                logger.error(
                    f"Cannot release IP {address} of NodeOverlayIp {name}, "
                    f"deletion is blocked until IPAM succeeds: {e}"
                )
                raise
            logger.info(f"Released IP {address} of NodeOverlayIp {name}")

            obj.status.ip_addr = ""
            obj.status.gateway = ""
            obj = await self._update_status(obj)

        obj.metadata.remove_finalizer(FINALIZER)
        await self._update(obj)
        logger.info(f"Removed finalizer from NodeOverlayIp {name}")
