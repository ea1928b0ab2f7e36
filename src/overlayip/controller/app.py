"""
Controller process.

Runs the two control-plane reconcilers in one process:
    - node-provisioner: Node -> NodeOverlayIp (also woken by NodeOverlayIp
      events, mapped back to the owning Node)
    - nodeoverlayip: IPAM reservation, gateway resolution, release
"""

from __future__ import annotations

from overlayip.controller.config import ControllerConfig
from overlayip.controller.node import NodeProvisioner
from overlayip.controller.nodeoverlayip import NodeOverlayIpController
from overlayip.ipam.client import PhpIpamClient
from overlayip.ipam.config import IpamConfig
from overlayip.kube.runtime import (
    Controller,
    Manager,
    WatchSource,
    WorkQueue,
    enqueue_owner,
)
from overlayip.kube.store import KubeStore, ResourceStore, load_kube_config
from overlayip.models.enums import ResourceKind
from overlayip.utils.logger import get_logger

logger = get_logger(__name__)


def build_manager(
    config: ControllerConfig, store: ResourceStore, ipam: PhpIpamClient
) -> Manager:
    """Wire reconcilers, queues and watches."""

    def _queue() -> WorkQueue:
        return WorkQueue(config.BACKOFF_BASE_SECONDS, config.BACKOFF_MAX_SECONDS)

    manager = Manager()

    provisioner = Controller(
        "node-provisioner",
        NodeProvisioner(store, api_version=config.get_api_version()),
        workers=config.WORKERS,
        queue=_queue(),
    )
    manager.add(
        provisioner,
        WatchSource(store, ResourceKind.NODE, provisioner),
        WatchSource(
            store,
            ResourceKind.NODE_OVERLAY_IP,
            provisioner,
            mapper=enqueue_owner(ResourceKind.NODE.value),
        ),
    )

    overlay_ip = Controller(
        "nodeoverlayip",
        NodeOverlayIpController(store, ipam),
        workers=config.WORKERS,
        queue=_queue(),
    )
    manager.add(
        overlay_ip,
        WatchSource(store, ResourceKind.NODE_OVERLAY_IP, overlay_ip),
    )
    return manager


async def run_controller(config: ControllerConfig) -> None:
    """Load configuration, connect to IPAM and the API server, run until cancelled."""
    config.validate()
    ipam_config = IpamConfig.load(config.IPAM_CONFIG_FILE)
    logger.info(
        f"IPAM {ipam_config.url} app={ipam_config.app_id}, "
        f"zones={sorted(ipam_config.subnet_map)}"
    )

    load_kube_config(config.KUBECONFIG or None)
    store = KubeStore(
        group=config.API_GROUP,
        version=config.API_VERSION,
        request_timeout=config.REQUEST_TIMEOUT,
    )

    async with await PhpIpamClient.create(ipam_config) as ipam:
        manager = build_manager(config, store, ipam)
        logger.info("Controller started")
        await manager.run()
