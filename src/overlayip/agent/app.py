"""
Node agent process.

Runs on every node. Reads the node's zone from its Node object, checks
which custom kinds the API group serves, and starts:
    - nodeoverlayip-agent: this node's overlay device and address
      (only when NodeOverlayIp is served)
    - staticroute: cluster static routes on this host
"""

from __future__ import annotations

from overlayip.agent.config import AgentConfig
from overlayip.agent.nodeoverlayip import NodeOverlayIpAgent
from overlayip.agent.staticroute import StaticRouteController
from overlayip.exceptions import ConfigurationError, NotFoundError
from overlayip.kube.runtime import Controller, Manager, WatchSource, WorkQueue
from overlayip.kube.store import KubeStore, ResourceStore, load_kube_config
from overlayip.models.enums import ResourceKind
from overlayip.models.resources import Node
from overlayip.netlink.applier import HostNetworkApplier, create_backend
from overlayip.utils.logger import get_logger

logger = get_logger(__name__)


async def node_zone(store: ResourceStore, hostname: str) -> str:
    """Zone label of this agent's Node."""
    try:
        node = Node.from_body(await store.get(ResourceKind.NODE, hostname))
    except NotFoundError as e:
        raise ConfigurationError(f"Node {hostname} does not exist") from e
    if not node.zone:
        logger.warning(f"Node {hostname} has no zone label, zoned routes will be skipped")
    return node.zone


def build_manager(
    config: AgentConfig,
    store: ResourceStore,
    network: HostNetworkApplier,
    zone: str,
    served: set[str],
) -> Manager:
    """Wire the node-local reconcilers."""

    def _queue() -> WorkQueue:
        return WorkQueue(config.BACKOFF_BASE_SECONDS, config.BACKOFF_MAX_SECONDS)

    hostname = config.NODE_HOSTNAME
    has_overlay_ip = ResourceKind.NODE_OVERLAY_IP.value in served
    manager = Manager()

    if has_overlay_ip:
        overlay_ip = Controller(
            "nodeoverlayip-agent",
            NodeOverlayIpAgent(
                store,
                network,
                hostname=hostname,
                interface=config.INTERFACE,
                interface_label=config.INTERFACE_LABEL,
            ),
            queue=_queue(),
        )
        manager.add(
            overlay_ip,
            WatchSource(
                store,
                ResourceKind.NODE_OVERLAY_IP,
                overlay_ip,
                field_selector=f"metadata.name={hostname}",
            ),
        )
    else:
        logger.info("NodeOverlayIp is not served, overlay IP agent disabled")

    static_route = Controller(
        "staticroute",
        StaticRouteController(
            store,
            network,
            hostname=hostname,
            zone=zone,
            has_node_overlay_ip=has_overlay_ip,
        ),
        queue=_queue(),
    )
    manager.add(static_route, WatchSource(store, ResourceKind.STATIC_ROUTE, static_route))
    return manager


async def run_agent(config: AgentConfig) -> None:
    """Start the agent for ``config.NODE_HOSTNAME`` and run until cancelled."""
    config.validate()

    load_kube_config(config.KUBECONFIG or None)
    store = KubeStore(
        group=config.API_GROUP,
        version=config.API_VERSION,
        request_timeout=config.REQUEST_TIMEOUT,
    )

    zone = await node_zone(store, config.NODE_HOSTNAME)
    served = await store.served_kinds()
    logger.info(
        f"Agent for node {config.NODE_HOSTNAME} (zone={zone or '-'}), "
        f"served kinds: {sorted(served)}"
    )

    network = HostNetworkApplier(
        create_backend(config.NETWORK_BACKEND, config.COMMAND_TIMEOUT)
    )
    try:
        manager = build_manager(config, store, network, zone, served)
        await manager.run()
    finally:
        network.close()
