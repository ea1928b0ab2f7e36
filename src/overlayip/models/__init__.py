"""
Resource models and shared enums.

Re-exports the public names so callers can write:
    from overlayip.models import NodeOverlayIp, StaticRoute, ResourceKind
"""

from overlayip.models.enums import (
    DEFAULT_API_GROUP,
    DEFAULT_API_VERSION,
    LogLevel,
    NetworkBackendType,
    ResourceKind,
)
from overlayip.models.resources import (
    FINALIZER,
    Node,
    NodeOverlayIp,
    NodeOverlayIpStatus,
    ObjectMeta,
    OwnerReference,
    StaticRoute,
    StaticRouteNodeStatus,
    StaticRouteSpec,
    StaticRouteStatus,
)

__all__ = [
    # Enums
    "DEFAULT_API_GROUP",
    "DEFAULT_API_VERSION",
    "LogLevel",
    "NetworkBackendType",
    "ResourceKind",
    # Resources
    "FINALIZER",
    "Node",
    "NodeOverlayIp",
    "NodeOverlayIpStatus",
    "ObjectMeta",
    "OwnerReference",
    "StaticRoute",
    "StaticRouteNodeStatus",
    "StaticRouteSpec",
    "StaticRouteStatus",
]
