"""
Enumeration types for kube-overlay-ip.

This module defines the enumeration types shared by the controller and the
node agent: logging verbosity, the resource kinds the reconcilers work on,
and the host network backends the agent can drive.
"""

from enum import Enum


# =============================================================================
# Logging
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"


# =============================================================================
# Resource Kinds
# =============================================================================

DEFAULT_API_GROUP = "iks.ibm.com"
DEFAULT_API_VERSION = "v1alpha1"


class ResourceKind(str, Enum):
    """
    Cluster-scoped resource kinds handled by the reconcilers.

    NODE is the built-in core/v1 Node; the other two are custom resources
    served under the configured API group.
    """

    NODE = "Node"
    NODE_OVERLAY_IP = "NodeOverlayIp"
    STATIC_ROUTE = "StaticRoute"

    @property
    def plural(self) -> str:
        match self:
            case ResourceKind.NODE:
                return "nodes"
            case ResourceKind.NODE_OVERLAY_IP:
                return "nodeoverlayips"
            case ResourceKind.STATIC_ROUTE:
                return "staticroutes"

    @property
    def is_custom(self) -> bool:
        return self is not ResourceKind.NODE


# =============================================================================
# Host Network
# =============================================================================


class NetworkBackendType(str, Enum):
    """
    How the agent talks to the kernel.

    - NETLINK: pyroute2 over a netlink socket (structured, preferred)
    - IPROUTE2: the `ip` command, with its text output parsed
    """

    NETLINK = "netlink"
    IPROUTE2 = "iproute2"
