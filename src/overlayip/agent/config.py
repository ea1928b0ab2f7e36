"""
Node agent configuration.

The agent is bound to one node: NODE_HOSTNAME must name the Node object
the agent runs on (normally injected from spec.nodeName). The overlay
device settings come from the DaemonSet environment.
"""

from dataclasses import dataclass

from overlayip.exceptions import ConfigurationError
from overlayip.models.enums import (
    DEFAULT_API_GROUP,
    DEFAULT_API_VERSION,
    LogLevel,
    NetworkBackendType,
)
from overlayip.netlink.backend import DEFAULT_COMMAND_TIMEOUT
from overlayip.utils.env import env_float, env_str


@dataclass
class AgentConfig:
    """Per-node agent configuration."""

    # Node Identity
    NODE_HOSTNAME: str = ""

    # Overlay Device Configuration
    INTERFACE: str = "eth0"  # parent device of the macvlan
    INTERFACE_LABEL: str = "overlay0"  # name of the macvlan device

    # Host Network Configuration
    NETWORK_BACKEND: NetworkBackendType = NetworkBackendType.NETLINK
    COMMAND_TIMEOUT: float = DEFAULT_COMMAND_TIMEOUT

    # Cluster Configuration
    KUBECONFIG: str = ""
    API_GROUP: str = DEFAULT_API_GROUP
    API_VERSION: str = DEFAULT_API_VERSION
    REQUEST_TIMEOUT: float = 30.0

    # Reconcile Configuration
    BACKOFF_BASE_SECONDS: float = 0.5
    BACKOFF_MAX_SECONDS: float = 300.0

    # Logging Configuration
    LOG_LEVEL: LogLevel = LogLevel.INFO

    def validate(self) -> None:
        """Raise ConfigurationError for settings the agent cannot start with."""
        if not self.NODE_HOSTNAME:
            raise ConfigurationError("NODE_HOSTNAME is not set")
        if not self.INTERFACE:
            raise ConfigurationError("INTERFACE is not set")
        if not self.INTERFACE_LABEL:
            raise ConfigurationError("INTERFACE_LABEL is not set")
        if self.COMMAND_TIMEOUT <= 0:
            raise ConfigurationError("COMMAND_TIMEOUT must be positive")

    @classmethod
    def from_env(cls) -> "AgentConfig":
        level = env_str("LOG_LEVEL", LogLevel.INFO.value).lower()
        backend = env_str("NETWORK_BACKEND", NetworkBackendType.NETLINK.value).lower()
        try:
            log_level = LogLevel(level)
        except ValueError as e:
            raise ConfigurationError(f"Unknown LOG_LEVEL {level!r}") from e
        try:
            backend_type = NetworkBackendType(backend)
        except ValueError as e:
            raise ConfigurationError(f"Unknown NETWORK_BACKEND {backend!r}") from e

        return cls(
            NODE_HOSTNAME=env_str("NODE_HOSTNAME"),
            INTERFACE=env_str("INTERFACE", "eth0"),
            INTERFACE_LABEL=env_str("INTERFACE_LABEL", "overlay0"),
            NETWORK_BACKEND=backend_type,
            COMMAND_TIMEOUT=env_float("COMMAND_TIMEOUT", DEFAULT_COMMAND_TIMEOUT),
            KUBECONFIG=env_str("KUBECONFIG"),
            API_GROUP=env_str("API_GROUP", DEFAULT_API_GROUP),
            API_VERSION=env_str("API_VERSION", DEFAULT_API_VERSION),
            REQUEST_TIMEOUT=env_float("REQUEST_TIMEOUT", 30.0),
            BACKOFF_BASE_SECONDS=env_float("BACKOFF_BASE_SECONDS", 0.5),
            BACKOFF_MAX_SECONDS=env_float("BACKOFF_MAX_SECONDS", 300.0),
            LOG_LEVEL=log_level,
        )
