"""
Controller configuration.

Built once at startup (environment, then CLI overrides) and passed to the
controller app. Nothing reads it from module globals.
"""

from dataclasses import dataclass

from overlayip.exceptions import ConfigurationError
from overlayip.ipam.config import DEFAULT_IPAM_CONFIG_FILE
from overlayip.models.enums import DEFAULT_API_GROUP, DEFAULT_API_VERSION, LogLevel
from overlayip.utils.env import env_float, env_int, env_str


@dataclass
class ControllerConfig:
    """Control-plane controller configuration."""

    # Cluster Configuration
    KUBECONFIG: str = ""  # empty: in-cluster, then ~/.kube/config
    API_GROUP: str = DEFAULT_API_GROUP
    API_VERSION: str = DEFAULT_API_VERSION
    REQUEST_TIMEOUT: float = 30.0

    # IPAM Configuration
    IPAM_CONFIG_FILE: str = DEFAULT_IPAM_CONFIG_FILE

    # Reconcile Configuration
    WORKERS: int = 1
    BACKOFF_BASE_SECONDS: float = 0.5
    BACKOFF_MAX_SECONDS: float = 300.0

    # Logging Configuration
    LOG_LEVEL: LogLevel = LogLevel.INFO

    def get_api_version(self) -> str:
        return f"{self.API_GROUP}/{self.API_VERSION}"

    def validate(self) -> None:
        if self.WORKERS < 1:
            raise ConfigurationError(f"WORKERS must be at least 1, got {self.WORKERS}")
        if self.BACKOFF_BASE_SECONDS <= 0 or self.BACKOFF_MAX_SECONDS < self.BACKOFF_BASE_SECONDS:
            raise ConfigurationError(
                "backoff must satisfy 0 < BACKOFF_BASE_SECONDS <= BACKOFF_MAX_SECONDS"
            )

    @classmethod
    def from_env(cls) -> "ControllerConfig":
        """Read settings from environment variables named like the fields."""
        level = env_str("LOG_LEVEL", LogLevel.INFO.value).lower()
        try:
            log_level = LogLevel(level)
        except ValueError as e:
            raise ConfigurationError(f"Unknown LOG_LEVEL {level!r}") from e

        return cls(
            KUBECONFIG=env_str("KUBECONFIG"),
            API_GROUP=env_str("API_GROUP", DEFAULT_API_GROUP),
            API_VERSION=env_str("API_VERSION", DEFAULT_API_VERSION),
            REQUEST_TIMEOUT=env_float("REQUEST_TIMEOUT", 30.0),
            IPAM_CONFIG_FILE=env_str("IPAM_CONFIG_FILE", DEFAULT_IPAM_CONFIG_FILE),
            WORKERS=env_int("WORKERS", 1),
            BACKOFF_BASE_SECONDS=env_float("BACKOFF_BASE_SECONDS", 0.5),
            BACKOFF_MAX_SECONDS=env_float("BACKOFF_MAX_SECONDS", 300.0),
            LOG_LEVEL=log_level,
        )
