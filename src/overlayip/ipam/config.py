"""
phpIPAM client configuration.

The configuration is an immutable value built once at startup and handed to
the client constructor. It is normally read from the controller's mounted
YAML file:

    phpIPAM:
      url: https://ipam.example.com
      appID: overlay
      username: svc-overlay      # optional, else $PHPIPAM_USERNAME
      password: ...              # optional, else $PHPIPAM_PASSWORD
      subnetMap:
        wdc04: [7, 8, 9]
        wdc06: [12]
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from overlayip.exceptions import ConfigurationError

DEFAULT_IPAM_CONFIG_FILE = "/opt/controller-config/overlay-ip-config.yaml"
DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class IpamConfig:
    """
    Connection settings and subnet candidates for phpIPAM.

    Attributes:
        url: Base URL of the phpIPAM server (without /api).
        app_id: phpIPAM application ID used in every API path.
        username: Basic-auth user for token retrieval.
        password: Basic-auth password for token retrieval.
        subnet_map: Zone -> ordered subnet IDs. Earlier IDs are tried first.
        timeout: Per-request timeout in seconds.
        refresh_token: Re-authenticate once when a call is rejected as unauthorized.
    """

    url: str
    app_id: str
    username: str = ""
    password: str = field(default="", repr=False)
    subnet_map: Mapping[str, tuple[int, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    refresh_token: bool = True

    def __post_init__(self):
        # Freeze the subnet map so the config stays a value
        frozen = {
            str(zone): tuple(int(s) for s in subnets)
            for zone, subnets in dict(self.subnet_map).items()
        }
        object.__setattr__(self, "subnet_map", MappingProxyType(frozen))
        object.__setattr__(self, "url", self.url.rstrip("/"))

    def subnets_for_zone(self, zone: str) -> tuple[int, ...]:
        return self.subnet_map.get(zone, ())

    def validate(self) -> None:
        """Raise ConfigurationError if the client cannot work with this config."""
        if not self.url:
            raise ConfigurationError("phpIPAM url is not set")
        if not self.app_id:
            raise ConfigurationError("phpIPAM appID is not set")
        if not self.subnet_map:
            raise ConfigurationError(
                "Subnet map is empty; expected map of zones to subnet IDs"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> IpamConfig:
        """
        Build from the parsed YAML document.

        Credentials missing from the document are read from the
        PHPIPAM_USERNAME / PHPIPAM_PASSWORD environment variables.
        """
        section = data.get("phpIPAM") or {}
        if not isinstance(section, Mapping):
            raise ConfigurationError("phpIPAM section must be a mapping")

        subnet_map = section.get("subnetMap") or {}
        try:
            subnet_map = {
                str(zone): tuple(int(s) for s in (subnets or []))
                for zone, subnets in subnet_map.items()
            }
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"invalid subnetMap: {e}") from e

        username = section.get("username")
        if username is None:
            username = os.environ.get("PHPIPAM_USERNAME", "")
        password = section.get("password")
        if password is None:
            password = os.environ.get("PHPIPAM_PASSWORD", "")

        config = cls(
            url=str(section.get("url") or ""),
            app_id=str(section.get("appID") or ""),
            username=str(username),
            password=str(password),
            subnet_map=subnet_map,
            timeout=float(section.get("timeout", DEFAULT_TIMEOUT_SECONDS)),
            refresh_token=bool(section.get("refreshToken", True)),
        )
        config.validate()
        return config

    @classmethod
    def load(cls, path: str | Path = DEFAULT_IPAM_CONFIG_FILE) -> IpamConfig:
        """Read and validate the YAML configuration file."""
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except FileNotFoundError as e:
            raise ConfigurationError(f"IPAM config file not found: {path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"IPAM config file {path} is not valid YAML: {e}") from e
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"IPAM config file {path} must contain a mapping")
        return cls.from_dict(data)
