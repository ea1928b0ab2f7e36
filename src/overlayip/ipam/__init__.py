"""phpIPAM integration: configuration, response models and the async client."""

from overlayip.ipam.client import PhpIpamClient
from overlayip.ipam.config import DEFAULT_IPAM_CONFIG_FILE, IpamConfig
from overlayip.ipam.models import IpamAddress, IpamResponse, SubnetInfo

__all__ = [
    "DEFAULT_IPAM_CONFIG_FILE",
    "IpamAddress",
    "IpamConfig",
    "IpamResponse",
    "PhpIpamClient",
    "SubnetInfo",
]
