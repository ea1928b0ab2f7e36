"""Control-plane reconcilers: Node provisioning and NodeOverlayIp IPAM."""
