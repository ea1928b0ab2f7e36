"""Node-local reconcilers: overlay device/address and static routes."""
