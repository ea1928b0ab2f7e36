"""Exception classes shared across kube-overlay-ip."""


class OverlayIpError(Exception):
    """Base exception for kube-overlay-ip."""

    pass


class ConfigurationError(OverlayIpError):
    """Required configuration is missing or invalid. Fatal at startup."""

    pass


# =============================================================================
# Resource Store
# =============================================================================


class StoreError(OverlayIpError):
    """The cluster resource store rejected or failed a request."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class NotFoundError(StoreError):
    """Object does not exist (or no longer exists)."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name} not found", status=404)


class ConflictError(StoreError):
    """Write lost an optimistic-concurrency race or the object already exists."""

    def __init__(self, kind: str, name: str, detail: str = ""):
        self.kind = kind
        self.name = name
        message = f"conflict writing {kind} {name}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, status=409)


# =============================================================================
# IPAM
# =============================================================================


class IpamError(OverlayIpError):
    """IPAM request failed (transport, decoding, or unexpected payload)."""

    pass


class IpamApiError(IpamError):
    """IPAM answered with a non-success envelope."""

    def __init__(self, message: str, code: int | None = None, path: str = ""):
        self.code = code
        self.path = path
        self.api_message = message
        super().__init__(f"IPAM {path} failed (code={code}): {message}")


class IpamReservationError(IpamError):
    """No candidate subnet in the zone could provide an address."""

    def __init__(self, zone: str, owner: str):
        self.zone = zone
        self.owner = owner
        super().__init__(
            f"unable to reserve IP in zone {zone} for {owner}, all subnets returned errors"
        )


# =============================================================================
# Host Network
# =============================================================================


class NetworkError(OverlayIpError):
    """A host network operation failed or returned unexpected output."""

    def __init__(self, message: str, command: str | None = None, output: str = ""):
        self.command = command
        self.output = output
        if command:
            message = f"{message} (command: {command!r}, output: {output.strip()!r})"
        super().__init__(message)
