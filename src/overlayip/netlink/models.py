"""
Structured view of host network state.

Both backends translate what the kernel reports into these values, so
the idempotency logic in the applier never looks at raw netlink messages
or ``ip`` output.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LinkInfo:
    """A network device."""

    name: str
    index: int = 0
    up: bool = False
    kind: str = ""  # "macvlan", "bridge", ... or "" when not reported


@dataclass(frozen=True)
class RouteInfo:
    """
    A route in the main table, or the answer to a route lookup.

    ``gateway`` is empty for directly connected routes.
    """

    destination: str
    gateway: str = ""
    device: str = ""
