"""
Pydantic models for the resources the reconcilers read and write.

The store hands out plain dicts in the API server's camelCase JSON shape.
Reconcilers validate them into these models, mutate the models, and dump
them back with ``to_body()`` before writing.

Model Categories:
    - Metadata: ObjectMeta, OwnerReference
    - Node: the built-in Node (labels only)
    - NodeOverlayIp: per-node overlay IP status
    - StaticRoute: subnet route with per-node status entries
"""

from __future__ import annotations

import ipaddress
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from overlayip.models.enums import DEFAULT_API_GROUP, DEFAULT_API_VERSION

# Marker this system adds to both custom resource kinds
FINALIZER = "finalizer.iks.ibm.com"

ZONE_LABELS = (
    "topology.kubernetes.io/zone",
    "failure-domain.beta.kubernetes.io/zone",
)
REGION_LABELS = (
    "topology.kubernetes.io/region",
    "failure-domain.beta.kubernetes.io/region",
)


def _first_label(labels: dict[str, str], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = labels.get(key)
        if value:
            return value
    return ""


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class _Resource(_Model):
    """Base for top-level objects; keeps unknown top-level keys intact."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    @classmethod
    def from_body(cls, body: dict[str, Any]):
        return cls.model_validate(body)

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Metadata
# =============================================================================


class OwnerReference(_Model):
    api_version: str = "v1"
    kind: str
    name: str
    uid: str = ""
    controller: bool | None = None
    block_owner_deletion: bool | None = None


class ObjectMeta(_Model):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    name: str
    uid: str | None = None
    resource_version: str | None = None
    generation: int | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    deletion_timestamp: str | None = None
    creation_timestamp: str | None = None

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def _null_as_empty_map(cls, value):
        # The API server sends null for empty collections on some paths
        return value if value is not None else {}

    @field_validator("finalizers", "owner_references", mode="before")
    @classmethod
    def _null_as_empty_list(cls, value):
        return value if value is not None else []

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str = FINALIZER) -> bool:
        return finalizer in self.finalizers

    def add_finalizer(self, finalizer: str = FINALIZER) -> bool:
        if finalizer in self.finalizers:
            return False
        self.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str = FINALIZER) -> bool:
        if finalizer not in self.finalizers:
            return False
        self.finalizers = [f for f in self.finalizers if f != finalizer]
        return True

    def owned_by(self, kind: str, name: str) -> bool:
        return any(
            ref.kind == kind and ref.name == name for ref in self.owner_references
        )


# =============================================================================
# Node
# =============================================================================


class Node(_Resource):
    """Built-in core/v1 Node. Only metadata is used."""

    api_version: str = "v1"
    kind: str = "Node"
    metadata: ObjectMeta

    @property
    def zone(self) -> str:
        return _first_label(self.metadata.labels, ZONE_LABELS)

    @property
    def region(self) -> str:
        return _first_label(self.metadata.labels, REGION_LABELS)

    def owner_reference(self) -> OwnerReference:
        """Controller reference pointing at this node."""
        return OwnerReference(
            api_version="v1",
            kind="Node",
            name=self.metadata.name,
            uid=self.metadata.uid or "",
            controller=True,
            block_owner_deletion=True,
        )


# =============================================================================
# NodeOverlayIp
# =============================================================================


class NodeOverlayIpSpec(_Model):
    pass


class NodeOverlayIpStatus(_Model):
    ip_addr: str = ""  # "10.1.2.3/24"
    gateway: str = ""
    interface: str = ""  # host device the overlay rides on
    interface_label: str = ""  # name of the created macvlan device

    @property
    def address(self) -> str:
        """IP address without the mask."""
        return self.ip_addr.split("/", 1)[0]


class NodeOverlayIp(_Resource):
    api_version: str = f"{DEFAULT_API_GROUP}/{DEFAULT_API_VERSION}"
    kind: str = "NodeOverlayIp"
    metadata: ObjectMeta
    spec: NodeOverlayIpSpec = Field(default_factory=NodeOverlayIpSpec)
    status: NodeOverlayIpStatus = Field(default_factory=NodeOverlayIpStatus)

    @field_validator("spec", "status", mode="before")
    @classmethod
    def _null_as_default(cls, value):
        return value if value is not None else {}

    @property
    def zone(self) -> str:
        return self.metadata.labels.get("zone", "")

    @classmethod
    def for_node(cls, node: Node, api_version: str | None = None) -> NodeOverlayIp:
        """New object for a node: same name, topology labels, owned by the node."""
        obj = cls(
            metadata=ObjectMeta(
                name=node.metadata.name,
                labels={
                    "node": node.metadata.name,
                    "region": node.region,
                    "zone": node.zone,
                },
                owner_references=[node.owner_reference()],
            )
        )
        if api_version:
            obj.api_version = api_version
        return obj


# =============================================================================
# StaticRoute
# =============================================================================


class StaticRouteSpec(_Model):
    subnet: str
    gateway: str = ""

    @field_validator("subnet")
    @classmethod
    def _valid_subnet(cls, value: str) -> str:
        ipaddress.ip_network(value, strict=False)
        return value

    @property
    def destination(self) -> str:
        """``subnet`` with any host bits cleared, as the kernel stores it."""
        return str(ipaddress.ip_network(self.subnet, strict=False))


class StaticRouteNodeStatus(_Model):
    hostname: str
    gateway: str = ""
    device: str = ""


class StaticRouteStatus(_Model):
    """
    Per-node route state, shared by every node agent.

    Entries are keyed by hostname; order carries no meaning. The list is
    what goes over the wire, the helpers below treat it as a map.
    """

    node_status: list[StaticRouteNodeStatus] = Field(default_factory=list)

    @field_validator("node_status", mode="before")
    @classmethod
    def _dedupe(cls, value):
        if value is None:
            return []
        # Last entry wins if a hostname appears twice
        by_host: dict[str, Any] = {}
        for entry in value:
            hostname = (
                entry.get("hostname")
                if isinstance(entry, dict)
                else getattr(entry, "hostname", None)
            )
            by_host[hostname] = entry
        return list(by_host.values())

    def get_node(self, hostname: str) -> StaticRouteNodeStatus | None:
        for entry in self.node_status:
            if entry.hostname == hostname:
                return entry
        return None

    def upsert_node(self, entry: StaticRouteNodeStatus) -> bool:
        """Replace or append the entry for ``entry.hostname``. Returns True if changed."""
        for idx, existing in enumerate(self.node_status):
            if existing.hostname == entry.hostname:
                if existing == entry:
                    return False
                self.node_status[idx] = entry
                return True
        self.node_status.append(entry)
        return True

    def remove_node(self, hostname: str) -> bool:
        """Drop the entry for ``hostname``. Returns True if one was removed."""
        remaining = [e for e in self.node_status if e.hostname != hostname]
        if len(remaining) == len(self.node_status):
            return False
        self.node_status = remaining
        return True


class StaticRoute(_Resource):
    api_version: str = f"{DEFAULT_API_GROUP}/{DEFAULT_API_VERSION}"
    kind: str = "StaticRoute"
    metadata: ObjectMeta
    spec: StaticRouteSpec
    status: StaticRouteStatus = Field(default_factory=StaticRouteStatus)

    @field_validator("status", mode="before")
    @classmethod
    def _null_as_default(cls, value):
        return value if value is not None else {}

    @property
    def zone(self) -> str:
        return _first_label(self.metadata.labels, ZONE_LABELS)
