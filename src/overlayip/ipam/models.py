"""
Typed views of phpIPAM API responses.

Every phpIPAM response is wrapped in the same envelope:

    {"code": 200, "success": true, "data": ..., "message": "...", "time": 0.01}

phpIPAM is inconsistent about ``success``: depending on the endpoint and
version it is a JSON boolean or an integer. The envelope model normalizes
both encodings to a bool (integer 0 means success) and rejects anything
else as a decode error.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class IpamResponse(BaseModel):
    """The phpIPAM response envelope."""

    model_config = ConfigDict(extra="ignore")

    code: int = 0
    success: bool
    data: Any = None
    message: str = ""
    time: float = 0.0

    @field_validator("success", mode="before")
    @classmethod
    def _normalize_success(cls, value: Any) -> bool:
        # bool is a subclass of int, check it first
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value == 0
        raise ValueError(f"success must be a boolean or an integer, got {value!r}")

    @field_validator("message", mode="before")
    @classmethod
    def _null_message(cls, value: Any) -> str:
        return "" if value is None else str(value)

    def value(self, path: str) -> Any:
        """
        Look up a dotted path inside ``data``, e.g. ``"gateway.ip_addr"``.

        Raises KeyError if any segment is missing.
        """
        current = self.data
        for part in path.split("."):
            if not isinstance(current, dict) or current.get(part) is None:
                raise KeyError(f"cannot find key {path} in response data")
            current = current[part]
        return current


class IpamAddress(BaseModel):
    """An address record as returned by the search endpoint."""

    model_config = ConfigDict(extra="ignore")

    id: str
    ip: str = Field(default="", validation_alias=AliasChoices("ip", "ip_addr"))
    subnet_id: str = Field(default="", alias="subnetId")
    owner: str | None = None

    @field_validator("id", "subnet_id", mode="before")
    @classmethod
    def _as_str(cls, value: Any) -> str:
        return "" if value is None else str(value)


class SubnetInfo(BaseModel):
    """Subnet metadata for an address: network, prefix length and gateway."""

    subnet: str
    mask: str
    gateway: str

    @property
    def cidr(self) -> str:
        return f"{self.subnet}/{self.mask}"
