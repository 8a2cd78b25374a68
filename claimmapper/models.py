"""Records stored by the service and their JSON forms."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

NIL_UUID = uuid.UUID(int=0)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _field(data: dict[str, Any], name: str) -> Any:
    """Value of a key matched case-insensitively; the last match wins."""
    folded = name.casefold()
    value = None
    for key, item in data.items():
        if key.casefold() == folded:
            value = item
    return value


def _object(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


def _int(data: dict[str, Any], name: str) -> int:
    value = _field(data, name)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {name!r} must be an integer")
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ValueError(f"field {name!r} is out of range")
    return value


def _str(data: dict[str, Any], name: str) -> str:
    value = _field(data, name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {name!r} must be a string")
    return value


def _uuid(data: dict[str, Any], name: str) -> uuid.UUID:
    value = _field(data, name)
    if value is None:
        return NIL_UUID
    if not isinstance(value, str):
        raise ValueError(f"field {name!r} must be a string")
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise ValueError(f"field {name!r} is not a valid UUID") from exc


@dataclass
class Claim:
    """A claim that can be granted to roles."""

    id: int = 0
    claim: str = ""
    row_ver: int = 0

    def to_json(self) -> dict[str, Any]:
        return {"Id": self.id, "Claim": self.claim, "RowVer": self.row_ver}

    @classmethod
    def from_json(cls, data: Any) -> Claim:
        """Build from a decoded JSON object; raises ValueError on bad fields."""
        obj = _object(data)
        return cls(id=_int(obj, "Id"), claim=_str(obj, "Claim"), row_ver=_int(obj, "RowVer"))


@dataclass
class Role:
    """A role that claims are mapped to."""

    id: int = 0
    role: str = ""
    row_ver: int = 0

    def to_json(self) -> dict[str, Any]:
        return {"Id": self.id, "Role": self.role, "RowVer": self.row_ver}

    @classmethod
    def from_json(cls, data: Any) -> Role:
        """Build from a decoded JSON object; raises ValueError on bad fields."""
        obj = _object(data)
        return cls(id=_int(obj, "Id"), role=_str(obj, "Role"), row_ver=_int(obj, "RowVer"))


@dataclass
class ContextClaim:
    """A claim together with the context it was granted in."""

    id: int = 0
    claim: str = ""
    row_ver: int = 0
    context: str = ""

    def to_json(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "Claim": self.claim,
            "RowVer": self.row_ver,
            "Context": self.context,
        }


@dataclass
class Mapping:
    """Grants a claim to a role within a context."""

    id: uuid.UUID = NIL_UUID
    context: str = ""
    claim_id: int = 0
    role_id: int = 0
    name: str = ""
    description: str = ""
    row_ver: int = 0

    def to_json(self) -> dict[str, Any]:
        return {
            "Id": str(self.id),
            "Context": self.context,
            "Claim_Id": self.claim_id,
            "Role_Id": self.role_id,
            "Name": self.name,
            "Description": self.description,
            "RowVer": self.row_ver,
        }

    @classmethod
    def from_json(cls, data: Any) -> Mapping:
        """Build from a decoded JSON object; raises ValueError on bad fields."""
        obj = _object(data)
        return cls(
            id=_uuid(obj, "Id"),
            context=_str(obj, "Context"),
            claim_id=_int(obj, "Claim_Id"),
            role_id=_int(obj, "Role_Id"),
            name=_str(obj, "Name"),
            description=_str(obj, "Description"),
            row_ver=_int(obj, "RowVer"),
        )