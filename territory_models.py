"""Territory data model shared by the renderer, publisher and ingestion."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# =========================================================
# FACTIONS / BASE TYPES
# =========================================================
NEUTRAL = "Neutral"

# Playable factions in display order (key = value sent by the game server)
PLAYABLE_FACTIONS = ("US", "USSR", "FIA")

FACTION_NAMES: Dict[str, str] = {
    "US": "Meridian Federation",
    "USSR": "Kharsovian Republic",
    "FIA": "Khorasan Covenant",
    NEUTRAL: "Neutral",
}

TYPE_HQ = "HQ"
TYPE_FOB = "FOB"
TYPE_POI = "POI"
BASE_TYPES = (TYPE_HQ, TYPE_FOB, TYPE_POI)

_BASE_FIELDS = {"name", "x", "z", "faction", "type", "poiType"}


def _coord(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(v) or math.isinf(v):
        return None
    return v


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(raw: Any) -> Optional[datetime]:
    if not isinstance(raw, str) or not raw.strip():
        return None
    s = raw.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(s)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class Base:
    name: Optional[str] = None
    x: Optional[float] = None
    z: Optional[float] = None
    faction: str = NEUTRAL
    type: Optional[str] = None
    poi_type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Base":
        if not isinstance(data, dict):
            raise TypeError(f"Base entry must be an object, got {type(data).__name__}")
        name = data.get("name")
        faction = data.get("faction") or NEUTRAL
        base_type = data.get("type")
        poi_type = data.get("poiType")
        return cls(
            name=str(name) if name is not None else None,
            x=_coord(data.get("x")),
            z=_coord(data.get("z")),
            faction=str(faction),
            type=str(base_type) if base_type is not None else None,
            poi_type=str(poi_type) if poi_type else None,
            extra={k: v for k, v in data.items() if k not in _BASE_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.name is not None:
            out["name"] = self.name
        if self.x is not None:
            out["x"] = self.x
        if self.z is not None:
            out["z"] = self.z
        out["faction"] = self.faction
        if self.type is not None:
            out["type"] = self.type
        if self.poi_type is not None:
            out["poiType"] = self.poi_type
        out.update(self.extra)
        return out

    @property
    def display_name(self) -> str:
        return self.name or "Unknown"

    @property
    def owner(self) -> str:
        # Unrecognized factions are treated as neutral ground
        return self.faction if self.faction in FACTION_NAMES else NEUTRAL

    @property
    def has_position(self) -> bool:
        return self.x is not None and self.z is not None


@dataclass
class TerritorySnapshot:
    bases: List[Base] = field(default_factory=list)
    last_update: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "TerritorySnapshot":
        if not isinstance(data, dict):
            raise TypeError(f"Territory data must be an object, got {type(data).__name__}")
        raw_bases = data.get("bases") or []
        if not isinstance(raw_bases, list):
            raise TypeError("'bases' must be a list")
        return cls(
            bases=[Base.from_dict(b) for b in raw_bases],
            last_update=parse_timestamp(data.get("lastUpdate")),
            extra={k: v for k, v in data.items() if k not in ("bases", "lastUpdate")},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extra)
        out["bases"] = [b.to_dict() for b in self.bases]
        out["lastUpdate"] = format_timestamp(self.last_update) if self.last_update else None
        return out


@dataclass
class WarState:
    active: bool = False
    declared_by: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "WarState":
        if not isinstance(data, dict):
            return cls()
        declared_by = data.get("declaredBy")
        return cls(
            active=data.get("active") is True,
            declared_by=str(declared_by) if declared_by else None,
            raw=dict(data),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "active": False,
            "declaredBy": None,
            "declaredAt": None,
            "declaredByNation": None,
            "targetNations": [],
            "participants": [],
        }
        out.update(self.raw)
        out["active"] = self.active
        out["declaredBy"] = self.declared_by
        return out
