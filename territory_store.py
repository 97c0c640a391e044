import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from territory_config import TERRITORY_FILE, WAR_FILE
from territory_models import TerritorySnapshot, WarState

logger = logging.getLogger(__name__)


# =========================================================
# PERSISTENCE
# =========================================================
def load_json(path: str) -> Any:
    """Return the decoded file, or None when it does not exist."""
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def save_json(path: str, data: Any) -> None:
    # Ensure directory exists if the path has a folder (e.g. /app/data/...)
    data_dir = os.path.dirname(path)
    if data_dir:
        os.makedirs(data_dir, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


@dataclass
class TerritoryStore:
    territory_path: str = TERRITORY_FILE
    war_path: str = WAR_FILE

    def load_snapshot(self, default: Optional[TerritorySnapshot] = None) -> TerritorySnapshot:
        fallback = default if default is not None else TerritorySnapshot()
        try:
            data = load_json(self.territory_path)
            if data is None:
                return fallback
            return TerritorySnapshot.from_dict(data)
        except (OSError, ValueError, TypeError):
            logger.exception("Error loading territory data from %s", self.territory_path)
            return fallback

    def save_snapshot(self, snapshot: TerritorySnapshot) -> None:
        save_json(self.territory_path, snapshot.to_dict())

    def load_war(self) -> WarState:
        try:
            return WarState.from_dict(load_json(self.war_path))
        except (OSError, ValueError):
            logger.exception("Error loading war state from %s", self.war_path)
            return WarState()

    def save_war(self, war: WarState) -> None:
        save_json(self.war_path, war.to_dict())

    def describe(self) -> str:
        lines = []
        for label, path in (("TERRITORY_FILE", self.territory_path), ("WAR_FILE", self.war_path)):
            exists = os.path.exists(path)
            size = os.path.getsize(path) if exists else 0
            lines.append(
                f"{label} = `{path}`\n"
                f"ABS PATH = `{os.path.abspath(path)}`\n"
                f"EXISTS = `{exists}` | SIZE = `{size}` bytes"
            )
        return "\n\n".join(lines)
