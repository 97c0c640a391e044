import asyncio
import io
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

import discord

from territory_config import CANVAS_SIZE, MAP_BACKGROUND, MAP_BACKGROUND_TIMEOUT, MAP_SIZE
from territory_ingest import parse_territory_payload
from territory_models import (
    FACTION_NAMES,
    NEUTRAL,
    TYPE_HQ,
    TYPE_POI,
    Base,
    TerritorySnapshot,
    WarState,
    utcnow,
)
from territory_render import render_map
from territory_store import TerritoryStore

logger = logging.getLogger(__name__)

EMBED_COLOR = discord.Color(0x5865F2)
FIELD_LIMIT = 1024

FACTION_EMOJI: Dict[str, str] = {
    "US": "🔵",
    "USSR": "🔴",
    "FIA": "🟢",
    NEUTRAL: "⚪",
}


# =========================================================
# DISPLAY SINK
# =========================================================
class DisplaySink(Protocol):
    async def send(self, embed: discord.Embed, file: Optional[discord.File]) -> int:
        """Post a message and return its id."""

    async def delete(self, message_id: int) -> None:
        """Delete a message; a message that is already gone is not an error."""


class ChannelSink:
    def __init__(self, channel: discord.abc.Messageable):
        self.channel = channel

    async def send(self, embed: discord.Embed, file: Optional[discord.File]) -> int:
        if file is not None:
            message = await self.channel.send(embed=embed, file=file)
        else:
            message = await self.channel.send(embed=embed)
        return message.id

    async def delete(self, message_id: int) -> None:
        try:
            message = await self.channel.fetch_message(message_id)
            await message.delete()
        except discord.NotFound:
            pass


class SlotState(Enum):
    IDLE = "idle"
    SENDING = "sending"
    PUBLISHED = "published"


# =========================================================
# TEXT SUMMARY
# =========================================================
def group_bases(bases: List[Base]) -> Dict[str, Dict[str, Any]]:
    groups: Dict[str, Dict[str, Any]] = {
        key: {"hq": [], "fobs": [], "pois": {}} for key in FACTION_NAMES
    }
    for b in bases:
        g = groups[b.owner]
        if b.type == TYPE_HQ:
            g["hq"].append(b.display_name)
        elif b.type == TYPE_POI:
            g["pois"].setdefault(b.poi_type or "Other", []).append(b.display_name)
        else:
            # FOB and any unrecognized type, same as the map marker
            g["fobs"].append(b.display_name)
    return groups


def group_total(group: Dict[str, Any]) -> int:
    return len(group["hq"]) + len(group["fobs"]) + sum(len(v) for v in group["pois"].values())


def _clip(text: str, limit: int = FIELD_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def build_territory_embed(snapshot: TerritorySnapshot, war: WarState) -> discord.Embed:
    embed = discord.Embed(title="🗺️ Live Territory Control", color=EMBED_COLOR, timestamp=utcnow())

    if war.active:
        embed.description = f"⚔️ **WAR ACTIVE**\nDeclared by: {war.declared_by or 'Unknown'}"
    else:
        embed.description = "☮️ **PEACE TIME**\nBase capture is disabled"

    if snapshot.bases:
        for key, group in group_bases(snapshot.bases).items():
            total = group_total(group)
            if total == 0:
                continue

            lines = []
            if group["hq"]:
                lines.append(f"**HQ ({len(group['hq'])}):** {', '.join(group['hq'])}")
            if group["fobs"]:
                lines.append(f"**FOBs ({len(group['fobs'])}):** {', '.join(group['fobs'])}")
            for poi_type, names in group["pois"].items():
                lines.append(f"**{poi_type}s ({len(names)}):** {', '.join(names)}")

            embed.add_field(
                name=f"{FACTION_NAMES[key]} {FACTION_EMOJI[key]} - {total} bases",
                value=_clip("\n".join(lines)),
                inline=False,
            )
    else:
        embed.add_field(name="No Data", value="Waiting for game server to send territory data...", inline=False)

    if snapshot.last_update:
        embed.set_footer(text="Last updated from game server")
    else:
        embed.set_footer(text="No updates received yet")
    return embed


# =========================================================
# SERVICE
# =========================================================
class TerritoryService:
    """
    Owns the in-memory snapshot and the single display slot for the process.

    Publishes are serialized, so the tracked slot is always the last message sent.
    """

    def __init__(
        self,
        store: TerritoryStore,
        background_path: Optional[str] = MAP_BACKGROUND,
        map_size: float = MAP_SIZE,
        canvas_size: int = CANVAS_SIZE,
        background_timeout: float = MAP_BACKGROUND_TIMEOUT,
    ):
        self.store = store
        self.background_path = background_path
        self.map_size = map_size
        self.canvas_size = canvas_size
        self.background_timeout = background_timeout

        self.snapshot: TerritorySnapshot = store.load_snapshot()
        self.slot_id: Optional[int] = None
        self.slot_state = SlotState.IDLE

        # resolves the live channel; returns None when it is not available
        self.sink_resolver: Optional[Callable[[], Optional[DisplaySink]]] = None

        self._publish_lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    # ---------- snapshot ----------
    def reload(self) -> TerritorySnapshot:
        self.snapshot = self.store.load_snapshot(default=self.snapshot)
        return self.snapshot

    def ingest(self, payload: Any) -> TerritorySnapshot:
        """Replace the snapshot with ``payload``; raises TerritoryPayloadError."""
        snapshot = parse_territory_payload(payload)
        snapshot.last_update = utcnow()
        self.store.save_snapshot(snapshot)
        self.snapshot = snapshot
        logger.info("[API] Territory data updated: %d bases", len(snapshot.bases))
        self.trigger_publish()
        return snapshot

    # ---------- rendering ----------
    async def render(self, bases: List[Base]):
        return await render_map(
            bases,
            self.background_path,
            map_size=self.map_size,
            canvas_size=self.canvas_size,
            background_timeout=self.background_timeout,
        )

    # ---------- publishing ----------
    def trigger_publish(self) -> Optional[asyncio.Task]:
        if self.sink_resolver is None:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, territory map update not scheduled")
            return None
        task = loop.create_task(self.publish_current())
        self._pending.add(task)
        task.add_done_callback(self._publish_done)
        return task

    def _publish_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Error updating territory map", exc_info=exc)

    async def publish_current(self) -> Optional[int]:
        sink = self.sink_resolver() if self.sink_resolver else None
        if sink is None:
            logger.info("Territory channel not available - skipping update")
            return None
        return await self.publish(sink)

    async def publish(self, sink: DisplaySink) -> Optional[int]:
        async with self._publish_lock:
            return await self._publish(sink)

    async def _publish(self, sink: DisplaySink) -> Optional[int]:
        snapshot = self.reload()
        war = self.store.load_war()
        embed = build_territory_embed(snapshot, war)

        file = None
        if snapshot.bases:
            try:
                filename, png = await self.render(snapshot.bases)
                file = discord.File(fp=io.BytesIO(png), filename=filename)
                embed.set_image(url=f"attachment://{filename}")
            except Exception:
                logger.exception("Error generating map image")

        self.slot_state = SlotState.SENDING
        if self.slot_id is not None:
            try:
                await sink.delete(self.slot_id)
                self.slot_id = None
            except Exception:
                logger.warning("Could not delete previous territory message %s", self.slot_id, exc_info=True)

        try:
            message_id = await sink.send(embed, file)
        except Exception:
            logger.exception("Error sending territory map")
            self.slot_state = SlotState.PUBLISHED if self.slot_id is not None else SlotState.IDLE
            return None

        self.slot_id = message_id
        self.slot_state = SlotState.PUBLISHED
        return message_id

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
