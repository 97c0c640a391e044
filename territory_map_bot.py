# =========================================================
# TERRITORY MAP BOT: live faction territory map for Discord
#
# Install:
#   pip install -e .
#
# Environment Variables:
#   DISCORD_BOT_TOKEN        = your bot token
#   DISCORD_GUILD_ID         = your server id (command sync + map channel)
#   TERRITORY_CHANNEL_NAME   = channel for the live map (default live-territory-map)
#   TERRITORY_FILE / WAR_FILE = JSON data files (see territory_config.py)
#   HTTP_PORT                = game server API port (default 3000)
#
# Map background (optional):
#   Put mapbg.png next to this file (or set MAP_BACKGROUND).
#   Without it the map is drawn on a flat dark fill.
# =========================================================

import io
import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks

from territory_api import start_api
from territory_config import (
    BOT_TOKEN,
    GUILD_ID_ENV,
    LEADERSHIP_ROLE_NAME,
    TERRITORY_CHANNEL_NAME,
    TERRITORY_UPDATE_INTERVAL,
    setup_logging,
)
from territory_models import FACTION_NAMES, format_timestamp
from territory_publisher import ChannelSink, TerritoryService, group_bases, group_total
from territory_store import TerritoryStore

setup_logging()
logger = logging.getLogger("territory_map_bot")


# =========================================================
# BASIC HELPERS
# =========================================================
def is_leadership(member: discord.abc.User) -> bool:
    perms = getattr(member, "guild_permissions", None)
    if perms is not None and perms.administrator:
        return True
    return any(role.name == LEADERSHIP_ROLE_NAME for role in getattr(member, "roles", []))


def configured_guild_id() -> Optional[int]:
    if GUILD_ID_ENV and GUILD_ID_ENV.isdigit():
        return int(GUILD_ID_ENV)
    return None


# =========================================================
# COMMAND GROUPS
# =========================================================
territory_group = app_commands.Group(name="territory", description="Live territory map tools")


# =========================================================
# BOT
# =========================================================
class TerritoryMapBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        super().__init__(command_prefix="!", intents=intents)
        self.store = TerritoryStore()
        self.service = TerritoryService(self.store)
        self.service.sink_resolver = self.territory_sink
        self.api_runner = None

    async def setup_hook(self):
        self.tree.add_command(territory_group)

        # Faster dev sync if DISCORD_GUILD_ID is set
        gid = configured_guild_id()
        if gid is not None:
            guild = discord.Object(id=gid)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
        else:
            await self.tree.sync()

        self.api_runner = await start_api(self.service)
        self.territory_loop.start()

    async def close(self):
        if self.territory_loop.is_running():
            self.territory_loop.cancel()
        await self.service.drain()
        if self.api_runner is not None:
            await self.api_runner.cleanup()
        await super().close()

    def territory_guild(self) -> Optional[discord.Guild]:
        gid = configured_guild_id()
        if gid is not None:
            return self.get_guild(gid)
        return self.guilds[0] if self.guilds else None

    def territory_sink(self) -> Optional[ChannelSink]:
        guild = self.territory_guild()
        if guild is None:
            return None
        channel = discord.utils.get(guild.text_channels, name=TERRITORY_CHANNEL_NAME)
        if channel is None:
            logger.info('Territory channel "%s" not found - skipping update', TERRITORY_CHANNEL_NAME)
            return None
        return ChannelSink(channel)

    @tasks.loop(seconds=TERRITORY_UPDATE_INTERVAL)
    async def territory_loop(self):
        try:
            await self.service.publish_current()
        except Exception:
            logger.exception("Error updating territory map")

    @territory_loop.before_loop
    async def before_territory_loop(self):
        await self.wait_until_ready()
        logger.info("Starting territory map updates every %.0fs", TERRITORY_UPDATE_INTERVAL)


bot = TerritoryMapBot()


# =========================================================
# TERRITORY COMMANDS
# =========================================================
@territory_group.command(name="refresh", description="Leadership: Re-post the live territory map now.")
async def territory_refresh(interaction: discord.Interaction):
    if not is_leadership(interaction.user):
        await interaction.response.send_message("Only Leadership can use this.", ephemeral=True)
        return

    await interaction.response.defer(ephemeral=True)
    message_id = await bot.service.publish_current()
    if message_id is None:
        await interaction.followup.send(
            f"⚠ Map was not posted. Check that **#{TERRITORY_CHANNEL_NAME}** exists and the bot can post there.",
            ephemeral=True,
        )
        return
    await interaction.followup.send("🗺️ Territory map refreshed.", ephemeral=True)


@territory_group.command(name="status", description="Show base counts per faction and the last update time.")
async def territory_status(interaction: discord.Interaction):
    snapshot = bot.service.reload()
    if not snapshot.bases:
        await interaction.response.send_message("No territory data received from the game server yet.", ephemeral=True)
        return

    lines = []
    for key, group in group_bases(snapshot.bases).items():
        total = group_total(group)
        if total:
            lines.append(f"- **{FACTION_NAMES[key]}**: {total} bases ({len(group['hq'])} HQ)")
    updated = format_timestamp(snapshot.last_update) if snapshot.last_update else "never"
    lines.append(f"Last update: `{updated}`")
    await interaction.response.send_message("\n".join(lines), ephemeral=True)


@territory_group.command(name="png", description="Render the current territory map.")
async def territory_png(interaction: discord.Interaction):
    snapshot = bot.service.reload()
    if not snapshot.bases:
        await interaction.response.send_message("No territory data to draw yet.", ephemeral=True)
        return

    await interaction.response.defer()
    try:
        filename, png_bytes = await bot.service.render(snapshot.bases)
    except Exception:
        logger.exception("Error generating map image")
        await interaction.followup.send("⚠ Could not render the map.")
        return
    file = discord.File(fp=io.BytesIO(png_bytes), filename=filename)
    await interaction.followup.send(file=file)


@territory_group.command(name="storage", description="Show where the bot is saving data (debug).")
async def territory_storage(interaction: discord.Interaction):
    await interaction.response.send_message(bot.store.describe(), ephemeral=True)


# =========================================================
# ENTRYPOINT
# =========================================================
def main() -> None:
    if not BOT_TOKEN:
        raise RuntimeError("DISCORD_BOT_TOKEN is not set.")
    bot.run(BOT_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
