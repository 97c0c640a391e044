# =========================================================
# TERRITORY MAP BOT: CONFIGURATION
#
# Environment Variables:
#   DISCORD_BOT_TOKEN        = your bot token
#   DISCORD_GUILD_ID         = server id (command sync + territory channel)
#   TERRITORY_FILE           = snapshot file (e.g. /app/data/territory_data.json)
#   WAR_FILE                 = war state file (e.g. /app/data/war_state.json)
#   TERRITORY_CHANNEL_NAME   = channel that holds the live map message
#   HTTP_PORT                = port for the game server API (default 3000)
#   MAP_BACKGROUND           = optional background image (default mapbg.png next to this file)
# =========================================================

import logging
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# =========================================================
# DISCORD
# =========================================================
BOT_TOKEN: Optional[str] = os.getenv("DISCORD_BOT_TOKEN")
GUILD_ID_ENV: Optional[str] = os.getenv("DISCORD_GUILD_ID")
LEADERSHIP_ROLE_NAME = os.getenv("LEADERSHIP_ROLE_NAME", "Leadership")
TERRITORY_CHANNEL_NAME = os.getenv("TERRITORY_CHANNEL_NAME", "live-territory-map")
TERRITORY_UPDATE_INTERVAL = env_float("TERRITORY_UPDATE_INTERVAL", 30.0)

# =========================================================
# STORAGE
# =========================================================
TERRITORY_FILE = os.getenv("TERRITORY_FILE", "territory_data.json")
WAR_FILE = os.getenv("WAR_FILE", "war_state.json")

# =========================================================
# HTTP API
# =========================================================
HTTP_HOST = os.getenv("HTTP_HOST", "0.0.0.0")
HTTP_PORT = env_int("HTTP_PORT", 3000)

# =========================================================
# MAP
# Everon is 12.8km x 12.8km, world origin at 0
# =========================================================
MAP_SIZE = env_float("MAP_SIZE", 12800.0)
CANVAS_SIZE = env_int("CANVAS_SIZE", 1200)
MAP_BACKGROUND = os.getenv("MAP_BACKGROUND", os.path.join(BASE_DIR, "mapbg.png"))
MAP_BACKGROUND_TIMEOUT = env_float("MAP_BACKGROUND_TIMEOUT", 5.0)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

_logging_ready = False


def setup_logging(level: str = LOG_LEVEL) -> None:
    global _logging_ready
    if _logging_ready:
        return
    _logging_ready = True
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # discord.py is chatty at INFO
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)
