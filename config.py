import os
import sys
import json
import time
import logging

logger = logging.getLogger(__name__)

# ==============================================================================
# CENTRALIZED CONFIGURATION
# ==============================================================================

def env_flag(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")

def env_list(name, default=""):
    raw = os.environ.get(name, default) or ""
    return [part.strip() for part in raw.split(',') if part.strip()]

def env_json(name, default):
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.error("Could not parse %s as JSON. Using built-in default.", name)
        return default

MONDAY_API_KEY = os.environ.get("MONDAY_API_KEY")
MONDAY_API_URL = os.environ.get("MONDAY_API_URL", "https://api.monday.com/v2")
MONDAY_API_VERSION = os.environ.get("MONDAY_API_VERSION", "2023-10")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
PORT = int(os.environ.get("PORT", 1000))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
BOOT_ID = os.environ.get("BOOT_ID") or f"boot-{int(time.time() * 1000)}"

# --- WhatsApp gateway (Evolution API) ---
EVOLUTION_API_KEY = os.environ.get("EVOLUTION_API_KEY")
EVOLUTION_URL = os.environ.get("EVOLUTION_URL", "https://api.faleai.chat")
EVOLUTION_SESSION_ID = os.environ.get("EVOLUTION_SESSION_ID", "manager")
WHATSAPP_DESTINATION = os.environ.get("WHATSAPP_DESTINATION", "")
NOTIFY_PERSON_ID = os.environ.get("NOTIFY_PERSON_ID", "69279625")
NOTIFY_MESSAGE = os.environ.get("NOTIFY_MESSAGE", "⚡ O responsável agora é Henrique!")

# --- Archive routine ---
ARCHIVE_BOARD_IDS = env_list("ARCHIVE_BOARD_IDS") or env_list("BOARD_ID")
ARCHIVE_DAYS = int(os.environ.get("ARCHIVE_DAYS", os.environ.get("DAYS", 202)))
DRY_RUN = env_flag("DRY_RUN")

# --- Closing subitems of finished items ---
DONE_BOARD_ID = os.environ.get("DONE_BOARD_ID")
DONE_GROUP_ID = os.environ.get("DONE_GROUP_ID")
SUBITEM_STATUS_COLUMN = os.environ.get("SUBITEM_STATUS_COLUMN", "Controle")
FECHADO_STATUS_INDEX = int(os.environ.get("FECHADO_STATUS_INDEX", 1))

# Ordered rule table override; see status_rules.DEFAULT_STATUS_RULES for the shape.
STATUS_RULES = env_json("STATUS_RULES", None)


def ensure_required_settings(*names):
    """Exits the process when any of the named settings is empty."""
    missing = [name for name in names if not globals().get(name)]
    if missing:
        for name in missing:
            logger.error("%s is not set. Define it in the environment and restart.", name)
        sys.exit(1)
