"""Configuration settings for the file hosting server."""
import json
import os
from pathlib import Path

SERVICE_DIR = Path(__file__).resolve().parent

# Network
HOST = "0.0.0.0"
PORT = 3000

# Directory exposed under /files
ROOT_DIRECTORY = str(SERVICE_DIR / "files")

# Download speed limit (Mbps, shared by all downloads)
SPEED_LIMIT_ENABLED = False
SPEED_LIMIT_MBPS = 10.0

# Streaming
CHUNK_SIZE = 64 * 1024  # 64KB

# Listing
MAX_LISTING_DEPTH = 64

# Logging
LOG_DIR = "logs"

# Optional JSON config file, same shape as the legacy config.json
CONFIG_FILE = os.environ.get("FILE_HOSTING_CONFIG", str(SERVICE_DIR / "config.json"))


def capacity_bytes_per_second(enabled: bool, mbps: float) -> int:
    """Convert the configured Mbps limit to bytes per second, 0 meaning unlimited."""
    if not enabled or mbps <= 0:
        return 0
    return int(mbps * 1024 * 1024 / 8)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config_file(path: str) -> dict:
    """Read the JSON config file and flatten it to module setting names.

    Missing file yields an empty dict. Expected shape:
    {"host": ..., "port": ..., "rootDirectory": ..., "speedLimit": {"enable": ..., "speed": ...}}
    """
    config_path = Path(path)
    if not config_path.is_file():
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    settings = {}
    if "host" in raw:
        settings["HOST"] = str(raw["host"])
    if "port" in raw:
        settings["PORT"] = int(raw["port"])
    if "rootDirectory" in raw:
        root = Path(raw["rootDirectory"])
        if not root.is_absolute():
            root = config_path.parent / root
        settings["ROOT_DIRECTORY"] = str(root)
    speed_limit = raw.get("speedLimit") or {}
    if "enable" in speed_limit:
        settings["SPEED_LIMIT_ENABLED"] = bool(speed_limit["enable"])
    if "speed" in speed_limit:
        settings["SPEED_LIMIT_MBPS"] = float(speed_limit["speed"])
    return settings


def load_env_overrides(environ=None) -> dict:
    """Collect overrides from FILE_HOSTING_* environment variables."""
    environ = os.environ if environ is None else environ
    settings = {}
    if environ.get("FILE_HOSTING_HOST"):
        settings["HOST"] = environ["FILE_HOSTING_HOST"]
    # PORT kept for compatibility with older deployments
    port = environ.get("FILE_HOSTING_PORT") or environ.get("PORT")
    if port:
        settings["PORT"] = int(port)
    if environ.get("FILE_HOSTING_ROOT"):
        settings["ROOT_DIRECTORY"] = environ["FILE_HOSTING_ROOT"]
    if environ.get("FILE_HOSTING_SPEED_LIMIT_ENABLED"):
        settings["SPEED_LIMIT_ENABLED"] = _parse_bool(environ["FILE_HOSTING_SPEED_LIMIT_ENABLED"])
    if environ.get("FILE_HOSTING_SPEED_LIMIT_MBPS"):
        settings["SPEED_LIMIT_MBPS"] = float(environ["FILE_HOSTING_SPEED_LIMIT_MBPS"])
    return settings


# Config file first, environment wins
_settings = {**load_config_file(CONFIG_FILE), **load_env_overrides()}

HOST = _settings.get("HOST", HOST)
PORT = _settings.get("PORT", PORT)
ROOT_DIRECTORY = _settings.get("ROOT_DIRECTORY", ROOT_DIRECTORY)
SPEED_LIMIT_ENABLED = _settings.get("SPEED_LIMIT_ENABLED", SPEED_LIMIT_ENABLED)
SPEED_LIMIT_MBPS = _settings.get("SPEED_LIMIT_MBPS", SPEED_LIMIT_MBPS)
