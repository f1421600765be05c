import os, shutil
from pathlib import Path

import psutil


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


def _find_binary(env_name: str, default: str) -> str:
    return os.environ.get(env_name) or shutil.which(default) or default


# === 🌐 SERVER ===
HOST = os.environ.get("HOST", "127.0.0.1")
PORT = _env_int("PORT", 5050)
LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG").upper()
CORS_ORIGINS = [
    o.strip()
    for o in os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]

# === 📁 FILESYSTEM ===
DOWNLOADS_DIR = Path(
    os.environ.get("DOWNLOADS_DIR", str(Path.home() / "Downloads"))
).expanduser()

# === 🧰 EXTERNAL TOOLS ===
YT_DLP_BIN = _find_binary("YT_DLP_BIN", "yt-dlp")
FFMPEG_BIN = _find_binary("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = _find_binary("FFPROBE_BIN", "ffprobe")

ACQUIRE_TIMEOUT_SECONDS = _env_float("ACQUIRE_TIMEOUT_SECONDS", 300)
ENCODE_TIMEOUT_SECONDS = _env_float("ENCODE_TIMEOUT_SECONDS", 300)
PROBE_TIMEOUT_SECONDS = _env_float("PROBE_TIMEOUT_SECONDS", 30)
TITLE_TIMEOUT_SECONDS = _env_float("TITLE_TIMEOUT_SECONDS", 60)

# === 🔍 SEARCH ===
SEARCH_BASE_URL = "https://www.youtube.com/results"
WATCH_BASE_URL = "https://www.youtube.com/watch"
CACHE_TTL_SECONDS = _env_float("CACHE_TTL_SECONDS", 300)
SEARCH_RETRIES = _env_int("SEARCH_RETRIES", 2)
SEARCH_BACKOFF_SECONDS = _env_float("SEARCH_BACKOFF_SECONDS", 1.0)
PAGE_SIZE = _env_int("PAGE_SIZE", 20)
MAX_SCROLLS = 10
MAX_LOAD_MORE_CLICKS = 3
NAVIGATION_TIMEOUT_MS = 30000
SELECTOR_TIMEOUT_MS = 10000

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64)",
    "Mozilla/5.0 (X11; Linux x86_64)",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)",
]
DOWNLOAD_USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7)"


# === 🔒 PROCESS CONCURRENCY ===
def get_process_concurrency():
    cores = os.cpu_count() or 4
    ram_gb = psutil.virtual_memory().total // 1_073_741_824

    base = min(cores // 2, 8)
    if ram_gb >= 16:
        base += 2
    elif ram_gb <= 4:
        base = max(1, base - 1)
    return max(2, base)
