import re, time
from urllib.parse import urlencode

from config import WATCH_BASE_URL
from errors import InvalidUrl

DIRECT_URL_PATTERN = re.compile(
    r"^(https?://)(www\.)?(youtube\.com|youtu\.be|music\.youtube\.com)/.+$",
    re.IGNORECASE,
)
MEDIA_ID_PATTERN = re.compile(r"(?:v=|/)([0-9A-Za-z_-]{11})(?![0-9A-Za-z_-])")

MAX_TITLE_LENGTH = 150

DIRECT = "direct"
QUERY = "query"


def classify(text: str) -> str:
    if isinstance(text, str) and DIRECT_URL_PATTERN.match(text.strip()):
        return DIRECT
    return QUERY


def is_accepted_url(url) -> bool:
    return classify(url) == DIRECT and url == url.strip()


def resolve_media_id(url) -> str:
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrl(url, "url must be a non-empty string", "Missing or invalid URL")
    match = MEDIA_ID_PATTERN.search(url.strip())
    if not match:
        raise InvalidUrl(url)
    return match.group(1)


def watch_url(media_id: str) -> str:
    return f"{WATCH_BASE_URL}?{urlencode({'v': media_id})}"


def sanitize_title(text) -> str:
    if not isinstance(text, str):
        return ""
    clean = re.sub(r"[^a-zA-Z0-9\s-]", "", text.strip())
    clean = re.sub(r"\s+", "_", clean.strip())
    return clean[:MAX_TITLE_LENGTH]


def fallback_title(clock=time.time) -> str:
    return f"converted_{int(clock() * 1000)}"
