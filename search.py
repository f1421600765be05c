import logging
from dataclasses import dataclass

from config import PAGE_SIZE, SEARCH_BACKOFF_SECONDS, SEARCH_RETRIES
from errors import SearchFailure, SearchTransientEmpty
from retry import RetryPolicy, fixed_backoff
from search_cache import SearchCache
from url_tools import is_accepted_url

PLACEHOLDER_MARKERS = ("placehold.co", "data:image/", "/img/no_thumbnail")
DEFAULT_CHANNEL = "Unknown Channel"


# === 🧾 MODELS ===
@dataclass(frozen=True)
class CandidateRecord:
    id: str
    title: str
    url: str
    thumbnail_url: str
    channel: str = DEFAULT_CHANNEL

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "thumbnailUrl": self.thumbnail_url,
            "channel": self.channel,
        }


def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def _raw_fields(item) -> dict:
    if isinstance(item, CandidateRecord):
        return {
            "id": item.id,
            "title": item.title,
            "url": item.url,
            "thumbnail": item.thumbnail_url,
            "channel": item.channel,
        }
    if isinstance(item, dict):
        return {
            "id": _text(item.get("id")),
            "title": _text(item.get("title")),
            "url": _text(item.get("url")),
            "thumbnail": _text(item.get("thumbnail") or item.get("thumbnailUrl")),
            "channel": _text(item.get("channel")),
        }
    return {}


def is_placeholder_thumbnail(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in PLACEHOLDER_MARKERS)


# === ✅ VALIDATION ===
def validate_candidates(raw) -> list[CandidateRecord]:
    seen_ids = set()
    valid = []

    for index, item in enumerate(raw or []):
        fields = _raw_fields(item)
        if not all(fields.get(k) for k in ("id", "title", "url", "thumbnail")):
            logging.debug(f"FILTER - Incomplete record #{index}: {fields}")
            continue
        if not is_accepted_url(fields["url"]):
            logging.debug(f"FILTER - Invalid URL: {fields['url']}")
            continue
        if is_placeholder_thumbnail(fields["thumbnail"]):
            logging.debug(f"FILTER - Placeholder thumbnail for {fields['id']}")
            continue
        if fields["id"] in seen_ids:
            logging.debug(f"FILTER - Duplicate ID: {fields['id']}")
            continue

        seen_ids.add(fields["id"])
        valid.append(
            CandidateRecord(
                id=fields["id"],
                title=fields["title"],
                url=fields["url"],
                thumbnail_url=fields["thumbnail"],
                channel=fields["channel"] or DEFAULT_CHANNEL,
            )
        )

    return valid


def default_search_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=SEARCH_RETRIES + 1,
        backoff=fixed_backoff(SEARCH_BACKOFF_SECONDS),
        retry_on=lambda e: True,
        name="search",
    )


# === 🔍 ORCHESTRATION ===
class SearchOrchestrator:
    def __init__(
        self,
        scraper,
        cache: SearchCache,
        policy: RetryPolicy | None = None,
        page_size: int = PAGE_SIZE,
    ):
        self.scraper = scraper
        self.cache = cache
        self.policy = policy or default_search_policy()
        self.page_size = page_size

    def _slice_page(self, results: list, page: int) -> list:
        start = (page - 1) * self.page_size
        return results[start : start + self.page_size]

    async def _attempt(self, query: str, page: int) -> list[CandidateRecord]:
        raw = await self.scraper.fetch_raw_records(query, page * self.page_size)
        valid = validate_candidates(raw)
        page_results = self._slice_page(valid, page)
        logging.info(
            f"SEARCH - '{query}' (page {page}): {len(raw)} raw, {len(valid)} valid, "
            f"{len(page_results)} on page"
        )
        if not page_results:
            raise SearchTransientEmpty(f"No valid results for '{query}' (page {page})")
        return page_results

    async def search(self, query: str, page: int = 1) -> list[CandidateRecord]:
        query = query.strip()

        cached = self.cache.get(query, page)
        if cached is not None:
            logging.info(f"CACHE HIT - '{query}' (page {page})")
            return list(cached)

        try:
            results = await self.policy.run(lambda: self._attempt(query, page))
        except SearchTransientEmpty:
            logging.warning(f"SEARCH - No valid results for '{query}' after retries")
            return []
        except Exception as e:
            logging.error(f"SEARCH ERROR - '{query}': {type(e).__name__}: {e}")
            raise SearchFailure(str(e) or type(e).__name__) from e

        self.cache.put(query, page, results)
        return results
