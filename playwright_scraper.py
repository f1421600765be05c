import asyncio, logging, random, re
from urllib.parse import urlencode, urljoin

from bs4 import BeautifulSoup, Tag
from playwright.async_api import async_playwright, Browser, BrowserContext, Page
from playwright_stealth import Stealth

from config import (
    MAX_LOAD_MORE_CLICKS,
    MAX_SCROLLS,
    NAVIGATION_TIMEOUT_MS,
    SEARCH_BASE_URL,
    SELECTOR_TIMEOUT_MS,
    USER_AGENTS,
)
from search import is_placeholder_thumbnail

RENDERER_SELECTOR = "ytd-video-renderer, ytd-playlist-renderer"
LOAD_MORE_SELECTOR = 'button[aria-label*="Load more"]'
SITE_ROOT = "https://www.youtube.com"
CONSENT_TEXTS = ["Accept all", "Reject all", "I agree", "Accept"]


def get_user_agent():
    return random.choice(USER_AGENTS)


def search_page_url(query: str) -> str:
    return f"{SEARCH_BASE_URL}?{urlencode({'search_query': query})}"


# === 🧩 EXTRACT ===
def _first(renderer: Tag, *selectors):
    for selector in selectors:
        el = renderer.select_one(selector)
        if isinstance(el, Tag):
            return el
    return None


def extract_raw_records(html: str, base_url: str = SITE_ROOT) -> list[dict]:
    if not html:
        return []

    soup = BeautifulSoup(html, "lxml")
    records = []

    for index, renderer in enumerate(soup.select(RENDERER_SELECTOR)):
        title_el = _first(
            renderer, "#video-title", "a[title]", "a[href*='/watch?v=']"
        )
        href = str(title_el.get("href") or "") if title_el else ""
        url = urljoin(base_url, href) if href else ""

        id_match = re.search(r"v=([^&]+)", url)
        media_id = id_match.group(1) if id_match else f"fallback-{index}"

        title = ""
        if title_el:
            title = title_el.get_text(" ", strip=True) or str(
                title_el.get("title") or ""
            )

        thumb_el = _first(
            renderer, "yt-image img", "img[src*='ytimg.com']", "ytd-thumbnail img"
        )
        thumbnail = str(thumb_el.get("src") or "") if thumb_el else ""
        if is_placeholder_thumbnail(thumbnail):
            thumbnail = ""
        if not thumbnail and id_match:
            thumbnail = f"https://img.youtube.com/vi/{media_id}/hqdefault.jpg"

        channel_el = _first(renderer, "ytd-channel-name a")
        channel = channel_el.get_text(strip=True) if channel_el else ""

        if not url:
            logging.debug(f"EXTRACT - Missing URL for renderer #{index + 1}")

        records.append(
            {
                "id": media_id,
                "title": title,
                "url": url,
                "thumbnail": thumbnail,
                "channel": channel,
            }
        )

    logging.debug(f"EXTRACT - {len(records)} raw record(s)")
    return records


# === 🌐 RENDER ===
async def auto_dismiss_consent(page: Page):
    for text in CONSENT_TEXTS:
        try:
            element = await page.query_selector(f"button:has-text('{text}')")
            if element and await element.is_visible():
                await element.click(force=True)
                await page.wait_for_timeout(500)
                logging.debug(f"CONSENT - Clicked '{text}'")
                return
        except Exception as e:
            logging.debug(f"CONSENT CLICK FAIL: {text} -> {e}")


class PlaywrightScraper:
    def __init__(self, headless: bool = True):
        self.headless = headless
        self._playwright_obj = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._browser_lock = asyncio.Lock()
        self._stealth = Stealth()

    async def init_browser(self) -> BrowserContext:
        async with self._browser_lock:
            if self._playwright_obj is None:
                for attempt in range(2):
                    try:
                        self._playwright_obj = await async_playwright().start()
                        break
                    except Exception as e:
                        logging.error(
                            f"PLAYWRIGHT INIT ERROR (attempt {attempt + 1}): {e}"
                        )
                        await asyncio.sleep(1)

            if self._browser and not self._browser.is_connected():
                logging.warning("PLAYWRIGHT - Browser disconnected, relaunching")
                self._browser = None
                self._context = None

            if self._browser is None or self._context is None:
                if self._playwright_obj is None:
                    raise RuntimeError("Playwright failed to start after retries.")

                self._browser = await self._playwright_obj.chromium.launch(
                    headless=self.headless,
                    args=[
                        "--disable-blink-features=AutomationControlled",
                        "--no-sandbox",
                        "--disable-setuid-sandbox",
                        "--disable-dev-shm-usage",
                        "--disable-gpu",
                    ],
                )
                self._context = await self._browser.new_context(
                    user_agent=get_user_agent(),
                    viewport={"width": 1280, "height": 720},
                    java_script_enabled=True,
                    locale="en-US",
                )

        return self._context

    async def _load_more_content(self, page: Page, min_results: int):
        for _ in range(MAX_SCROLLS):
            count = await page.locator(RENDERER_SELECTOR).count()
            if count >= min_results:
                logging.debug(f"SCROLL - {count} renderer(s) visible, enough")
                return
            await page.mouse.wheel(0, 1000)
            await page.wait_for_timeout(500)

        for i in range(MAX_LOAD_MORE_CLICKS):
            button = await page.query_selector(LOAD_MORE_SELECTOR)
            if not button:
                break
            logging.debug(f"LOAD MORE - Click {i + 1}")
            await button.click()
            await page.wait_for_timeout(1000)

    async def fetch_raw_records(self, query: str, min_results: int) -> list[dict]:
        context = await self.init_browser()
        page = await context.new_page()
        url = search_page_url(query)

        try:
            try:
                await self._stealth.apply_stealth_async(page)
            except Exception as e:
                logging.info(f"STEALTH ERROR - {e}")

            await page.goto(
                url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS
            )
            await auto_dismiss_consent(page)

            try:
                await page.wait_for_selector(
                    RENDERER_SELECTOR, timeout=SELECTOR_TIMEOUT_MS
                )
            except Exception as e:
                logging.warning(f"SELECTOR WAIT - No renderers on {url}: {e}")

            await self._load_more_content(page, min_results)
            html = await page.content()
        finally:
            try:
                await page.close()
            except Exception as e:
                logging.warning(f"Failed to close page: {e}")

        return extract_raw_records(html)

    async def close(self):
        if self._context:
            await self._context.close()
        if self._browser:
            await self._browser.close()
        if self._playwright_obj:
            await self._playwright_obj.stop()
        self._context = None
        self._browser = None
        self._playwright_obj = None
