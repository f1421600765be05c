# === 📦 IMPORTS ===
import logging, time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import CACHE_TTL_SECONDS, CORS_ORIGINS, DOWNLOADS_DIR, LOG_LEVEL
from converter import ConversionJob, ConversionPipeline
from errors import AppError, InvalidInput, InvalidUrl
from filters import EnhanceOptions, OutputFormat
from playwright_scraper import PlaywrightScraper
from search import SearchOrchestrator
from search_cache import SearchCache
from url_tools import DIRECT, classify, resolve_media_id

# === ℹ️ LOGGING ===
start_time = time.monotonic()


class ElapsedFormatter(logging.Formatter):
    def format(self, record):
        elapsed = time.monotonic() - start_time
        record.elapsed_time = f"{elapsed:.2f}s"
        return super().format(record)


formatter_str = "%(elapsed_time)s [%(levelname)s] %(message)s"

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.DEBUG), format=formatter_str)

for handler in logging.getLogger().handlers:
    handler.setFormatter(ElapsedFormatter(formatter_str))

for lib in ["urllib3", "asyncio", "multipart"]:
    logging.getLogger(lib).setLevel(logging.WARNING)

# === ⚙️ SERVICES ===
scraper = PlaywrightScraper()
search_cache = SearchCache(ttl=CACHE_TTL_SECONDS)
orchestrator = SearchOrchestrator(scraper, search_cache)
pipeline = ConversionPipeline(downloads_dir=DOWNLOADS_DIR)

SUPPORTED_FORMATS = [f.value for f in OutputFormat]


# === 🧾 REQUEST MODELS ===
class SearchRequest(BaseModel):
    query: Any = None
    page: int = 1


class EnhanceOptionsBody(BaseModel):
    reverb: bool = False
    widening: bool = False


class ConvertRequest(BaseModel):
    url: Any = None
    format: Any = None
    includeVideo: bool = False
    enhanceOptions: EnhanceOptionsBody | None = None


class PreviewRequest(BaseModel):
    url: Any = None


# === 🚀 FASTAPI APP ===
@asynccontextmanager
async def lifespan(_: FastAPI):
    logging.info(f"🚀 Server ready, saving into {DOWNLOADS_DIR}")
    yield
    try:
        await scraper.close()
    except Exception as e:
        logging.warning(f"Failed to close browser: {e}")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.monotonic()
    response = await call_next(request)
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    logging.info(
        f"[{request.method}] {request.url.path} -> {response.status_code} "
        f"({time.monotonic() - started:.2f}s) - Referrer: {request.headers.get('referer') or 'None'}"
    )
    return response


@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logging.exception(f"UNHANDLED - {request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": AppError.error,
            "kind": AppError.kind,
            "details": f"{type(exc).__name__}: {exc}",
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', []))}: {err.get('msg')}"
        for err in exc.errors()
    )
    logging.warning(f"INVALID BODY - {details}")
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "kind": InvalidInput.kind, "details": details},
    )


# === 🌐 ROUTES ===
@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/search")
async def search(payload: SearchRequest):
    if not isinstance(payload.query, str) or not payload.query.strip():
        logging.error(f"Invalid search query: {payload.query!r}")
        raise InvalidInput("query must be a non-empty string", "Missing or invalid query")
    if payload.page < 1:
        raise InvalidInput(f"page must be >= 1, got {payload.page}", "Invalid page")

    query = payload.query.strip()
    logging.info(f"=== SEARCH '{query}' (page {payload.page}) ===")
    results = await orchestrator.search(query, payload.page)
    logging.info(f"RESULTS - {len(results)} valid video(s) for '{query}'")

    return JSONResponse(
        content={"results": [r.to_dict() for r in results], "page": payload.page}
    )


@app.post("/convert")
async def convert(payload: ConvertRequest):
    url = payload.url
    if not isinstance(url, str) or not url.strip():
        logging.error(f"Invalid URL received: {url!r}")
        raise InvalidUrl(url, "url must be a non-empty string", "Missing or invalid URL")
    if not payload.format:
        raise InvalidInput("format is required", "Missing format parameter")
    if payload.format not in SUPPORTED_FORMATS:
        raise InvalidInput(
            f"format must be one of {', '.join(SUPPORTED_FORMATS)}, got {payload.format!r}",
            "Unsupported format",
        )
    if classify(url) != DIRECT:
        logging.error(f"URL does not match accepted hosts: {url}")
        raise InvalidUrl(
            url,
            "Only youtube.com, youtu.be and music.youtube.com links are accepted",
            "Invalid YouTube or YouTube Music URL",
        )

    enhance = payload.enhanceOptions or EnhanceOptionsBody()
    job = ConversionJob(
        source_url=url.strip(),
        target_format=OutputFormat(payload.format),
        include_video=payload.includeVideo,
        enhance=EnhanceOptions(reverb=enhance.reverb, widening=enhance.widening),
    )
    final_path = await pipeline.convert(job)

    return JSONResponse(
        content={
            "filePath": str(final_path),
            "message": f"{job.target_format.value.upper()} saved using video title",
        }
    )


@app.post("/preview")
async def preview(payload: PreviewRequest):
    video_id = resolve_media_id(payload.url)
    logging.info(f"✅ Video ID fetched: {video_id}")
    return JSONResponse(content={"videoId": video_id})
