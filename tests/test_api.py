from __future__ import annotations

import pytest

fastapi = pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

import main
from converter import ConversionPipeline
from fakes import FakeClock, FakeRunner, FakeScraper, SleepRecorder, raw_record
from media_tools import ProcessTimeout
from retry import RetryPolicy, fixed_backoff
from search import SearchOrchestrator
from search_cache import SearchCache

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def _build_client() -> TestClient:
    return TestClient(main.app)


def _use_scraper(monkeypatch, responses) -> FakeScraper:
    scraper = FakeScraper(responses)
    policy = RetryPolicy(
        max_attempts=3, backoff=fixed_backoff(1.0), retry_on=lambda e: True, sleep=SleepRecorder()
    )
    orchestrator = SearchOrchestrator(scraper, SearchCache(ttl=300, clock=FakeClock()), policy)
    monkeypatch.setattr(main, "orchestrator", orchestrator)
    return scraper


def _use_runner(monkeypatch, tmp_path, runner: FakeRunner) -> None:
    monkeypatch.setattr(main, "pipeline", ConversionPipeline(tmp_path, runner))


# === health and headers ===
def test_health_sets_referrer_policy() -> None:
    response = _build_client().get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["referrer-policy"] == "strict-origin-when-cross-origin"


# === /search ===
@pytest.mark.parametrize("body", [{}, {"query": ""}, {"query": "   "}, {"query": 42}])
def test_search_rejects_missing_query(monkeypatch, body) -> None:
    scraper = _use_scraper(monkeypatch, [[]])
    response = _build_client().post("/search", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == "Missing or invalid query"
    assert response.json()["kind"] == "InvalidInput"
    assert scraper.calls == []


def test_search_rejects_bad_page(monkeypatch) -> None:
    _use_scraper(monkeypatch, [[]])
    client = _build_client()

    assert client.post("/search", json={"query": "lofi", "page": 0}).status_code == 400
    malformed = client.post("/search", json={"query": "lofi", "page": "abc"})
    assert malformed.status_code == 400
    assert malformed.json()["error"] == "Invalid request body"


def test_search_returns_candidates(monkeypatch) -> None:
    scraper = _use_scraper(
        monkeypatch, [[raw_record("dQw4w9WgXcQ", "Never Gonna Give You Up"), raw_record("bad", url="")]]
    )
    response = _build_client().post("/search", json={"query": "  rick astley  "})

    assert response.status_code == 200
    assert response.json() == {
        "results": [
            {
                "id": "dQw4w9WgXcQ",
                "title": "Never Gonna Give You Up",
                "url": URL,
                "thumbnailUrl": "https://i.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg",
                "channel": "Some Channel",
            }
        ],
        "page": 1,
    }
    assert scraper.calls == [("rick astley", 20)]


def test_search_with_no_results_is_not_an_error(monkeypatch) -> None:
    scraper = _use_scraper(monkeypatch, [[]])
    response = _build_client().post("/search", json={"query": "no such video exists xyzzy"})

    assert response.status_code == 200
    assert response.json() == {"results": [], "page": 1}
    assert len(scraper.calls) == 3


def test_search_failure_is_a_server_error(monkeypatch) -> None:
    _use_scraper(monkeypatch, [RuntimeError("browser crashed")])
    response = _build_client().post("/search", json={"query": "lofi"})

    assert response.status_code == 500
    assert response.json()["error"] == "Search failed"
    assert response.json()["kind"] == "SearchFailure"
    assert "browser crashed" in response.json()["details"]


# === /convert ===
def test_convert_rejects_foreign_host(monkeypatch, tmp_path) -> None:
    runner = FakeRunner()
    _use_runner(monkeypatch, tmp_path, runner)

    response = _build_client().post(
        "/convert", json={"url": "https://vimeo.com/123456", "format": "mp3"}
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid YouTube or YouTube Music URL"
    assert body["receivedUrl"] == "https://vimeo.com/123456"
    assert runner.calls == []


@pytest.mark.parametrize(
    ("body", "error"),
    [
        ({"format": "mp3"}, "Missing or invalid URL"),
        ({"url": 7, "format": "mp3"}, "Missing or invalid URL"),
        ({"url": URL}, "Missing format parameter"),
        ({"url": URL, "format": "ogg"}, "Unsupported format"),
    ],
)
def test_convert_validates_body(monkeypatch, tmp_path, body, error) -> None:
    _use_runner(monkeypatch, tmp_path, FakeRunner())

    response = _build_client().post("/convert", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == error


def test_convert_saves_file(monkeypatch, tmp_path) -> None:
    _use_runner(monkeypatch, tmp_path, FakeRunner())

    response = _build_client().post(
        "/convert",
        json={"url": URL, "format": "flac", "enhanceOptions": {"reverb": True}},
    )

    assert response.status_code == 200
    assert response.json() == {
        "filePath": str(tmp_path / "Test_Song.flac"),
        "message": "FLAC saved using video title",
    }
    assert sorted(p.name for p in tmp_path.iterdir()) == ["Test_Song.flac"]


def test_convert_acquisition_timeout(monkeypatch, tmp_path) -> None:
    runner = FakeRunner(failures={"ytdlp_audio": lambda cmd: ProcessTimeout(cmd, 300)})
    _use_runner(monkeypatch, tmp_path, runner)

    response = _build_client().post("/convert", json={"url": URL, "format": "wav"})

    assert response.status_code == 400
    assert response.json()["kind"] == "AcquisitionFailure"
    assert list(tmp_path.iterdir()) == []


# === /preview ===
def test_preview_returns_media_id() -> None:
    response = _build_client().post("/preview", json={"url": "https://youtu.be/dQw4w9WgXcQ"})
    assert response.status_code == 200
    assert response.json() == {"videoId": "dQw4w9WgXcQ"}


def test_preview_rejects_url_without_id() -> None:
    response = _build_client().post(
        "/preview", json={"url": "https://www.youtube.com/feed/trending"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid YouTube URL format"
    assert response.json()["receivedUrl"] == "https://www.youtube.com/feed/trending"


def test_preview_rejects_missing_url() -> None:
    response = _build_client().post("/preview", json={})
    assert response.status_code == 400
    assert response.json()["error"] == "Missing or invalid URL"


# === unexpected errors ===
def test_convert_unexpected_tool_error_keeps_error_shape(monkeypatch, tmp_path) -> None:
    runner = FakeRunner(failures={"ytdlp_audio": PermissionError(13, "Permission denied")})
    _use_runner(monkeypatch, tmp_path, runner)

    response = _build_client().post("/convert", json={"url": URL, "format": "wav"})

    assert response.status_code == 400
    assert response.headers["content-type"] == "application/json"
    assert response.json()["kind"] == "AcquisitionFailure"
    assert "PermissionError" in response.json()["details"]
    assert list(tmp_path.iterdir()) == []


def test_unhandled_error_returns_json_payload(monkeypatch) -> None:
    class _Broken:
        async def search(self, query, page=1):
            raise KeyError("renderer")

    monkeypatch.setattr(main, "orchestrator", _Broken())
    client = TestClient(main.app, raise_server_exceptions=False)

    response = client.post("/search", json={"query": "lofi"})

    assert response.status_code == 500
    assert response.json() == {
        "error": "Internal error",
        "kind": "AppError",
        "details": "KeyError: 'renderer'",
    }
