import asyncio, concurrent.futures, json, logging, os, subprocess, time
from dataclasses import dataclass
from pathlib import Path

from config import (
    DOWNLOAD_USER_AGENT,
    FFMPEG_BIN,
    FFPROBE_BIN,
    PROBE_TIMEOUT_SECONDS,
    TITLE_TIMEOUT_SECONDS,
    YT_DLP_BIN,
    get_process_concurrency,
)
from errors import ProbeFailure
from url_tools import fallback_title, sanitize_title, watch_url

# === 🧾 EXECUTOR ===
executor = concurrent.futures.ThreadPoolExecutor(max_workers=(os.cpu_count() or 4) * 2)
_process_sem: asyncio.Semaphore | None = None

ACQUIRE_SAMPLE_RATE = 384000
VIDEO_EXTRACT_SAMPLE_RATE = 96000
HIRES_PCM_CODEC = "pcm_f32le"

NOISE_LOW_HZ = 100
NOISE_LOW_DB = -40
NOISE_HIGH_HZ = 8000
NOISE_HIGH_DB = -50


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


class ProcessFailed(Exception):
    def __init__(self, cmd, returncode=None, stderr="", message=None):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr or ""
        super().__init__(
            message
            or f"{Path(self.cmd[0]).name} exited with {returncode}: {self.stderr.strip()[-500:]}"
        )


class ProcessTimeout(ProcessFailed):
    def __init__(self, cmd, timeout):
        self.timeout = timeout
        super().__init__(
            cmd, None, "", f"{Path(cmd[0]).name} timed out after {timeout:.0f}s"
        )


def _get_process_sem() -> asyncio.Semaphore:
    global _process_sem
    if _process_sem is None:
        _process_sem = asyncio.Semaphore(get_process_concurrency())
    return _process_sem


def _run_blocking(cmd, timeout) -> ProcessResult:
    try:
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise ProcessTimeout(cmd, timeout) from e
    except FileNotFoundError as e:
        raise ProcessFailed(
            cmd, message=f"{cmd[0]} is not installed or not available in PATH"
        ) from e
    except OSError as e:
        raise ProcessFailed(cmd, message=f"{cmd[0]} could not be started: {e}") from e

    if completed.returncode != 0:
        raise ProcessFailed(cmd, completed.returncode, completed.stderr)
    return ProcessResult(completed.returncode, completed.stdout, completed.stderr)


async def run_process(cmd: list[str], timeout: float | None = None) -> ProcessResult:
    """Run an external tool to completion without blocking the event loop.

    Raises ``ProcessTimeout`` when the wall-clock limit is hit (the child is
    killed) and ``ProcessFailed`` on a non-zero exit or a missing binary.
    """
    loop = asyncio.get_running_loop()
    started = time.monotonic()
    logging.debug(f"EXEC - {' '.join(cmd)}")

    async with _get_process_sem():
        result = await loop.run_in_executor(executor, _run_blocking, cmd, timeout)

    logging.debug(f"EXEC DONE - {Path(cmd[0]).name} in {time.monotonic() - started:.2f}s")
    return result


# === 🔬 PROBE ===
@dataclass(frozen=True)
class ProbeInfo:
    sample_rate: int | None = None
    bit_depth: int | None = None
    bit_rate: int | None = None
    spectrum: tuple | None = None

    @classmethod
    def unknown(cls):
        return cls()

    def describe(self) -> str:
        rate = f"{self.sample_rate / 1000:g} kHz" if self.sample_rate else "unknown"
        bits = f"{self.bit_depth} bits" if self.bit_depth else "N/A"
        kbps = f"{self.bit_rate / 1000:g} kbps" if self.bit_rate else "unknown"
        return f"Sample Rate: {rate}, Bitrate: {kbps}, Bit Depth: {bits}"


def _as_int(value):
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number or None


def probe_cmd(path) -> list[str]:
    return [
        FFPROBE_BIN,
        "-v",
        "quiet",
        "-i",
        str(path),
        "-show_entries",
        "stream=sample_rate,bits_per_sample,bit_rate",
        "-of",
        "json",
    ]


def parse_probe_output(output: str) -> ProbeInfo:
    data = json.loads(output or "{}")
    streams = [s for s in data.get("streams", []) if s.get("sample_rate")]
    if not streams:
        raise ValueError("no audio stream in ffprobe output")
    stream = streams[0]
    return ProbeInfo(
        sample_rate=_as_int(stream.get("sample_rate")),
        bit_depth=_as_int(stream.get("bits_per_sample")),
        bit_rate=_as_int(stream.get("bit_rate")),
    )


async def probe_audio(runner, path, timeout: float = PROBE_TIMEOUT_SECONDS) -> ProbeInfo:
    try:
        result = await runner(probe_cmd(path), timeout)
        return parse_probe_output(result.stdout)
    except (ProcessFailed, ValueError) as e:
        raise ProbeFailure(f"Could not probe {path}: {e}") from e


def detect_noise(probe: ProbeInfo) -> bool:
    # ffprobe never fills `spectrum`, so this stays off until a spectral pass exists
    if not probe.spectrum:
        return False
    low = any(f < NOISE_LOW_HZ and a > NOISE_LOW_DB for f, a in probe.spectrum)
    high = any(f > NOISE_HIGH_HZ and a > NOISE_HIGH_DB for f, a in probe.spectrum)
    return low or high


# === 🏷️ TITLE ===
async def fetch_title(runner, media_id: str, clock=time.time, timeout: float = TITLE_TIMEOUT_SECONDS) -> str:
    cmd = [YT_DLP_BIN, "--get-title", "--no-playlist", watch_url(media_id)]
    try:
        result = await runner(cmd, timeout)
        title = sanitize_title(result.stdout)
        if title:
            return title
        logging.warning(f"TITLE - Empty title for {media_id}, using fallback")
    except Exception as e:
        logging.error(f"TITLE ERROR - {media_id}: {type(e).__name__}: {e}")
    return fallback_title(clock)


# === 📥 ACQUIRE ===
def _ytdlp_base(output_template) -> list[str]:
    return [
        YT_DLP_BIN,
        "--no-playlist",
        "--no-mtime",
        "--add-metadata",
        "--user-agent",
        DOWNLOAD_USER_AGENT,
        "--restrict-filenames",
        "-o",
        str(output_template),
    ]


def ytdlp_audio_cmd(media_id: str, temp_audio: Path) -> list[str]:
    return _ytdlp_base(temp_audio.with_suffix(".%(ext)s")) + [
        "--extract-audio",
        "--audio-format",
        "wav",
        "--postprocessor-args",
        f"ExtractAudio:-c:a {HIRES_PCM_CODEC} -ar {ACQUIRE_SAMPLE_RATE} -ac 2",
        watch_url(media_id),
    ]


def ytdlp_video_cmd(media_id: str, temp_video: Path) -> list[str]:
    return _ytdlp_base(temp_video.with_suffix(".%(ext)s")) + [
        "--merge-output-format",
        "mp4",
        watch_url(media_id),
    ]


def extract_audio_cmd(temp_video: Path, temp_audio: Path) -> list[str]:
    return [
        FFMPEG_BIN,
        "-y",
        "-i",
        str(temp_video),
        "-vn",
        "-acodec",
        HIRES_PCM_CODEC,
        "-ar",
        str(VIDEO_EXTRACT_SAMPLE_RATE),
        "-ac",
        "2",
        str(temp_audio),
    ]
