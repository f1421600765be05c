"""Conversion pipeline.

A job moves through an explicit sequence of stages; ``ConversionPipeline.step``
performs exactly one transition. Any failure moves the job to ``FAILED`` after
every artifact the job may have written is removed. External tools are reached
only through the injected ``runner``.
"""

import logging, shutil, tempfile, time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from config import ACQUIRE_TIMEOUT_SECONDS, DOWNLOADS_DIR, ENCODE_TIMEOUT_SECONDS, FFMPEG_BIN
from errors import AcquisitionFailure, AppError, ConversionError, EncodingFailure, ProbeFailure
from filters import EnhanceOptions, OutputFormat, build_filter_chain, render_filter_chain
from media_tools import (
    ProbeInfo,
    ProcessFailed,
    detect_noise,
    extract_audio_cmd,
    fetch_title,
    probe_audio,
    run_process,
    ytdlp_audio_cmd,
    ytdlp_video_cmd,
)
from output_paths import OutputPathAllocator
from retry import RetryPolicy
from url_tools import resolve_media_id

HIRES_SAMPLE_RATE = 384000
MP3_BITRATE = "320k"
MP3_SAMPLE_RATE = 48000
AAC_BITRATE = "512k"
AAC_SAMPLE_RATE = 96000


class Stage(str, Enum):
    RESOLVING = "resolving"
    ACQUIRING = "acquiring"
    PROBING_BEFORE = "probing_before"
    ENCODING = "encoding"
    PROBING_AFTER = "probing_after"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STAGES = {Stage.DONE, Stage.FAILED}


class AcquireStrategy(str, Enum):
    AUDIO_ONLY = "audio_only"
    VIDEO_MERGE = "video_merge"


class EncodeTarget(str, Enum):
    MP3 = "mp3"
    MP4_VIDEO = "mp4_video"
    MP4_AUDIO = "mp4_audio"
    M4A = "m4a"
    WAV = "wav"
    FLAC = "flac"


def encode_target(fmt, include_video: bool) -> EncodeTarget:
    fmt = OutputFormat(fmt)
    if fmt == OutputFormat.MP4:
        return EncodeTarget.MP4_VIDEO if include_video else EncodeTarget.MP4_AUDIO
    return EncodeTarget(fmt.value)


# === 🧾 JOB ===
@dataclass(frozen=True)
class ConversionJob:
    source_url: str
    target_format: OutputFormat
    include_video: bool = False
    enhance: EnhanceOptions = field(default_factory=EnhanceOptions)

    @property
    def strategy(self) -> AcquireStrategy:
        return AcquireStrategy.VIDEO_MERGE if self.include_video else AcquireStrategy.AUDIO_ONLY

    @property
    def target(self) -> EncodeTarget:
        return encode_target(self.target_format, self.include_video)


@dataclass
class Artifacts:
    workdir: Path | None = None
    temp_audio: Path | None = None
    temp_video: Path | None = None
    enhanced_audio: Path | None = None
    final_output: Path | None = None

    def temporaries(self) -> list[Path]:
        return [p for p in (self.temp_audio, self.temp_video, self.enhanced_audio) if p]

    def everything(self) -> list[Path]:
        return self.temporaries() + ([self.final_output] if self.final_output else [])

    def remove(self, keep_final: bool):
        for path in self.temporaries() if keep_final else self.everything():
            remove_artifact(path)
        remove_workdir(self.workdir)


@dataclass
class JobState:
    job: ConversionJob
    stage: Stage = Stage.RESOLVING
    media_id: str | None = None
    title: str | None = None
    artifacts: Artifacts = field(default_factory=Artifacts)
    filter_chain: tuple = ()
    before: ProbeInfo | None = None
    after: ProbeInfo | None = None
    error: Exception | None = None
    failed_in: Stage | None = None


# === 🎛️ ENCODE PLANS ===
ENCODE_ARGS = {
    EncodeTarget.MP3: [
        "-c:a", "libmp3lame", "-b:a", MP3_BITRATE,
        "-ar", str(MP3_SAMPLE_RATE), "-ac", "2", "-f", "mp3",
    ],
    EncodeTarget.MP4_AUDIO: [
        "-c:a", "aac", "-b:a", AAC_BITRATE,
        "-ar", str(AAC_SAMPLE_RATE), "-ac", "2", "-vn",
    ],
    EncodeTarget.M4A: [
        "-c:a", "alac", "-ar", str(HIRES_SAMPLE_RATE),
        "-ac", "2", "-sample_fmt", "s32p", "-vn",
    ],
    EncodeTarget.WAV: [
        "-ar", str(HIRES_SAMPLE_RATE), "-ac", "2",
        "-sample_fmt", "s32", "-c:a", "pcm_s32le", "-vn",
    ],
    EncodeTarget.FLAC: [
        "-ar", str(HIRES_SAMPLE_RATE), "-ac", "2",
        "-sample_fmt", "s32", "-c:a", "flac", "-vn",
    ],
}


def encode_commands(target: EncodeTarget, artifacts: Artifacts, audio_filter: str) -> list[list[str]]:
    source = str(artifacts.temp_audio)
    final = str(artifacts.final_output)

    if target != EncodeTarget.MP4_VIDEO:
        return [[FFMPEG_BIN, "-y", "-i", source, "-af", audio_filter, *ENCODE_ARGS[target], final]]

    enhanced = str(artifacts.enhanced_audio)
    return [
        [
            FFMPEG_BIN, "-y", "-i", source, "-af", audio_filter,
            "-ar", str(HIRES_SAMPLE_RATE), "-sample_fmt", "s32",
            "-c:a", "pcm_s32le", "-ac", "2", enhanced,
        ],
        [
            FFMPEG_BIN, "-y", "-i", str(artifacts.temp_video), "-i", enhanced,
            "-map", "0:v:0", "-map", "1:a:0",
            "-c:v", "libx264", "-preset", "medium", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-b:a", AAC_BITRATE, "-ar", str(AAC_SAMPLE_RATE),
            "-shortest", final,
        ],
    ]


# === 🔁 PIPELINE ===
class ConversionPipeline:
    def __init__(
        self,
        downloads_dir=DOWNLOADS_DIR,
        runner=run_process,
        allocator: OutputPathAllocator | None = None,
        clock=time.time,
        acquire_policy: RetryPolicy | None = None,
        encode_policy: RetryPolicy | None = None,
    ):
        self.downloads_dir = Path(downloads_dir)
        self.runner = runner
        self.allocator = allocator or OutputPathAllocator()
        self.clock = clock
        self.acquire_policy = acquire_policy or RetryPolicy(
            max_attempts=1, timeout=ACQUIRE_TIMEOUT_SECONDS, name="acquire"
        )
        self.encode_policy = encode_policy or RetryPolicy(
            max_attempts=1, timeout=ENCODE_TIMEOUT_SECONDS, name="encode"
        )
        self._handlers = {
            Stage.RESOLVING: self._resolve,
            Stage.ACQUIRING: self._acquire,
            Stage.PROBING_BEFORE: self._probe_before,
            Stage.ENCODING: self._encode,
            Stage.PROBING_AFTER: self._probe_after,
            Stage.FINALIZING: self._finalize,
        }

    async def _run(self, policy: RetryPolicy, cmd: list[str]):
        return await policy.run(lambda: self.runner(cmd, policy.timeout))

    async def step(self, state: JobState) -> JobState:
        handler = self._handlers.get(state.stage)
        if handler is None:
            return state

        try:
            next_stage = await handler(state)
        except Exception as e:
            logging.error(
                f"CONVERT FAILED - {state.stage.value}: {type(e).__name__}: {e}"
            )
            state.error = as_conversion_error(state.stage, e)
            state.failed_in = state.stage
            state.stage = Stage.FAILED
            self._rollback(state)
            return state

        logging.debug(f"STAGE - {state.stage.value} -> {next_stage.value}")
        state.stage = next_stage
        return state

    async def convert(self, job: ConversionJob) -> Path:
        logging.info(
            f"CONVERT - {job.source_url} as {job.target_format.value} "
            f"(video={job.include_video}, reverb={job.enhance.reverb}, widening={job.enhance.widening})"
        )
        state = JobState(job=job)
        try:
            while state.stage not in TERMINAL_STAGES:
                state = await self.step(state)
        finally:
            self.allocator.release(state.artifacts.final_output)

        if state.stage == Stage.FAILED:
            raise state.error
        return state.artifacts.final_output

    # === STAGES ===
    async def _resolve(self, state: JobState) -> Stage:
        job = state.job
        state.media_id = resolve_media_id(job.source_url)
        state.title = await fetch_title(self.runner, state.media_id, self.clock)

        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        final = self.allocator.reserve(self.downloads_dir, state.title, job.target_format.value)
        stem = final.stem

        artifacts = state.artifacts
        artifacts.final_output = final
        artifacts.workdir = Path(tempfile.mkdtemp(prefix=f".{stem}_", dir=self.downloads_dir))
        artifacts.temp_audio = artifacts.workdir / f"{stem}_temp.wav"
        if job.strategy == AcquireStrategy.VIDEO_MERGE:
            artifacts.temp_video = artifacts.workdir / f"{stem}_temp_video.mp4"
        if job.target == EncodeTarget.MP4_VIDEO:
            artifacts.enhanced_audio = artifacts.workdir / f"{stem}_enhanced_audio.wav"

        logging.info(f"RESOLVED - {state.media_id} -> {final.name}")
        return Stage.ACQUIRING

    async def _acquire(self, state: JobState) -> Stage:
        artifacts = state.artifacts
        started = time.monotonic()

        try:
            if state.job.strategy == AcquireStrategy.VIDEO_MERGE:
                await self._run(
                    self.acquire_policy, ytdlp_video_cmd(state.media_id, artifacts.temp_video)
                )
                if not artifacts.temp_video.exists():
                    raise AcquisitionFailure(
                        f"Temporary video file not found: {artifacts.temp_video}"
                    )
                await self._run(
                    self.acquire_policy,
                    extract_audio_cmd(artifacts.temp_video, artifacts.temp_audio),
                )
            else:
                await self._run(
                    self.acquire_policy, ytdlp_audio_cmd(state.media_id, artifacts.temp_audio)
                )
        except ProcessFailed as e:
            raise AcquisitionFailure(str(e)) from e

        if not artifacts.temp_audio.exists():
            raise AcquisitionFailure(f"Temporary WAV file not found: {artifacts.temp_audio}")

        logging.info(f"ACQUIRED - {state.media_id} in {time.monotonic() - started:.2f}s")
        return Stage.PROBING_BEFORE

    async def _probe_before(self, state: JobState) -> Stage:
        try:
            state.before = await probe_audio(self.runner, state.artifacts.temp_audio)
        except ProbeFailure as e:
            logging.warning(f"PROBE BEFORE - {e}; continuing with unknown values")
            state.before = ProbeInfo.unknown()
        return Stage.ENCODING

    async def _encode(self, state: JobState) -> Stage:
        job = state.job
        noise = detect_noise(state.before or ProbeInfo.unknown())
        if noise:
            logging.info("NOISE - Hum or hiss detected, applying noise reduction")

        state.filter_chain = build_filter_chain(
            job.target_format, job.enhance, noise, job.include_video
        )
        audio_filter = render_filter_chain(state.filter_chain)
        started = time.monotonic()

        logging.info(f"ENCODE - {job.target.value} for {state.artifacts.final_output.name}")
        try:
            for cmd in encode_commands(job.target, state.artifacts, audio_filter):
                await self._run(self.encode_policy, cmd)
        except ProcessFailed as e:
            raise EncodingFailure(str(e)) from e

        logging.info(f"ENCODED - {job.target.value} in {time.monotonic() - started:.2f}s")
        return Stage.PROBING_AFTER

    async def _probe_after(self, state: JobState) -> Stage:
        final = state.artifacts.final_output
        fmt = state.job.target_format.value
        if not final.exists():
            raise ProbeFailure(f"Final {fmt} file not found: {final}")

        state.after = await probe_audio(self.runner, final)
        logging.info(f"Before Conversion - {(state.before or ProbeInfo.unknown()).describe()}")
        logging.info(f"After Conversion - {state.after.describe()}")
        return Stage.FINALIZING

    async def _finalize(self, state: JobState) -> Stage:
        state.artifacts.remove(keep_final=True)
        logging.info(
            f"✅ {state.job.target_format.value.upper()} saved to: {state.artifacts.final_output}"
        )
        return Stage.DONE

    def _rollback(self, state: JobState):
        state.artifacts.remove(keep_final=False)


def remove_artifact(path: Path) -> bool:
    if not path.exists():
        return False
    try:
        path.unlink()
        logging.info(f"CLEANUP - Removed {path}")
        return True
    except OSError as e:
        logging.warning(f"CLEANUP - Failed to remove {path}: {e}")
        return False


def remove_workdir(path: Path | None) -> bool:
    if path is None or not path.exists():
        return False
    try:
        shutil.rmtree(path)
        logging.info(f"CLEANUP - Removed work directory {path}")
        return True
    except OSError as e:
        logging.warning(f"CLEANUP - Failed to remove {path}: {e}")
        return False


STAGE_ERRORS = {
    Stage.ACQUIRING: AcquisitionFailure,
    Stage.ENCODING: EncodingFailure,
    Stage.PROBING_BEFORE: ProbeFailure,
    Stage.PROBING_AFTER: ProbeFailure,
}


def as_conversion_error(stage: Stage, error: Exception) -> AppError:
    if isinstance(error, AppError):
        return error
    wrapped = STAGE_ERRORS.get(stage, ConversionError)(f"{type(error).__name__}: {error}")
    wrapped.__cause__ = error
    return wrapped
