"""Declarative audio filter chains.

A chain is an ordered tuple of typed stages. Policy (which stages, in which
order, with which values) lives in ``build_filter_chain``; the ffmpeg ``-af``
syntax lives only in each stage's ``render`` and in ``render_filter_chain``.
"""

from dataclasses import dataclass
from enum import Enum


class OutputFormat(str, Enum):
    M4A = "m4a"
    WAV = "wav"
    FLAC = "flac"
    MP4 = "mp4"
    MP3 = "mp3"


@dataclass(frozen=True)
class EnhanceOptions:
    reverb: bool = False
    widening: bool = False

    @property
    def spatial(self) -> bool:
        return self.reverb or self.widening


# === 🎚️ STAGES ===
def _num(value) -> str:
    return f"{value:g}"


@dataclass(frozen=True)
class Equalizer:
    frequency: float
    width: float
    gain: float

    def render(self) -> str:
        return (
            f"equalizer=f={_num(self.frequency)}:t=q:"
            f"w={_num(self.width)}:g={_num(self.gain)}"
        )


@dataclass(frozen=True)
class Volume:
    factor: float

    def render(self) -> str:
        return f"volume={_num(self.factor)}"


@dataclass(frozen=True)
class DynamicNormalize:
    peak: float = 0.95
    max_gain: float = 10

    def render(self) -> str:
        return f"dynaudnorm=p={_num(self.peak)}:m={_num(self.max_gain)}"


@dataclass(frozen=True)
class Compressor:
    ratio: float = 8
    threshold_db: float = -10
    attack_ms: float = 5
    release_ms: float = 50

    def render(self) -> str:
        return (
            f"acompressor=ratio={_num(self.ratio)}:threshold={_num(self.threshold_db)}dB:"
            f"attack={_num(self.attack_ms)}:release={_num(self.release_ms)}"
        )


@dataclass(frozen=True)
class Limiter:
    limit: float = 0.1

    def render(self) -> str:
        return f"alimiter=limit={_num(self.limit)}"


@dataclass(frozen=True)
class LoudnessNormalize:
    integrated: float
    true_peak: float
    loudness_range: float

    def render(self) -> str:
        return (
            f"loudnorm=I={_num(self.integrated)}:TP={_num(self.true_peak)}:"
            f"LRA={_num(self.loudness_range)}"
        )


@dataclass(frozen=True)
class NoiseReduction:
    reduction: float = 1.0
    noise_floor: float = -20

    def render(self) -> str:
        return f"afftdn=nr={_num(self.reduction)}:nf={_num(self.noise_floor)}"


@dataclass(frozen=True)
class Reverb:
    # ffmpeg has no dedicated reverb filter; a short multi-tap echo stands in
    in_gain: float = 0.8
    out_gain: float = 0.88
    delays_ms: tuple = (40, 60)
    decays: tuple = (0.3, 0.25)

    def render(self) -> str:
        delays = "|".join(_num(d) for d in self.delays_ms)
        decays = "|".join(_num(d) for d in self.decays)
        return f"aecho={_num(self.in_gain)}:{_num(self.out_gain)}:{delays}:{decays}"


@dataclass(frozen=True)
class StereoWiden:
    multiplier: float = 0.9

    def render(self) -> str:
        return f"extrastereo=m={_num(self.multiplier)}"


# === 🎛️ PRESETS ===
@dataclass(frozen=True)
class Preset:
    name: str
    equalizer: tuple
    gain: float
    loudness: LoudnessNormalize


LIGHT = Preset(
    name="light",
    equalizer=(
        Equalizer(250, 1, 2),
        Equalizer(1000, 0.5, 2),
        Equalizer(2000, 1, 2),
        Equalizer(1200, 0.3, 4),
        Equalizer(4000, 1, 2),
        Equalizer(8000, 1, -2),
    ),
    gain=4,
    loudness=LoudnessNormalize(integrated=-23, true_peak=-1, loudness_range=14),
)

STRONG = Preset(
    name="strong",
    equalizer=(
        Equalizer(60, 1.5, 4),
        Equalizer(250, 1, 4),
        Equalizer(500, 0.7, 3),
        Equalizer(1000, 0.5, 3),
        Equalizer(1200, 0.3, 4),
        Equalizer(4000, 1, 3),
        Equalizer(8000, 1, 2),
    ),
    gain=8,
    loudness=LoudnessNormalize(integrated=-16, true_peak=-1, loudness_range=11),
)


def select_preset(fmt, include_video: bool = False) -> Preset:
    fmt = OutputFormat(fmt)
    if fmt == OutputFormat.MP3:
        return LIGHT
    if fmt == OutputFormat.MP4 and include_video:
        return LIGHT
    return STRONG


# === 🧱 BUILD ===
def build_filter_chain(
    fmt, enhance: EnhanceOptions | None = None, noise_hint: bool = False, include_video: bool = False
) -> tuple:
    enhance = enhance or EnhanceOptions()
    preset = select_preset(fmt, include_video)

    stages = list(preset.equalizer)
    stages += [
        Volume(preset.gain),
        DynamicNormalize(),
        Compressor(),
        Limiter(),
        preset.loudness,
    ]
    if noise_hint:
        stages.append(NoiseReduction())
    if enhance.spatial:
        stages += [Reverb(), StereoWiden()]

    return tuple(stages)


def render_filter_chain(stages) -> str:
    return ",".join(stage.render() for stage in stages)
