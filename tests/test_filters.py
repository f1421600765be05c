from __future__ import annotations

import pytest

from filters import (
    LIGHT,
    STRONG,
    Compressor,
    DynamicNormalize,
    EnhanceOptions,
    Equalizer,
    Limiter,
    LoudnessNormalize,
    NoiseReduction,
    Reverb,
    StereoWiden,
    Volume,
    build_filter_chain,
    render_filter_chain,
    select_preset,
)

PRESET_STAGES = (Equalizer, Volume, LoudnessNormalize)


def _without_preset(chain):
    return [stage for stage in chain if not isinstance(stage, PRESET_STAGES)]


def test_build_is_deterministic() -> None:
    first = build_filter_chain("wav", EnhanceOptions(), False)
    second = build_filter_chain("wav", EnhanceOptions(), False)
    assert first == second
    assert render_filter_chain(first) == render_filter_chain(second)


@pytest.mark.parametrize(
    ("fmt", "include_video", "expected"),
    [
        ("mp3", False, LIGHT),
        ("mp3", True, LIGHT),
        ("mp4", True, LIGHT),
        ("mp4", False, STRONG),
        ("m4a", False, STRONG),
        ("wav", False, STRONG),
        ("flac", False, STRONG),
        ("flac", True, STRONG),
    ],
)
def test_preset_selection_follows_format_and_video(fmt, include_video, expected) -> None:
    assert select_preset(fmt, include_video) is expected


def test_stage_order_without_options() -> None:
    chain = build_filter_chain("flac", EnhanceOptions(), False)
    assert list(chain[: len(STRONG.equalizer)]) == list(STRONG.equalizer)
    assert list(chain[len(STRONG.equalizer) :]) == [
        Volume(8),
        DynamicNormalize(),
        Compressor(),
        Limiter(),
        STRONG.loudness,
    ]


def test_mp4_video_flag_changes_only_the_preset() -> None:
    enhance = EnhanceOptions(reverb=True)
    audio_only = build_filter_chain("mp4", enhance, False, include_video=False)
    with_video = build_filter_chain("mp4", enhance, False, include_video=True)

    assert audio_only != with_video
    assert _without_preset(audio_only) == _without_preset(with_video)
    assert [s for s in with_video if isinstance(s, Equalizer)] == list(LIGHT.equalizer)
    assert [s for s in audio_only if isinstance(s, Equalizer)] == list(STRONG.equalizer)


@pytest.mark.parametrize(
    "enhance",
    [EnhanceOptions(reverb=True), EnhanceOptions(widening=True), EnhanceOptions(True, True)],
)
def test_spatial_effects_are_added_together(enhance) -> None:
    chain = build_filter_chain("m4a", enhance, False)
    assert chain[-2:] == (Reverb(), StereoWiden())


def test_no_spatial_effects_by_default() -> None:
    chain = build_filter_chain("m4a", None, False)
    assert not any(isinstance(s, (Reverb, StereoWiden)) for s in chain)


def test_noise_reduction_sits_between_loudness_and_spatial() -> None:
    chain = build_filter_chain("wav", EnhanceOptions(widening=True), True)
    kinds = [type(s) for s in chain[-4:]]
    assert kinds == [LoudnessNormalize, NoiseReduction, Reverb, StereoWiden]


def test_render_light_chain_matches_ffmpeg_syntax() -> None:
    rendered = render_filter_chain(build_filter_chain("mp3", EnhanceOptions(), False))
    assert rendered == (
        "equalizer=f=250:t=q:w=1:g=2,"
        "equalizer=f=1000:t=q:w=0.5:g=2,"
        "equalizer=f=2000:t=q:w=1:g=2,"
        "equalizer=f=1200:t=q:w=0.3:g=4,"
        "equalizer=f=4000:t=q:w=1:g=2,"
        "equalizer=f=8000:t=q:w=1:g=-2,"
        "volume=4,"
        "dynaudnorm=p=0.95:m=10,"
        "acompressor=ratio=8:threshold=-10dB:attack=5:release=50,"
        "alimiter=limit=0.1,"
        "loudnorm=I=-23:TP=-1:LRA=14"
    )


def test_render_optional_stages() -> None:
    assert NoiseReduction().render() == "afftdn=nr=1:nf=-20"
    assert Reverb().render() == "aecho=0.8:0.88:40|60:0.3|0.25"
    assert StereoWiden().render() == "extrastereo=m=0.9"
    assert STRONG.loudness.render() == "loudnorm=I=-16:TP=-1:LRA=11"


def test_unknown_format_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_filter_chain("ogg", EnhanceOptions(), False)
