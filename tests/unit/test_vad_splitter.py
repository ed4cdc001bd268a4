"""
VAD 기반 분할 및 분할 계획 단위 테스트

검증 항목:
- 무음 중앙 분할 + 양쪽 오버랩 적용, 청크별 독립 WAV
- 무음이 없는 연속 음성 → 원본 버퍼 그대로 반환
- 모든 청크 페이로드가 프레임 크기의 배수
- plan_split 결정 규칙 (none / size / vad, VAD 실패 시 크기 분할 대체,
  분석 한도 초과, 상한선을 넘는 VAD 청크 추가 분할)
"""

from __future__ import annotations

import numpy as np
import pytest

from src.audio import WAV_HEADER_SIZE, WavMetadata
from src.audio.vad_splitter import plan_split, split_by_vad
from src.audio.wav_container import build_wav, extract_payload, parse_metadata
from src.config.schema import VadConfig

_SAMPLE_RATE = 16000
_BYTES_PER_MS = 32  # 16kHz / 16bit / mono


# =============================================================================
# 테스트 헬퍼
# =============================================================================

def _tone(duration_ms: int) -> np.ndarray:
    t = np.arange(_SAMPLE_RATE * duration_ms // 1000) / _SAMPLE_RATE
    return 0.5 * np.sin(2 * np.pi * 440.0 * t)


def _silence(duration_ms: int) -> np.ndarray:
    return np.zeros(_SAMPLE_RATE * duration_ms // 1000)


def _to_wav(*segments: np.ndarray, channels: int = 1) -> bytes:
    mono = np.concatenate(segments)
    samples = np.repeat(mono, channels) if channels > 1 else mono
    pcm = (samples * 32767).astype("<i2").tobytes()
    metadata = WavMetadata(sample_rate=_SAMPLE_RATE, channels=channels, bits_per_sample=16, data_size=len(pcm))
    return build_wav(metadata, pcm)


def _make_vad_config(**overrides) -> VadConfig:
    values = {"min_silence_duration_ms": 700, "chunk_overlap_ms": 200}
    values.update(overrides)
    return VadConfig(**values)


# =============================================================================
# split_by_vad
# =============================================================================

def test_splits_at_silence_midpoint_with_overlap():
    """1000ms 지점(무음 중앙)에서 나누고 양쪽으로 200ms씩 겹치는지 확인합니다."""
    buffer = _to_wav(_tone(500), _silence(1000), _tone(500))
    payload = extract_payload(buffer, parse_metadata(buffer))

    chunks = split_by_vad(buffer, _make_vad_config())

    assert len(chunks) == 2
    first = extract_payload(chunks[0], parse_metadata(chunks[0]))
    second = extract_payload(chunks[1], parse_metadata(chunks[1]))
    assert first == payload[: 1200 * _BYTES_PER_MS]
    assert second == payload[800 * _BYTES_PER_MS:]


def test_zero_overlap_chunks_partition_payload():
    buffer = _to_wav(_tone(500), _silence(1000), _tone(500))
    payload = extract_payload(buffer, parse_metadata(buffer))

    chunks = split_by_vad(buffer, _make_vad_config(chunk_overlap_ms=0))

    joined = b"".join(extract_payload(chunk, parse_metadata(chunk)) for chunk in chunks)
    assert joined == payload


def test_continuous_audio_returns_original_buffer():
    """무음 구간이 없으면 원본 버퍼 하나만 반환하는지 확인합니다."""
    buffer = _to_wav(_tone(3000))

    chunks = split_by_vad(buffer, _make_vad_config())

    assert chunks == [buffer]
    assert chunks[0] is buffer


def test_stereo_chunks_are_frame_aligned():
    buffer = _to_wav(_tone(730), _silence(1010), _tone(650), channels=2)

    chunks = split_by_vad(buffer, _make_vad_config(chunk_overlap_ms=155))

    assert len(chunks) == 2
    for chunk in chunks:
        metadata = parse_metadata(chunk)
        assert metadata.channels == 2
        assert (len(chunk) - WAV_HEADER_SIZE) % metadata.frame_size == 0


# =============================================================================
# plan_split
# =============================================================================

def test_plan_under_ceiling_is_identity():
    buffer = _to_wav(_tone(500), _silence(1000), _tone(500))

    plan = plan_split(buffer, _make_vad_config(), max_chunk_bytes=len(buffer))

    assert plan.method == "none"
    assert plan.chunks == [buffer]
    assert not plan.has_overlap


def test_plan_uses_vad_when_silence_found():
    buffer = _to_wav(_tone(500), _silence(1000), _tone(500))

    plan = plan_split(buffer, _make_vad_config(), max_chunk_bytes=50_000)

    assert plan.method == "vad"
    assert plan.has_overlap
    assert len(plan.chunks) == 2
    assert all(len(chunk) <= 50_000 for chunk in plan.chunks)


def test_plan_without_vad_uses_size_split():
    buffer = _to_wav(_tone(500), _silence(1000), _tone(500))

    plan = plan_split(buffer, _make_vad_config(), max_chunk_bytes=50_000, use_vad=False)

    assert plan.method == "size"
    assert len(plan.chunks) == 2


def test_plan_falls_back_to_size_when_no_silence():
    """VAD가 분할 지점을 찾지 못하면 크기 기반 분할로 대체하는지 확인합니다."""
    buffer = _to_wav(_tone(3000))

    plan = plan_split(buffer, _make_vad_config(), max_chunk_bytes=40_000)

    assert plan.method == "size"
    assert len(plan.chunks) == 3
    assert all(len(chunk) <= 40_000 for chunk in plan.chunks)


def test_plan_skips_vad_above_analysis_limit():
    buffer = _to_wav(_tone(500), _silence(1000), _tone(500))

    plan = plan_split(buffer, _make_vad_config(max_analysis_bytes=60_000), max_chunk_bytes=50_000)

    assert plan.method == "size"


def test_plan_resplits_oversized_vad_chunk():
    """VAD 청크가 상한선을 넘으면 그 청크만 크기 기반으로 추가 분할하는지 확인합니다."""
    buffer = _to_wav(_tone(500), _silence(1000), _tone(3000))

    plan = plan_split(buffer, _make_vad_config(), max_chunk_bytes=100_000)

    assert plan.method == "vad"
    assert len(plan.chunks) == 3
    assert all(len(chunk) <= 100_000 for chunk in plan.chunks)
    # 첫 청크는 VAD 결과 그대로 (0 ~ 1200ms)
    assert len(plan.chunks[0]) == WAV_HEADER_SIZE + 1200 * _BYTES_PER_MS
    # VAD 경계만 오버랩, 크기 분할 경계는 오버랩 없음
    assert plan.overlap_boundaries == [True, False]


@pytest.mark.parametrize("max_chunk_bytes", [30_000, 45_000])
def test_plan_chunks_always_parse(max_chunk_bytes):
    buffer = _to_wav(_tone(500), _silence(1000), _tone(500))

    plan = plan_split(buffer, _make_vad_config(), max_chunk_bytes=max_chunk_bytes)

    for chunk in plan.chunks:
        assert parse_metadata(chunk).sample_rate == _SAMPLE_RATE
        assert len(chunk) <= max_chunk_bytes
