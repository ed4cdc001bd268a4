"""
RMS 기반 VAD(Voice Activity Detection) 필터 모듈입니다.

역할:
- PCM 페이로드를 20ms 프레임으로 나눠 프레임별 RMS(음량)를 계산
- 노이즈 플로어 기반 적응형 임계값 또는 정적 임계값으로 무음 프레임 판별
- 최소 길이 이상 이어진 무음 구간을 SilenceSegment 목록으로 반환
- 멀티채널 입력은 모노로 믹스다운한 뒤 분석

사용 예시:
    >>> vad = VadFilter(config.audio.vad)
    >>> silences = vad.detect_silences(wav_bytes)
    >>> print(silences[0].start_ms, silences[0].end_ms)
"""

from __future__ import annotations

import logging

import numpy as np

from src.audio import SilenceSegment, WavMetadata
from src.audio.wav_container import extract_payload, parse_metadata
from src.config.schema import VadConfig

logger = logging.getLogger(__name__)

# 분석 프레임 길이 (ms)
FRAME_DURATION_MS = 20

# 적응형 임계값 = 10번째 백분위 RMS x 배율
NOISE_FLOOR_PERCENTILE = 10
NOISE_FLOOR_MULTIPLIER = 3.0

# 정적 임계값 기본값. 적응형 임계값의 하한은 이 값의 절반
DEFAULT_SILENCE_THRESHOLD = VadConfig.model_fields["silence_threshold"].default


class VadFilter:
    """
    WAV 버퍼에서 무음 구간을 검출하는 필터입니다.

    파라미터:
        vad_config: 무음 임계값, 최소 무음 길이, 적응형 임계값 사용 여부
    """

    def __init__(self, vad_config: VadConfig) -> None:
        self._config = vad_config
        logger.debug(
            f"VadFilter 초기화: threshold={vad_config.silence_threshold}, "
            f"min_silence={vad_config.min_silence_duration_ms}ms, "
            f"adaptive={vad_config.use_adaptive_threshold}"
        )

    @property
    def config(self) -> VadConfig:
        return self._config

    def detect_silences(self, buffer: bytes) -> list[SilenceSegment]:
        """
        WAV 버퍼 전체를 분석하여 무음 구간 목록을 반환합니다.

        파라미터:
            buffer: WAV 파일 전체 바이트

        반환값:
            list[SilenceSegment]: 시간순으로 정렬된 무음 구간 목록

        에러:
            InvalidContainerError: WAV 헤더가 손상된 경우
        """
        metadata = parse_metadata(buffer)
        payload = extract_payload(buffer, metadata)
        return detect_silence_regions(payload, metadata, self._config)

    def frame_rms(self, buffer: bytes) -> np.ndarray:
        """WAV 버퍼의 20ms 프레임별 RMS 배열을 반환합니다. 레벨 미터 등 진단 용도입니다."""
        metadata = parse_metadata(buffer)
        samples = pcm_to_float32(
            extract_payload(buffer, metadata),
            metadata.bits_per_sample,
            metadata.channels,
        )
        return _frame_rms_values(samples, _samples_per_frame(metadata.sample_rate))


# =============================================================================
# 모듈 레벨 함수
# =============================================================================

def pcm_to_float32(pcm: bytes, bits_per_sample: int, channels: int = 1) -> np.ndarray:
    """
    정수 PCM 바이트를 -1.0~+1.0 범위의 모노 float32 배열로 변환합니다.

    - 8bit: 부호 없는 정수, (b - 128) / 128
    - 16bit: little-endian int16 / 32768
    - 24bit: 3바이트 little-endian 부호 확장 / 2^23
    - 32bit: little-endian int32 / 2^31

    파라미터:
        pcm: 인터리브된 PCM 바이트
        bits_per_sample: 샘플당 비트 수
        channels: 채널 수 (2 이상이면 채널 평균으로 믹스다운)

    반환값:
        np.ndarray: shape=(samples,) float32 배열

    에러:
        ValueError: 지원하지 않는 비트뎁스
    """
    bytes_per_sample = bits_per_sample // 8
    usable_length = len(pcm) // bytes_per_sample * bytes_per_sample if bytes_per_sample else 0
    pcm = pcm[:usable_length]

    if bits_per_sample == 8:
        samples = (np.frombuffer(pcm, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    elif bits_per_sample == 16:
        samples = np.frombuffer(pcm, dtype="<i2").astype(np.float32) / 32768.0
    elif bits_per_sample == 24:
        samples = _decode_24bit(pcm).astype(np.float32) / float(2 ** 23)
    elif bits_per_sample == 32:
        samples = np.frombuffer(pcm, dtype="<i4").astype(np.float32) / float(2 ** 31)
    else:
        raise ValueError(f"지원하지 않는 비트뎁스: {bits_per_sample}")

    return _mixdown_to_mono(samples, channels)


def calculate_rms(samples: np.ndarray) -> float:
    """샘플 배열의 RMS(제곱평균제곱근)를 반환합니다. 빈 배열이면 0.0입니다."""
    if len(samples) == 0:
        return 0.0
    values = np.asarray(samples, dtype=np.float64)
    return float(np.sqrt(np.mean(values * values)))


def calculate_percentile(values: list[float] | np.ndarray, percentile: float) -> float:
    """
    오름차순 정렬 후 floor(p/100 * (n-1)) 위치의 값을 반환합니다.

    보간하지 않는 최근접 순위 방식이며, 빈 입력이면 0.0을 반환합니다.
    """
    if len(values) == 0:
        return 0.0
    sorted_values = np.sort(np.asarray(values, dtype=np.float64))
    index = int(np.floor(percentile / 100.0 * (len(sorted_values) - 1)))
    return float(sorted_values[index])


def estimate_noise_floor(rms_values: list[float] | np.ndarray) -> float:
    """
    프레임 RMS 분포에서 적응형 무음 임계값을 추정합니다.

    10번째 백분위 RMS의 3배를 사용하되, 매우 조용한 녹음에서 임계값이
    0에 가까워지지 않도록 기본 임계값의 절반을 하한으로 둡니다.

    파라미터:
        rms_values: 프레임별 RMS 값

    반환값:
        float: 무음 판정 임계값
    """
    if len(rms_values) == 0:
        return DEFAULT_SILENCE_THRESHOLD

    percentile_value = calculate_percentile(rms_values, NOISE_FLOOR_PERCENTILE)
    adaptive_threshold = percentile_value * NOISE_FLOOR_MULTIPLIER
    return max(adaptive_threshold, DEFAULT_SILENCE_THRESHOLD * 0.5)


def detect_silence_regions(
    pcm: bytes,
    metadata: WavMetadata,
    vad_config: VadConfig,
) -> list[SilenceSegment]:
    """
    PCM 페이로드에서 최소 길이 이상의 무음 구간을 검출합니다.

    처리 순서:
    1. PCM → 모노 float32 변환
    2. 20ms 프레임별 RMS 계산
    3. 임계값 결정 (적응형 또는 정적)
    4. 연속 무음 프레임을 구간으로 묶고 최소 길이 미만은 버림
    5. 오디오 끝까지 이어진 무음도 같은 규칙으로 포함

    파라미터:
        pcm: 헤더를 제외한 PCM 페이로드
        metadata: 페이로드의 포맷 정보
        vad_config: VAD 설정

    반환값:
        list[SilenceSegment]: 시간순, 서로 겹치지 않는 무음 구간 목록.
            프레임이 하나도 없거나 비트뎁스를 지원하지 않으면 빈 목록
    """
    try:
        samples = pcm_to_float32(pcm, metadata.bits_per_sample, metadata.channels)
    except ValueError as exc:
        logger.warning(f"VAD 분석 불가, 무음 구간 없음으로 처리: {exc}")
        return []

    samples_per_frame = _samples_per_frame(metadata.sample_rate)
    rms_values = _frame_rms_values(samples, samples_per_frame)
    frame_count = len(rms_values)
    if frame_count == 0:
        return []

    frame_ms = samples_per_frame * 1000.0 / metadata.sample_rate

    if vad_config.use_adaptive_threshold:
        threshold = _adaptive_threshold(rms_values, vad_config.silence_threshold)
    else:
        threshold = vad_config.silence_threshold

    silent_flags = rms_values < threshold
    min_duration_ms = vad_config.min_silence_duration_ms

    segments: list[SilenceSegment] = []
    run_start: int | None = None

    for frame_index in range(frame_count + 1):
        # 마지막 반복은 오디오 끝에서 열린 무음 구간을 닫기 위한 센티널
        is_silent = frame_index < frame_count and bool(silent_flags[frame_index])
        if is_silent:
            if run_start is None:
                run_start = frame_index
            continue

        if run_start is not None:
            start_ms = run_start * frame_ms
            end_ms = frame_index * frame_ms
            if end_ms - start_ms >= min_duration_ms:
                segments.append(SilenceSegment(
                    start_ms=start_ms,
                    end_ms=end_ms,
                    avg_rms=float(np.mean(rms_values[run_start:frame_index])),
                ))
            run_start = None

    logger.debug(
        f"무음 구간 검출: {frame_count}개 프레임, threshold={threshold:.5f}, "
        f"{len(segments)}개 구간"
    )
    return segments


# =============================================================================
# 모듈 레벨 헬퍼 함수
# =============================================================================

def _samples_per_frame(sample_rate: int) -> int:
    return max(1, sample_rate * FRAME_DURATION_MS // 1000)


def _frame_rms_values(samples: np.ndarray, samples_per_frame: int) -> np.ndarray:
    """
    샘플 배열을 고정 길이 프레임으로 나눠 프레임별 RMS를 계산합니다.

    프레임 길이에 못 미치는 끝부분은 분석하지 않습니다.
    """
    frame_count = len(samples) // samples_per_frame
    if frame_count == 0:
        return np.zeros(0, dtype=np.float64)
    frames = samples[:frame_count * samples_per_frame].astype(np.float64)
    frames = frames.reshape(frame_count, samples_per_frame)
    return np.sqrt(np.mean(frames * frames, axis=1))


def _adaptive_threshold(rms_values: np.ndarray, static_threshold: float) -> float:
    """
    노이즈 플로어 추정값을 음량 분포에 맞게 제한한 적응형 임계값을 반환합니다.

    음량이 균일한 구간만 있으면 10번째 백분위 x 3이 모든 프레임보다 커져
    전체가 무음으로 판정되므로, 가장 큰 프레임 RMS의 절반(또는 정적 임계값 중
    큰 값)을 상한으로 둡니다. 하한(기본 임계값의 절반)은 상한보다 나중에 적용하므로
    정적 임계값을 아주 낮게 설정한 조용한 녹음에서도 하한 아래로 내려가지 않습니다.
    """
    noise_floor = estimate_noise_floor(rms_values)
    ceiling = max(static_threshold, float(np.max(rms_values)) * 0.5)
    return max(min(noise_floor, ceiling), DEFAULT_SILENCE_THRESHOLD * 0.5)


def _mixdown_to_mono(samples: np.ndarray, channels: int) -> np.ndarray:
    """
    인터리브된 멀티채널 샘플을 채널 평균으로 모노 믹스다운합니다.

    채널 수로 나누어 떨어지지 않는 끝부분 샘플은 버립니다.
    """
    if channels <= 1:
        return samples
    usable = len(samples) // channels * channels
    return samples[:usable].reshape(-1, channels).mean(axis=1)


def _decode_24bit(data: bytes) -> np.ndarray:
    """
    24bit little-endian PCM을 int32 배열로 디코딩합니다.

    3바이트씩 읽어 4바이트로 패딩하고 bit 23 기준으로 부호를 확장합니다.
    """
    byte_array = np.frombuffer(data, dtype=np.uint8)
    sample_count = len(byte_array) // 3
    byte_array = byte_array[:sample_count * 3]
    padded = np.zeros(sample_count * 4, dtype=np.uint8)
    padded[0::4] = byte_array[0::3]
    padded[1::4] = byte_array[1::3]
    padded[2::4] = byte_array[2::3]
    padded[3::4] = np.where((byte_array[2::3] & 0x80) != 0, 0xFF, 0x00)
    return padded.view("<i4")
