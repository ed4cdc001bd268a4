"""
오디오 처리 모듈 패키지

공통 데이터 타입:
- WavMetadata: WAV 컨테이너 헤더에서 읽은 PCM 포맷 정보
- SilenceSegment: VAD가 검출한 무음 구간
- SplitPlan: 분할 결과 청크 목록과 사용된 분할 방식
"""

from dataclasses import dataclass, field
from typing import Literal

# 표준 PCM WAV 헤더 크기 (RIFF 12 + fmt 24 + data 8)
WAV_HEADER_SIZE = 44


@dataclass(frozen=True)
class WavMetadata:
    """
    WAV 컨테이너의 PCM 포맷 정보입니다.

    필드:
        sample_rate: 샘플링레이트 (Hz)
        channels: 채널 수
        bits_per_sample: 샘플당 비트 수 (8의 배수)
        data_size: PCM 페이로드 바이트 수
        header_size: 페이로드가 시작되는 오프셋 (바이트)
    """
    sample_rate: int
    channels: int
    bits_per_sample: int
    data_size: int
    header_size: int = WAV_HEADER_SIZE

    @property
    def frame_size(self) -> int:
        """모든 채널의 샘플 1개씩을 합친 프레임 크기 (바이트)입니다."""
        return self.channels * self.bits_per_sample // 8

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.frame_size

    @property
    def bytes_per_ms(self) -> float:
        return self.bytes_per_second / 1000.0

    @property
    def duration_ms(self) -> float:
        """페이로드 재생 길이 (밀리초)입니다."""
        if self.bytes_per_second == 0:
            return 0.0
        return self.data_size * 1000.0 / self.bytes_per_second


@dataclass(frozen=True)
class SilenceSegment:
    """
    VAD가 검출한 무음 구간입니다.

    필드:
        start_ms: 구간 시작 시각 (밀리초, 페이로드 기준)
        end_ms: 구간 종료 시각 (밀리초, start_ms보다 큼)
        avg_rms: 구간 내 프레임 RMS 평균 (0.0~1.0)
    """
    start_ms: float
    end_ms: float
    avg_rms: float

    @property
    def duration_ms(self) -> float:
        return self.end_ms - self.start_ms

    @property
    def midpoint_ms(self) -> int:
        """분할 지점으로 사용하는 구간 중앙 시각 (밀리초, 내림)입니다."""
        return int((self.start_ms + self.end_ms) // 2)


@dataclass
class SplitPlan:
    """
    분할 정책의 결과입니다.

    필드:
        chunks: 순서가 보존된 독립 WAV 청크 목록
        method: 사용된 분할 방식
            - "none": 상한선 이하라 분할하지 않음
            - "size": 크기 기반 분할 (오버랩 없음)
            - "vad": 무음 지점 분할 (경계 오버랩 있음)
        overlap_boundaries: 인접한 두 청크 사이마다 오디오 오버랩이 있는지 여부
            (길이 = 청크 수 - 1). 상한선을 넘어 크기 분할된 VAD 청크 내부 경계는 False
    """
    chunks: list[bytes] = field(default_factory=list)
    method: Literal["none", "size", "vad"] = "none"
    overlap_boundaries: list[bool] = field(default_factory=list)

    @property
    def has_overlap(self) -> bool:
        return any(self.overlap_boundaries)
