"""
Meeting-Chunk-Transcriber 설정 스키마 정의 모듈입니다.

역할:
- Pydantic v2 BaseModel 기반으로 config.yaml의 전체 구조를 타입 안전하게 정의
- 각 섹션(system, audio, stt, recording)을 독립적인 중첩 모델로 분리
- 필드별 기본값, 허용 범위, 유효성 검증(validator)을 포함

사용 예시:
    >>> from src.config.schema import AppConfig
    >>> config = AppConfig(**yaml_data)
    >>> print(config.stt.mode)
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, field_validator, model_validator

# 모듈 로거 설정
logger = logging.getLogger(__name__)

# 원격 STT API 요청 크기 하드 리밋 (24MiB)
API_SIZE_LIMIT_BYTES = 25_165_824

# 청크 분할 안전 상한선 (20MiB, 하드 리밋 대비 4MiB 여유)
DEFAULT_MAX_CHUNK_BYTES = 20_971_520


# =============================================================================
# system 섹션: 시스템 전역 설정
# =============================================================================

class SystemConfig(BaseModel):
    """
    시스템 전역 설정을 정의하는 모델입니다.

    역할:
    - 로깅 레벨 및 포맷 지정
    - 세션 식별자 관리
    """
    # 로그 출력 레벨
    log_level: str = Field(default="INFO", description="로그 레벨 (DEBUG | INFO | WARNING | ERROR)")
    # 로그 출력 포맷
    log_format: str = Field(default="json", description="로그 포맷 (json | text)")
    # 로그 파일 저장 디렉토리 경로
    log_dir: str = Field(default="output/logs", description="로그 저장 디렉토리")
    # 세션 고유 식별자 (빈 문자열이면 UUID로 자동 생성)
    session_id: str = Field(default="", description="세션 ID (비어있으면 UUID 자동생성)")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """로그 레벨이 유효한 Python 로깅 레벨인지 검증합니다."""
        allowed_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        upper_value = value.upper()
        if upper_value not in allowed_levels:
            error_message = f"log_level은 {allowed_levels} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return upper_value

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        """로그 포맷이 지원되는 형식인지 검증합니다."""
        allowed_formats = ("json", "text")
        if value not in allowed_formats:
            error_message = f"log_format은 {allowed_formats} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return value


# =============================================================================
# audio 섹션: 청크 분할 및 VAD 설정
# =============================================================================

class VadConfig(BaseModel):
    """
    RMS 기반 무음 구간 검출(VAD) 설정입니다.

    역할:
    - 정적 무음 임계값 및 적응형 임계값 사용 여부 지정
    - 분할 지점으로 인정할 최소 무음 길이 지정
    - 청크 경계 양쪽으로 겹칠 오버랩 길이 지정
    """
    # 정적 RMS 무음 임계값 (정규화 진폭 기준, 0.0~1.0)
    silence_threshold: float = Field(default=0.01, description="정적 무음 RMS 임계값")
    # 분할 지점으로 인정할 최소 무음 길이 (밀리초)
    min_silence_duration_ms: int = Field(default=700, description="최소 무음 길이 (ms)")
    # 청크 경계 오버랩 길이 (밀리초)
    chunk_overlap_ms: int = Field(default=200, description="청크 오버랩 (ms)")
    # 노이즈 플로어 기반 적응형 임계값 사용 여부
    use_adaptive_threshold: bool = Field(default=True, description="적응형 임계값 사용 여부")
    # 이 크기를 넘는 버퍼는 VAD 분석을 건너뛰고 크기 기반 분할 (바이트)
    max_analysis_bytes: int = Field(default=536_870_912, description="VAD 분석 최대 버퍼 크기 (bytes)")

    @field_validator("silence_threshold")
    @classmethod
    def validate_silence_threshold(cls, value: float) -> float:
        """무음 임계값이 0.0~1.0 범위인지 검증합니다."""
        if not 0.0 <= value <= 1.0:
            error_message = f"silence_threshold는 0.0~1.0 범위여야 합니다. 입력값: {value}"
            raise ValueError(error_message)
        return value

    @field_validator("min_silence_duration_ms", "chunk_overlap_ms")
    @classmethod
    def validate_non_negative_ms(cls, value: int) -> int:
        """밀리초 값이 음수가 아닌지 검증합니다."""
        if value < 0:
            error_message = f"밀리초 값은 0 이상이어야 합니다. 입력값: {value}"
            raise ValueError(error_message)
        return value


class AudioConfig(BaseModel):
    """
    오디오 청크 분할 설정을 정의하는 모델입니다.

    역할:
    - 원격 API 요청 크기 리밋 이하로 청크 상한선 지정
    - VAD 설정 포함
    """
    # 청크 분할 안전 상한선 (바이트)
    max_chunk_bytes: int = Field(default=DEFAULT_MAX_CHUNK_BYTES, description="청크 최대 크기 (bytes)")
    # VAD 설정
    vad: VadConfig = Field(default_factory=VadConfig, description="VAD 설정")

    @field_validator("max_chunk_bytes")
    @classmethod
    def validate_max_chunk_bytes(cls, value: int) -> int:
        """
        청크 상한선이 WAV 헤더보다 크고 API 하드 리밋보다 작은지 검증합니다.

        상한선이 하드 리밋 이상이면 분할된 청크도 거부될 수 있습니다.
        """
        min_bytes = 1024
        if not min_bytes <= value < API_SIZE_LIMIT_BYTES:
            error_message = (
                f"max_chunk_bytes는 {min_bytes} 이상 {API_SIZE_LIMIT_BYTES} 미만이어야 합니다. "
                f"입력값: {value}"
            )
            raise ValueError(error_message)
        return value


# =============================================================================
# stt 섹션: 음성 인식 제공자 설정
# =============================================================================

class RetryConfig(BaseModel):
    """
    일시적 오류에 대한 재시도(exponential backoff) 설정입니다.
    """
    # 최대 시도 횟수 (최초 시도 포함)
    max_attempts: int = Field(default=3, description="최대 시도 횟수")
    # backoff 기본 대기 시간 (초)
    base_delay_sec: float = Field(default=1.0, description="backoff 기본값 (초)")
    # backoff 최대 대기 시간 (초)
    max_delay_sec: float = Field(default=10.0, description="backoff 최대값 (초)")
    # 시도마다 곱해지는 배율
    backoff_multiplier: float = Field(default=2.0, description="backoff 배율")

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, value: int) -> int:
        """시도 횟수가 1 이상인지 검증합니다."""
        if value < 1:
            error_message = f"max_attempts는 1 이상이어야 합니다. 입력값: {value}"
            raise ValueError(error_message)
        return value


class LocalSTTConfig(BaseModel):
    """
    로컬 Whisper(faster-whisper) 인식기 설정입니다.

    역할:
    - 사용할 모델 크기 및 저장 디렉토리 지정
    - 모델 자동 다운로드 여부 결정
    - 추론 디바이스/연산 타입 지정
    """
    # 모델 크기
    model: str = Field(default="base", description="모델 크기 (tiny | base | small | medium | large)")
    # 모델이 없을 때 자동 다운로드 여부
    auto_download: bool = Field(default=True, description="모델 자동 다운로드 여부")
    # 모델 저장 디렉토리
    models_dir: str = Field(default="~/.mch/models/whisper", description="모델 저장 디렉토리")
    # 추론 디바이스
    device: str = Field(default="cpu", description="추론 디바이스 (cpu | cuda | auto)")
    # CTranslate2 연산 타입
    compute_type: str = Field(default="int8", description="연산 타입 (int8 | float16 | float32)")
    # 빔 서치 크기
    beam_size: int = Field(default=5, description="빔 서치 크기")

    @field_validator("model")
    @classmethod
    def validate_model(cls, value: str) -> str:
        """모델 이름이 지원되는 크기인지 검증합니다."""
        allowed_models = ("tiny", "base", "small", "medium", "large")
        if value not in allowed_models:
            error_message = f"model은 {allowed_models} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return value


class ApiSTTConfig(BaseModel):
    """
    원격 Whisper API(OpenAI) 설정입니다.
    """
    # API 인증 키 (비어있으면 OPENAI_API_KEY 환경변수 사용)
    api_key: str = Field(default="", description="API 인증 키")
    # 원격 모델 식별자
    model: str = Field(default="whisper-1", description="원격 모델 식별자")
    # 요청 타임아웃 (초)
    timeout_sec: float = Field(default=120.0, description="요청 타임아웃 (초)")


class STTConfig(BaseModel):
    """
    음성 인식 제공자 선택 및 공통 동작 설정입니다.

    역할:
    - local/api/auto 모드 선택
    - 인식 언어 및 어휘 힌트 지정
    - 대용량 분할 시 VAD 사용 여부 결정
    - 재시도, 로컬, 원격 하위 설정 포함
    """
    # 제공자 선택 모드 (auto = 로컬 우선, 실패 시 API)
    mode: str = Field(default="auto", description="제공자 모드 (local | api | auto)")
    # 인식 언어 (ISO 639-1)
    language: str = Field(default="ko", description="인식 언어")
    # 인식 정확도 향상용 어휘 힌트 목록
    vocabulary: list[str] = Field(default_factory=list, description="어휘 힌트 목록")
    # 대용량 분할 시 VAD 분할 사용 여부
    use_vad: bool = Field(default=True, description="VAD 분할 사용 여부")
    # 재시도 설정
    retry: RetryConfig = Field(default_factory=RetryConfig, description="재시도 설정")
    # 로컬 인식기 설정
    local: LocalSTTConfig = Field(default_factory=LocalSTTConfig, description="로컬 인식기 설정")
    # 원격 API 설정
    api: ApiSTTConfig = Field(default_factory=ApiSTTConfig, description="원격 API 설정")

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, value: str) -> str:
        """제공자 모드가 허용된 값인지 검증합니다."""
        allowed_modes = ("local", "api", "auto")
        if value not in allowed_modes:
            error_message = f"mode는 {allowed_modes} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return value


# =============================================================================
# recording 섹션: 녹음 세션 설정
# =============================================================================

class RecordingConfig(BaseModel):
    """
    녹음 세션의 청크 파일 회전 및 포맷 설정입니다.

    역할:
    - 녹음 포맷(16kHz/16bit/mono) 지정
    - 청크 파일 회전 주기 및 점검 주기 설정
    - 청크별 전사 재시도 횟수 지정
    """
    # 녹음 샘플링레이트 (Hz)
    sample_rate: int = Field(default=16000, description="녹음 샘플링레이트 (Hz)")
    # 녹음 채널 수
    channels: int = Field(default=1, description="녹음 채널 수")
    # 녹음 비트뎁스 (PCM_16만 지원)
    bit_depth: int = Field(default=16, description="녹음 비트뎁스")
    # 청크 파일 회전 주기 (초, 기본 10분)
    chunk_duration_sec: float = Field(default=600.0, description="청크 회전 주기 (초)")
    # 회전 필요 여부 점검 주기 (초)
    check_interval_sec: float = Field(default=1.0, description="회전 점검 주기 (초)")
    # 청크 파일 저장 디렉토리 (비어있으면 시스템 임시 디렉토리)
    output_dir: str = Field(default="", description="청크 저장 디렉토리")
    # 청크별 전사 최대 시도 횟수
    chunk_max_attempts: int = Field(default=3, description="청크별 최대 시도 횟수")

    @field_validator("bit_depth")
    @classmethod
    def validate_bit_depth(cls, value: int) -> int:
        """녹음 비트뎁스가 16인지 검증합니다."""
        if value != 16:
            error_message = f"bit_depth는 16만 지원합니다. 입력값: {value}"
            raise ValueError(error_message)
        return value

    @field_validator("chunk_duration_sec", "check_interval_sec")
    @classmethod
    def validate_positive_seconds(cls, value: float) -> float:
        """주기 값이 0보다 큰지 검증합니다."""
        if value <= 0:
            error_message = f"주기 값은 0보다 커야 합니다. 입력값: {value}"
            raise ValueError(error_message)
        return value


# =============================================================================
# 최상위 AppConfig: 모든 섹션을 통합하는 루트 모델
# =============================================================================

class AppConfig(BaseModel):
    """
    애플리케이션 전체 설정을 통합하는 최상위 모델입니다.

    역할:
    - config.yaml의 모든 섹션을 하나의 타입 안전한 객체로 통합
    - 각 섹션이 누락된 경우 기본값으로 자동 생성
    - 섹션 간 제약(오버랩 < 최소 무음 길이 등) 검증

    사용 예시:
        >>> config = AppConfig(**{"stt": {"mode": "api"}})
        >>> print(config.stt.mode)
        'api'
        >>> print(config.audio.max_chunk_bytes)
        20971520
    """
    # 시스템 전역 설정
    system: SystemConfig = Field(default_factory=SystemConfig, description="시스템 설정")
    # 청크 분할 및 VAD 설정
    audio: AudioConfig = Field(default_factory=AudioConfig, description="오디오 설정")
    # 음성 인식 설정
    stt: STTConfig = Field(default_factory=STTConfig, description="STT 설정")
    # 녹음 세션 설정
    recording: RecordingConfig = Field(default_factory=RecordingConfig, description="녹음 설정")

    @model_validator(mode="after")
    def warn_overlap_longer_than_silence(self) -> "AppConfig":
        """오버랩이 최소 무음 길이의 절반을 넘으면 경고합니다."""
        vad = self.audio.vad
        if vad.chunk_overlap_ms * 2 > vad.min_silence_duration_ms:
            logger.warning(
                f"chunk_overlap_ms({vad.chunk_overlap_ms})가 최소 무음 길이"
                f"({vad.min_silence_duration_ms})의 절반보다 큽니다. "
                f"오버랩이 음성 구간까지 확장될 수 있습니다"
            )
        return self
