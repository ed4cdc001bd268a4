"""
Meeting-Chunk-Transcriber 설정 관리 모듈입니다.

역할:
- YAML 설정 파일을 로드하고 Pydantic 스키마로 유효성 검증
- 환경변수 오버라이드 지원 (접두사: MCH_)
- dot-notation 기반 설정값 조회 (예: "stt.api.model")

사용 예시:
    >>> manager = ConfigManager()
    >>> config = manager.load("config.yaml")
    >>> model = manager.get("stt.local.model")
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ValidationError

from src.config.schema import AppConfig

# 모듈 로거 설정
logger = logging.getLogger(__name__)

# 환경변수 오버라이드 접두사
ENV_PREFIX = "MCH_"


class ConfigLoadError(Exception):
    """설정 파일 로드 중 발생하는 에러의 기본 클래스입니다."""
    pass


class ConfigValidationError(ConfigLoadError):
    """설정 스키마 검증 실패 시 발생하는 에러입니다."""
    pass


class ConfigFileNotFoundError(ConfigLoadError):
    """설정 파일을 찾을 수 없을 때 발생하는 에러입니다."""
    pass


class ConfigManager:
    """
    YAML 설정 파일을 로드하고 관리하는 매니저 클래스입니다.

    역할:
    - YAML 파일 파싱 및 Pydantic 유효성 검증
    - 환경변수 오버라이드 (MCH_ 접두사)
    - dot-notation 설정값 조회

    사용 예시:
        >>> manager = ConfigManager()
        >>> config = manager.load("config.yaml")
        >>> print(manager.get("stt.api.model"))
        'whisper-1'
    """

    def __init__(self) -> None:
        """ConfigManager를 초기화합니다."""
        # 현재 활성 설정 객체 (로드 전에는 None)
        self._config: Optional[AppConfig] = None
        # 설정 파일 경로 (로드 시 설정됨)
        self._config_filepath: Optional[Path] = None
        # 설정 접근 시 스레드 안전성을 보장하기 위한 락
        self._lock: threading.RLock = threading.RLock()

        logger.debug("ConfigManager 인스턴스 생성 완료")

    @property
    def config(self) -> Optional[AppConfig]:
        """현재 활성 설정 객체를 반환합니다."""
        with self._lock:
            return self._config

    def load(self, filepath: str | Path) -> AppConfig:
        """
        YAML 설정 파일을 로드하고 Pydantic 스키마로 검증합니다.

        처리 순서:
        1. 파일 존재 여부 확인
        2. YAML 파싱
        3. 환경변수 오버라이드 적용
        4. Pydantic 스키마 검증
        5. 검증 통과 시 활성 설정으로 교체

        파라미터:
            filepath (str | Path): YAML 설정 파일 경로

        반환값:
            AppConfig: 검증 완료된 설정 객체

        에러:
            ConfigFileNotFoundError: 파일이 존재하지 않을 때
            ConfigValidationError: 스키마 검증 실패 시
            ConfigLoadError: YAML 파싱 실패 등 기타 에러
        """
        filepath = Path(filepath)
        logger.info(f"설정 파일 로드 시작: {filepath}")

        if not filepath.exists():
            error_message = f"설정 파일을 찾을 수 없습니다: {filepath}"
            logger.error(error_message)
            raise ConfigFileNotFoundError(error_message)

        try:
            raw_config = self._parse_yaml_file(filepath)
            logger.debug(f"YAML 파싱 완료: {len(raw_config)} 개 최상위 키")

            raw_config = self._apply_env_overrides(raw_config)

            validated_config = self._validate_config(raw_config)

            with self._lock:
                self._config = validated_config
                self._config_filepath = filepath

            logger.info(
                f"설정 로드 성공: "
                f"stt_mode={validated_config.stt.mode}, "
                f"language={validated_config.stt.language}, "
                f"max_chunk_bytes={validated_config.audio.max_chunk_bytes}"
            )
            return validated_config

        except ConfigLoadError:
            # ConfigLoadError 하위 클래스는 그대로 전파
            raise

        except Exception as unexpected_error:
            error_message = f"설정 로드 중 예상치 못한 에러: {unexpected_error}"
            logger.error(error_message, exc_info=True)
            raise ConfigLoadError(error_message) from unexpected_error

    def load_defaults(self) -> AppConfig:
        """
        설정 파일 없이 기본값과 환경변수 오버라이드만으로 설정을 구성합니다.

        반환값:
            AppConfig: 검증 완료된 설정 객체
        """
        raw_config = self._apply_env_overrides({})
        validated_config = self._validate_config(raw_config)
        with self._lock:
            self._config = validated_config
            self._config_filepath = None
        logger.info("기본 설정으로 초기화 완료")
        return validated_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        dot-notation으로 설정값을 조회합니다.

        파라미터:
            key (str): dot-notation 설정 키 (예: "stt.api.model", "audio.vad.chunk_overlap_ms")
            default (Any): 키가 존재하지 않을 때 반환할 기본값

        반환값:
            Any: 설정값 또는 기본값

        에러:
            RuntimeError: 설정이 로드되지 않은 상태에서 호출 시
        """
        with self._lock:
            if self._config is None:
                error_message = "설정이 아직 로드되지 않았습니다. load()를 먼저 호출하세요."
                logger.error(error_message)
                raise RuntimeError(error_message)

            current_value: Any = self._config
            for part in key.split("."):
                if isinstance(current_value, BaseModel) and part in type(current_value).model_fields:
                    current_value = getattr(current_value, part)
                elif isinstance(current_value, dict) and part in current_value:
                    current_value = current_value[part]
                else:
                    logger.debug(f"설정 키 '{key}'에서 '{part}' 부분을 찾을 수 없음, 기본값 반환")
                    return default

            return current_value

    def validate_schema(self, raw_config: dict) -> bool:
        """
        딕셔너리 데이터가 AppConfig 스키마를 만족하는지 검증합니다.

        파라미터:
            raw_config (dict): 검증할 설정 딕셔너리

        반환값:
            bool: 검증 통과 시 True, 실패 시 False
        """
        try:
            AppConfig(**raw_config)
            logger.debug("스키마 검증 통과")
            return True
        except ValidationError as validation_error:
            logger.warning(f"스키마 검증 실패: {validation_error}")
            return False

    # =========================================================================
    # 내부 메서드 (private)
    # =========================================================================

    def _parse_yaml_file(self, filepath: Path) -> dict:
        """
        YAML 파일을 읽어서 딕셔너리로 파싱합니다.

        에러:
            ConfigLoadError: 파일 읽기 또는 파싱 실패 시
        """
        try:
            with open(filepath, "r", encoding="utf-8") as config_file:
                raw_data = yaml.safe_load(config_file)

            if raw_data is None:
                logger.warning(f"설정 파일이 비어있습니다: {filepath}")
                return {}

            if not isinstance(raw_data, dict):
                error_message = f"설정 파일의 최상위 구조가 딕셔너리가 아닙니다: {type(raw_data)}"
                raise ConfigLoadError(error_message)

            return raw_data

        except yaml.YAMLError as yaml_error:
            error_message = f"YAML 파싱 에러: {yaml_error}"
            logger.error(error_message, exc_info=True)
            raise ConfigLoadError(error_message) from yaml_error

        except OSError as file_error:
            error_message = f"파일 읽기 에러: {file_error}"
            logger.error(error_message, exc_info=True)
            raise ConfigLoadError(error_message) from file_error

    def _apply_env_overrides(self, raw_config: dict) -> dict:
        """
        MCH_ 접두사 환경변수로 설정값을 오버라이드합니다.

        환경변수 이름은 스키마 구조를 따라 해석합니다. 언더스코어로 나눈 조각을
        앞에서부터 이어 붙이며 하위 모델 이름과 일치하면 한 단계 내려갑니다.
        - 예: MCH_STT_LANGUAGE -> stt.language
        - 예: MCH_STT_API_API_KEY -> stt.api.api_key
        - 예: MCH_AUDIO_VAD_CHUNK_OVERLAP_MS -> audio.vad.chunk_overlap_ms

        파라미터:
            raw_config (dict): 환경변수 적용 전 설정 딕셔너리

        반환값:
            dict: 환경변수가 적용된 설정 딕셔너리
        """
        override_count = 0

        for env_key, env_value in os.environ.items():
            if not env_key.startswith(ENV_PREFIX):
                continue

            tokens = env_key[len(ENV_PREFIX):].lower().split("_")
            config_path = _resolve_config_path(AppConfig, tokens)
            if config_path is None:
                logger.debug(f"환경변수 '{env_key}' 무시 (스키마에 없는 경로)")
                continue

            # 중간 섹션 딕셔너리를 필요에 따라 생성
            target = raw_config
            for section_name in config_path[:-1]:
                if not isinstance(target.get(section_name), dict):
                    target[section_name] = {}
                target = target[section_name]

            field_name = config_path[-1]
            converted_value = self._convert_env_value(env_value)
            target[field_name] = converted_value

            logger.info(
                f"환경변수 오버라이드: {env_key} -> "
                f"{'.'.join(config_path)} = "
                f"{'***' if 'key' in field_name else converted_value}"
            )
            override_count += 1

        if override_count > 0:
            logger.info(f"환경변수 오버라이드 적용 완료: {override_count}건")

        return raw_config

    def _convert_env_value(self, value: str) -> Any:
        """
        환경변수 문자열 값을 적절한 Python 타입으로 변환합니다.

        변환 규칙:
        - "true"/"false" (대소문자 무관) -> bool
        - 정수 형식 문자열 -> int
        - 부동소수점 형식 문자열 -> float
        - 쉼표가 포함된 문자열 -> list[str] (예: 어휘 힌트)
        - 그 외 -> str (원본 유지)
        """
        if value.lower() == "true":
            return True
        if value.lower() == "false":
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        if "," in value:
            return [item.strip() for item in value.split(",") if item.strip()]

        return value

    def _validate_config(self, raw_config: dict) -> AppConfig:
        """
        딕셔너리를 Pydantic AppConfig 모델로 검증하고 변환합니다.

        에러:
            ConfigValidationError: Pydantic 검증 실패 시
        """
        try:
            return AppConfig(**raw_config)

        except ValidationError as validation_error:
            error_details = validation_error.errors()
            for error_detail in error_details:
                field_path = " -> ".join(str(loc) for loc in error_detail["loc"])
                logger.error(
                    f"설정 검증 실패 - 필드: {field_path}, "
                    f"에러: {error_detail['msg']}, "
                    f"입력값: {error_detail.get('input', 'N/A')}"
                )

            error_message = f"설정 스키마 검증 실패: {len(error_details)}개 에러 발생"
            raise ConfigValidationError(error_message) from validation_error


# =============================================================================
# 모듈 레벨 헬퍼 함수
# =============================================================================

def _resolve_config_path(model: type[BaseModel], tokens: list[str]) -> Optional[list[str]]:
    """
    언더스코어로 분할된 환경변수 조각을 스키마 필드 경로로 변환합니다.

    하위 모델 필드가 먼저 일치하면 그 안으로 내려가고, 남은 조각 전체가
    일반 필드 이름과 일치하면 경로를 확정합니다.

    파라미터:
        model (type[BaseModel]): 탐색을 시작할 모델 클래스
        tokens (list[str]): 소문자 조각 목록

    반환값:
        Optional[list[str]]: 필드 경로. 일치하는 필드가 없으면 None
    """
    fields = model.model_fields
    remaining_name = "_".join(tokens)

    for split_index in range(1, len(tokens)):
        candidate = "_".join(tokens[:split_index])
        field_info = fields.get(candidate)
        if field_info is None:
            continue
        annotation = field_info.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            sub_path = _resolve_config_path(annotation, tokens[split_index:])
            if sub_path is not None:
                return [candidate] + sub_path

    if remaining_name in fields:
        return [remaining_name]
    return None
