"""
전사 제공자 팩토리 모듈입니다.

역할:
- stt.mode 설정에 따라 제공자 생성
  - local: 로컬 Whisper
  - api: OpenAI Whisper API (API 키 필수)
  - auto: 로컬 우선, 로컬 실패 시 API로 대체 (API 키가 있을 때만)
- API 키는 설정값 또는 OPENAI_API_KEY 환경변수에서 조회

사용 예시:
    >>> provider = TranscriptionFactory.create(config)
    >>> text = await provider.transcribe_file("meeting.wav")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from src.config.schema import AppConfig
from src.stt.errors import ErrorCode, TranscriptionError
from src.stt.local_whisper import LocalWhisperProvider, RecognizerFactory
from src.stt.model_manager import ModelManager
from src.stt.openai_whisper import OpenAIWhisperProvider, resolve_api_key
from src.stt.provider import TranscriptionProvider

logger = logging.getLogger(__name__)


class AutoFallbackProvider(TranscriptionProvider):
    """
    로컬 제공자를 먼저 시도하고 실패하면 API 제공자로 대체하는 제공자입니다.

    파일이 없는 경우(FILE_NOT_FOUND)는 어느 제공자로도 복구할 수 없으므로 대체하지 않습니다.

    파라미터:
        config: 전체 애플리케이션 설정 객체
        local_provider: 우선 사용할 로컬 제공자
        api_provider: 대체 제공자 (None이면 대체 없이 로컬 에러 전파)
    """

    name = "auto"

    def __init__(
        self,
        config: AppConfig,
        local_provider: TranscriptionProvider,
        api_provider: Optional[TranscriptionProvider] = None,
    ) -> None:
        super().__init__(config)
        self._local_provider = local_provider
        self._api_provider = api_provider

    def set_vocabulary(self, vocabulary: list[str]) -> None:
        super().set_vocabulary(vocabulary)
        self._local_provider.set_vocabulary(vocabulary)
        if self._api_provider is not None:
            self._api_provider.set_vocabulary(vocabulary)

    async def transcribe_file(self, path: str | Path) -> str:
        try:
            return await self._local_provider.transcribe_file(path)
        except TranscriptionError as exc:
            if not self._should_fallback(exc):
                raise
            logger.warning(f"로컬 전사 실패, API로 대체: {exc}")
            return await self._api_provider.transcribe_file(path)

    async def transcribe_buffer(self, data: bytes, filename: str = "audio.wav") -> str:
        try:
            return await self._local_provider.transcribe_buffer(data, filename)
        except TranscriptionError as exc:
            if not self._should_fallback(exc):
                raise
            logger.warning(f"로컬 전사 실패, API로 대체: {exc}")
            return await self._api_provider.transcribe_buffer(data, filename)

    async def _transcribe_single(self, data: bytes, filename: str) -> str:
        return await self.transcribe_buffer(data, filename)

    def _should_fallback(self, error: TranscriptionError) -> bool:
        return self._api_provider is not None and error.code != ErrorCode.FILE_NOT_FOUND


class TranscriptionFactory:
    """설정에 맞는 전사 제공자를 생성하는 팩토리입니다."""

    @staticmethod
    def create(
        config: AppConfig,
        api_key: Optional[str] = None,
        model_manager: Optional[ModelManager] = None,
        openai_client: Optional[Any] = None,
        recognizer_factory: Optional[RecognizerFactory] = None,
    ) -> TranscriptionProvider:
        """
        stt.mode에 따라 전사 제공자를 생성합니다.

        파라미터:
            config: 전체 애플리케이션 설정 객체
            api_key: OpenAI API 키 (None이면 설정 또는 환경변수에서 조회)
            model_manager: 로컬 모델 관리자 (None이면 stt.local.models_dir로 생성)
            openai_client: 주입할 AsyncOpenAI 호환 클라이언트
            recognizer_factory: 로컬 인식기 생성 함수

        반환값:
            TranscriptionProvider: 생성된 제공자

        에러:
            TranscriptionError: api 모드인데 API 키가 없는 경우 (복구 불가)
        """
        mode = config.stt.mode
        resolved_key = api_key or resolve_api_key(config)
        has_api_access = bool(resolved_key) or openai_client is not None

        if mode == "api":
            if not has_api_access:
                raise TranscriptionError(
                    "API 전사 모드에는 OpenAI API 키가 필요합니다",
                    code=ErrorCode.FAILED,
                    recoverable=False,
                )
            logger.info("전사 제공자 생성: api")
            return OpenAIWhisperProvider(config, client=openai_client, api_key=resolved_key)

        manager = model_manager or ModelManager(config.stt.local.models_dir)
        local_provider = LocalWhisperProvider(config, manager, recognizer_factory=recognizer_factory)

        if mode == "local":
            logger.info("전사 제공자 생성: local")
            return local_provider

        api_provider: Optional[OpenAIWhisperProvider] = None
        if has_api_access:
            api_provider = OpenAIWhisperProvider(config, client=openai_client, api_key=resolved_key)
        logger.info(f"전사 제공자 생성: auto (API 대체 {'사용' if api_provider else '없음'})")
        return AutoFallbackProvider(config, local_provider, api_provider)

    @staticmethod
    def is_local_available(config: AppConfig, model_manager: Optional[ModelManager] = None) -> bool:
        """설정된 로컬 모델이 이미 다운로드되어 있는지 확인합니다."""
        manager = model_manager or ModelManager(config.stt.local.models_dir)
        return manager.is_model_downloaded(config.stt.local.model)
