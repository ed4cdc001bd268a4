"""
OpenAI Whisper API 전사 제공자 모듈입니다.

역할:
- openai.AsyncOpenAI 클라이언트로 WAV 청크를 원격 전사
- 일시적 오류(요청 제한, 네트워크, 타임아웃, 5xx)는 exponential backoff로 재시도
- 어휘 힌트를 쉼표로 이어 prompt로 전달
- 요청 크기 초과(413) 응답 시 강제 분할 재시도 (기본 클래스 정책)

사용 예시:
    >>> provider = OpenAIWhisperProvider(config, api_key="sk-...")
    >>> text = await provider.transcribe_file("meeting.wav")
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

from openai import AsyncOpenAI

from src.config.schema import AppConfig
from src.stt.errors import ErrorCode, TranscriptionError
from src.stt.provider import TranscriptionProvider
from src.stt.retry import with_retry

logger = logging.getLogger(__name__)

# API 키 환경변수 이름
API_KEY_ENV = "OPENAI_API_KEY"


def resolve_api_key(config: AppConfig) -> str:
    """설정의 API 키를 우선 사용하고, 비어있으면 OPENAI_API_KEY 환경변수를 사용합니다."""
    return config.stt.api.api_key or os.environ.get(API_KEY_ENV, "")


class OpenAIWhisperProvider(TranscriptionProvider):
    """
    OpenAI Whisper API 기반 전사 제공자입니다.

    SDK 자체 재시도는 끄고(max_retries=0) 설정된 재시도 정책만 적용합니다.

    파라미터:
        config: 전체 애플리케이션 설정 객체
        client: 주입할 AsyncOpenAI 호환 클라이언트 (None이면 생성)
        api_key: API 키 (None이면 설정 또는 환경변수에서 조회)
    """

    name = "openai"
    supports_reactive_split = True

    def __init__(
        self,
        config: AppConfig,
        client: Optional[Any] = None,
        api_key: Optional[str] = None,
    ) -> None:
        super().__init__(config)
        self._api_cfg = config.stt.api
        self._model = config.stt.api.model
        self._language = config.stt.language

        if client is None:
            resolved_key = api_key or resolve_api_key(config)
            if not resolved_key:
                raise TranscriptionError(
                    "OpenAI API 키가 설정되지 않았습니다 (stt.api.api_key 또는 OPENAI_API_KEY)",
                    code=ErrorCode.FAILED,
                    recoverable=False,
                )
            client = AsyncOpenAI(
                api_key=resolved_key,
                timeout=self._api_cfg.timeout_sec,
                max_retries=0,
            )
        self._client = client

        logger.info(
            f"OpenAIWhisperProvider 초기화: model={self._model}, "
            f"language={self._language}, vocabulary={len(self._vocabulary)}개"
        )

    async def _transcribe_single(self, data: bytes, filename: str) -> str:
        """WAV 버퍼 하나를 재시도 정책에 따라 원격 전사합니다."""
        request_kwargs: dict[str, Any] = {
            "model": self._model,
            "file": (filename, data, "audio/wav"),
        }
        if self._language:
            request_kwargs["language"] = self._language
        if self._vocabulary:
            request_kwargs["prompt"] = ", ".join(self._vocabulary)

        async def _request() -> Any:
            return await self._client.audio.transcriptions.create(**request_kwargs)

        response = await with_retry(
            _request,
            self._stt_cfg.retry,
            label=f"OpenAI 전사({filename})",
        )
        text = _extract_text(response)
        logger.debug(f"OpenAI 전사 완료: {filename}, {len(data)}바이트 → {len(text)}자")
        return text


# =============================================================================
# 모듈 레벨 헬퍼 함수
# =============================================================================

def _extract_text(response: Any) -> str:
    """
    전사 응답에서 텍스트를 추출합니다.

    응답 형식(response_format)에 따라 문자열, text 속성을 가진 객체,
    또는 model_dump()를 지원하는 pydantic 모델이 올 수 있습니다.
    """
    if isinstance(response, str):
        return response.strip()
    text = getattr(response, "text", None)
    if isinstance(text, str):
        return text.strip()
    if hasattr(response, "model_dump"):
        maybe_text = response.model_dump().get("text")
        if isinstance(maybe_text, str):
            return maybe_text.strip()
    return str(response).strip()
