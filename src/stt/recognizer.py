"""
로컬 음성 인식기 래퍼 모듈입니다.

역할:
- faster-whisper WhisperModel을 로드하여 WAV 파일 경로를 텍스트로 변환
- 세그먼트 텍스트를 공백으로 이어 붙여 하나의 문자열로 반환

사용 예시:
    >>> recognizer = FasterWhisperRecognizer("/models/base", device="cpu", compute_type="int8")
    >>> text = recognizer.transcribe("chunk.wav", language="ko", initial_prompt="스프린트, 백로그")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol

from faster_whisper import WhisperModel

logger = logging.getLogger(__name__)


class Recognizer(Protocol):
    """경로로 주어진 WAV 파일을 전사하는 인식기 인터페이스입니다."""

    def transcribe(
        self,
        audio_path: str,
        language: Optional[str] = None,
        initial_prompt: Optional[str] = None,
    ) -> str:
        ...


class FasterWhisperRecognizer:
    """
    faster-whisper 기반 로컬 인식기입니다.

    모델 로드는 수 초가 걸리므로 인스턴스를 재사용해야 합니다.
    transcribe()는 블로킹 호출이므로 이벤트 루프에서는 스레드로 실행합니다.

    파라미터:
        model_path: CTranslate2 모델 디렉토리
        device: 추론 디바이스 (cpu | cuda | auto)
        compute_type: 연산 타입 (int8 | float16 | float32)
        beam_size: 빔 서치 크기
    """

    def __init__(
        self,
        model_path: str | Path,
        device: str = "cpu",
        compute_type: str = "int8",
        beam_size: int = 5,
    ) -> None:
        self._beam_size = max(1, beam_size)
        logger.info(f"faster-whisper 모델 로드: {model_path} (device={device}, compute_type={compute_type})")
        self._model = WhisperModel(str(model_path), device=device, compute_type=compute_type)

    def transcribe(
        self,
        audio_path: str,
        language: Optional[str] = None,
        initial_prompt: Optional[str] = None,
    ) -> str:
        segments, info = self._model.transcribe(
            audio_path,
            language=language or None,
            beam_size=self._beam_size,
            initial_prompt=initial_prompt or None,
            condition_on_previous_text=False,
        )
        parts = [segment.text.strip() for segment in segments if segment.text.strip()]
        logger.debug(
            f"로컬 인식 완료: language={info.language}, duration={info.duration:.1f}s, "
            f"{len(parts)}개 세그먼트"
        )
        return " ".join(parts)
