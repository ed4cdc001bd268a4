"""
로컬 Whisper 전사 제공자 모듈입니다.

역할:
- 주입받은 ModelManager로 모델 존재 확인 및 (설정 시) 자동 다운로드
- 인식기(faster-whisper)를 최초 사용 시 한 번만 로드하여 인스턴스에 보관
- 인식기가 파일 경로를 요구하므로 청크마다 임시 WAV 파일을 만들고 반드시 삭제
- 어휘 힌트를 initial_prompt로 전달

사용 예시:
    >>> manager = ModelManager(config.stt.local.models_dir)
    >>> provider = LocalWhisperProvider(config, manager)
    >>> text = await provider.transcribe_file("meeting.wav")
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Optional

from src.config.schema import AppConfig, LocalSTTConfig
from src.stt.errors import ErrorCode, TranscriptionError
from src.stt.model_manager import ModelDownloadError, ModelManager
from src.stt.provider import TranscriptionProvider
from src.stt.recognizer import FasterWhisperRecognizer, Recognizer

logger = logging.getLogger(__name__)

# 임시 WAV 파일 이름 접두사
SCRATCH_FILE_PREFIX = "mch-whisper-"

# (모델 디렉토리, 로컬 설정) -> 인식기
RecognizerFactory = Callable[[Path, LocalSTTConfig], Recognizer]


def _default_recognizer_factory(model_path: Path, local_cfg: LocalSTTConfig) -> Recognizer:
    return FasterWhisperRecognizer(
        model_path,
        device=local_cfg.device,
        compute_type=local_cfg.compute_type,
        beam_size=local_cfg.beam_size,
    )


class LocalWhisperProvider(TranscriptionProvider):
    """
    로컬 Whisper 모델 기반 전사 제공자입니다.

    파라미터:
        config: 전체 애플리케이션 설정 객체
        model_manager: 모델 파일 관리자
        recognizer_factory: 모델 경로로 인식기를 만드는 함수 (테스트에서 교체)
    """

    name = "local"

    def __init__(
        self,
        config: AppConfig,
        model_manager: ModelManager,
        recognizer_factory: Optional[RecognizerFactory] = None,
    ) -> None:
        super().__init__(config)
        self._local_cfg = config.stt.local
        self._model_name = config.stt.local.model
        self._language = config.stt.language
        self._model_manager = model_manager
        self._recognizer_factory = recognizer_factory or _default_recognizer_factory
        self._recognizer: Optional[Recognizer] = None
        self._load_lock = asyncio.Lock()
        # 다운로드 진행률 로그를 10% 단위로만 남기기 위한 마지막 기록값
        self._last_logged_percent = -1

        logger.info(
            f"LocalWhisperProvider 초기화: model={self._model_name}, "
            f"auto_download={self._local_cfg.auto_download}, "
            f"models_dir={model_manager.get_models_dir()}"
        )

    # =========================================================================
    # 공개 인터페이스
    # =========================================================================

    def is_model_ready(self) -> bool:
        """설정된 모델이 다운로드되어 있는지 확인합니다."""
        return self._model_manager.is_model_downloaded(self._model_name)

    def get_model_info(self) -> dict:
        """현재 모델 이름, 경로, 다운로드/로드 상태를 반환합니다."""
        return {
            "model": self._model_name,
            "path": str(self._model_manager.get_model_path(self._model_name)),
            "downloaded": self.is_model_ready(),
            "loaded": self._recognizer is not None,
        }

    async def ensure_model(self) -> Path:
        """
        모델이 준비되어 있는지 확인하고, 없으면 설정에 따라 다운로드합니다.

        반환값:
            Path: 모델 디렉토리 경로

        에러:
            TranscriptionError: 모델이 없고 자동 다운로드가 꺼져 있는 경우 (복구 불가),
                다운로드에 실패한 경우 (복구 가능)
        """
        if self._model_manager.is_model_downloaded(self._model_name):
            return self._model_manager.get_model_path(self._model_name)

        if not self._local_cfg.auto_download:
            raise TranscriptionError(
                f"로컬 모델 '{self._model_name}'이(가) 없고 자동 다운로드가 비활성화되어 있습니다",
                code=ErrorCode.FAILED,
                recoverable=False,
            )

        logger.info(f"로컬 모델 '{self._model_name}' 다운로드 시작")
        self._last_logged_percent = -1
        try:
            return await asyncio.to_thread(
                self._model_manager.download_model,
                self._model_name,
                self._log_download_progress,
            )
        except ModelDownloadError as exc:
            raise TranscriptionError(
                f"로컬 모델 다운로드 실패: {exc}",
                code=ErrorCode.FAILED,
                recoverable=True,
                original_error=exc,
            ) from exc

    # =========================================================================
    # 기본 클래스 확장 지점
    # =========================================================================

    async def _prepare(self) -> None:
        """인식기가 없으면 모델을 준비하고 한 번만 로드합니다."""
        if self._recognizer is not None:
            return

        async with self._load_lock:
            if self._recognizer is not None:
                return
            model_path = await self.ensure_model()
            try:
                self._recognizer = await asyncio.to_thread(
                    self._recognizer_factory, model_path, self._local_cfg
                )
            except Exception as exc:
                raise TranscriptionError(
                    f"로컬 인식기 로드 실패: {exc}",
                    code=ErrorCode.FAILED,
                    recoverable=False,
                    original_error=exc,
                ) from exc
            logger.info(f"로컬 인식기 로드 완료: {model_path}")

    async def _transcribe_single(self, data: bytes, filename: str) -> str:
        """임시 WAV 파일을 만들어 로컬 인식기로 전사하고 파일을 삭제합니다."""
        await self._prepare()
        recognizer = self._recognizer

        # 쓰기 시작 전에 경로를 확보 (쓰기 도중 취소되어도 finally에서 삭제)
        scratch_path = _create_scratch_file()
        try:
            await asyncio.to_thread(_write_scratch_file, scratch_path, data)
            text = await asyncio.to_thread(
                recognizer.transcribe,
                scratch_path,
                self._language or None,
                ", ".join(self._vocabulary) or None,
            )
        finally:
            _remove_scratch_file(scratch_path)

        logger.debug(f"로컬 전사 완료: {filename}, {len(data)}바이트 → {len(text)}자")
        return text.strip()

    # =========================================================================
    # 내부 메서드
    # =========================================================================

    def _log_download_progress(self, downloaded_bytes: int, total_bytes: int) -> None:
        if total_bytes <= 0:
            return
        percent = min(100, downloaded_bytes * 100 // total_bytes)
        if percent // 10 > self._last_logged_percent // 10:
            self._last_logged_percent = percent
            logger.info(
                f"모델 다운로드 진행: {percent}% "
                f"({downloaded_bytes / 1_000_000:.1f}MB / {total_bytes / 1_000_000:.1f}MB)"
            )


# =============================================================================
# 모듈 레벨 헬퍼 함수
# =============================================================================

def _create_scratch_file() -> str:
    """비어있는 임시 WAV 파일을 만들고 경로를 반환합니다."""
    file_descriptor, path = tempfile.mkstemp(prefix=SCRATCH_FILE_PREFIX, suffix=".wav")
    os.close(file_descriptor)
    return path


def _write_scratch_file(path: str, data: bytes) -> None:
    with open(path, "wb") as scratch_file:
        scratch_file.write(data)


def _remove_scratch_file(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning(f"임시 파일 삭제 실패: {path} ({exc})")
