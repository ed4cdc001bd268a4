"""
음성 인식 제공자 공통 인터페이스 모듈입니다.

역할:
- 로컬/원격 제공자가 공유하는 전사 정책을 기본 클래스로 구현
  - 파일 존재 확인 후 버퍼 전사로 위임
  - 상한선을 넘는 버퍼는 사전 분할 후 청크를 순차 전사하고 병합 (전부 성공해야 성공)
  - 단일 요청이 크기 초과(413)로 거부되면 절반 상한선으로 강제 분할 후 재시도
  - 녹음 청크 파일 목록은 청크별로 독립 재시도하고 부분 실패를 허용
- 구현 클래스는 _transcribe_single()만 제공하면 됨

사용 예시:
    >>> provider = OpenAIWhisperProvider(config)
    >>> text = await provider.transcribe_file("meeting.wav")
    >>> result = await provider.transcribe_chunks(["rec-0.wav", "rec-1.wav"])
    >>> print(result.success_count, result.combined_text)
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from src.audio import WAV_HEADER_SIZE
from src.audio.size_splitter import needs_split
from src.audio.vad_splitter import plan_split
from src.audio.wav_container import InvalidContainerError
from src.config.schema import AppConfig
from src.stt import ChunkTranscriptionOutcome, TranscriptionResult
from src.stt.errors import ErrorCode, TranscriptionError, detect_error_code
from src.stt.retry import with_retry
from src.stt.transcript_merger import merge_transcriptions, merge_transcriptions_with_overlap

logger = logging.getLogger(__name__)

# 녹음 청크 전사 결과를 이어 붙일 때 사용하는 구분자
CHUNK_TEXT_SEPARATOR = "\n\n"


class TranscriptionProvider(ABC):
    """
    음성 인식 제공자의 기본 클래스입니다.

    하위 클래스 구현 항목:
    - _transcribe_single(data, filename): 상한선 이하 WAV 버퍼 하나를 전사
    - _prepare(): 전사 전 준비 작업 (모델 로드 등, 선택)
    - supports_reactive_split: 크기 초과 거부 시 강제 분할 재시도 여부

    파라미터:
        config (AppConfig): 전체 애플리케이션 설정 객체
    """

    # 로그 및 팩토리에서 사용하는 제공자 이름
    name: str = "base"
    # 크기 초과(413) 응답 시 강제 분할 후 재시도 여부
    supports_reactive_split: bool = False

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._stt_cfg = config.stt
        self._vocabulary: list[str] = list(config.stt.vocabulary)

    # =========================================================================
    # 공개 인터페이스
    # =========================================================================

    def set_vocabulary(self, vocabulary: list[str]) -> None:
        """인식 정확도 향상용 어휘 힌트를 교체합니다."""
        self._vocabulary = list(vocabulary)
        logger.info(f"[{self.name}] 어휘 힌트 갱신: {len(self._vocabulary)}개")

    def get_vocabulary(self) -> list[str]:
        """현재 어휘 힌트의 복사본을 반환합니다."""
        return list(self._vocabulary)

    async def transcribe_file(self, path: str | Path) -> str:
        """
        WAV 파일을 전사합니다.

        파라미터:
            path: WAV 파일 경로

        반환값:
            str: 전사된 텍스트

        에러:
            TranscriptionError: 파일이 없거나(FILE_NOT_FOUND, 복구 불가) 전사에 실패한 경우
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise TranscriptionError(
                f"오디오 파일을 찾을 수 없습니다: {file_path}",
                code=ErrorCode.FILE_NOT_FOUND,
                recoverable=False,
            )

        await self._prepare()
        data = await asyncio.to_thread(file_path.read_bytes)
        return await self.transcribe_buffer(data, filename=file_path.name)

    async def transcribe_buffer(self, data: bytes, filename: str = "audio.wav") -> str:
        """
        WAV 버퍼를 전사합니다.

        처리 순서:
        1. 준비 작업 (_prepare)
        2. 상한선 초과 시 분할 후 청크별 순차 전사 및 병합
        3. 상한선 이하면 단일 요청으로 전사
        4. 단일 요청이 크기 초과로 거부되면 절반 상한선으로 강제 분할 (지원 제공자만)

        파라미터:
            data: WAV 파일 전체 바이트
            filename: 원격 API에 전달할 파일 이름

        반환값:
            str: 전사된 텍스트

        에러:
            TranscriptionError: 전사 실패 시 (원인 예외는 original_error로 보존)
        """
        await self._prepare()

        max_chunk_bytes = self._config.audio.max_chunk_bytes
        if needs_split(len(data), max_chunk_bytes):
            logger.info(
                f"[{self.name}] 버퍼 크기 {len(data)}바이트가 상한선 {max_chunk_bytes}바이트 초과, 분할 전사"
            )
            return await self._transcribe_with_split(data, max_chunk_bytes)

        try:
            return await self._transcribe_single(data, filename)

        except TranscriptionError:
            raise

        except Exception as exc:
            if self.supports_reactive_split and detect_error_code(exc) == ErrorCode.FILE_TOO_LARGE:
                forced_max_bytes = len(data) // 2
                logger.warning(
                    f"[{self.name}] 요청 크기 초과로 거부됨, "
                    f"상한선 {forced_max_bytes}바이트로 강제 분할 후 재시도: {exc}"
                )
                return await self._transcribe_with_split(data, forced_max_bytes)

            raise TranscriptionError(
                f"전사 실패: {exc}",
                code=ErrorCode.FAILED,
                recoverable=True,
                original_error=exc,
            ) from exc

    async def transcribe_chunks(self, chunk_paths: list[str]) -> TranscriptionResult:
        """
        녹음 청크 파일들을 순서대로 전사하고 결과를 집계합니다.

        청크마다 독립적으로 재시도(recording.chunk_max_attempts)하며,
        실패한 청크가 있어도 나머지 청크는 계속 처리합니다.
        파일이 없거나 헤더만 있는 청크, 빈 결과를 낸 청크는 실패로 기록합니다.

        파라미터:
            chunk_paths: 청크 WAV 파일 경로 목록 (녹음 순서)

        반환값:
            TranscriptionResult: 성공한 텍스트를 빈 줄로 이어 붙인 결과와 청크별 상세

        에러:
            TranscriptionError: 청크가 없거나 모든 청크가 실패한 경우
        """
        if not chunk_paths:
            raise TranscriptionError(
                "전사할 녹음 청크가 없습니다",
                code=ErrorCode.FAILED,
                recoverable=False,
            )

        total_chunks = len(chunk_paths)
        outcomes: list[ChunkTranscriptionOutcome] = []
        for chunk_index, chunk_path in enumerate(chunk_paths):
            outcome = await self._transcribe_chunk_file(chunk_index, str(chunk_path), total_chunks)
            outcomes.append(outcome)

        success_texts = [outcome.text for outcome in outcomes if outcome.succeeded and outcome.text]
        success_count = len(success_texts)
        failed_count = total_chunks - success_count

        logger.info(
            f"[{self.name}] 녹음 청크 전사 완료: 성공 {success_count}/{total_chunks}, 실패 {failed_count}"
        )

        if success_count == 0:
            raise TranscriptionError(
                f"모든 녹음 청크 전사 실패 ({total_chunks}개)",
                code=ErrorCode.FAILED,
                recoverable=True,
            )

        return TranscriptionResult(
            combined_text=CHUNK_TEXT_SEPARATOR.join(success_texts),
            chunks=outcomes,
            success_count=success_count,
            failed_count=failed_count,
            total_chunks=total_chunks,
        )

    # =========================================================================
    # 하위 클래스 확장 지점
    # =========================================================================

    async def _prepare(self) -> None:
        """전사 전 준비 작업입니다. 기본 구현은 아무것도 하지 않습니다."""
        return None

    @abstractmethod
    async def _transcribe_single(self, data: bytes, filename: str) -> str:
        """상한선 이하의 WAV 버퍼 하나를 전사합니다."""

    # =========================================================================
    # 내부 메서드
    # =========================================================================

    async def _transcribe_with_split(self, data: bytes, max_chunk_bytes: int) -> str:
        """
        버퍼를 분할하여 청크를 순서대로 전사하고 분할 방식에 맞게 병합합니다.

        하나의 청크라도 실패하면 전체 호출이 실패합니다.
        오버랩이 있는 VAD 경계는 중복 제거 병합, 크기 분할 경계는 단순 연결을 사용합니다.
        """
        try:
            plan = plan_split(
                data,
                self._config.audio.vad,
                max_chunk_bytes,
                use_vad=self._stt_cfg.use_vad,
            )
        except (InvalidContainerError, ValueError) as exc:
            raise TranscriptionError(
                f"오디오 분할 실패: {exc}",
                code=ErrorCode.FAILED,
                recoverable=False,
                original_error=exc,
            ) from exc

        chunk_count = len(plan.chunks)
        logger.info(f"[{self.name}] {plan.method} 방식으로 {chunk_count}개 청크 분할, 순차 전사 시작")

        texts: list[str] = []
        for chunk_number, chunk in enumerate(plan.chunks, start=1):
            try:
                text = await self._transcribe_single(chunk, f"chunk-{chunk_number}.wav")
            except TranscriptionError:
                raise
            except Exception as exc:
                raise TranscriptionError(
                    f"청크 {chunk_number}/{chunk_count} 전사 실패: {exc}",
                    code=ErrorCode.FAILED,
                    recoverable=True,
                    original_error=exc,
                ) from exc
            texts.append(text)
            logger.debug(f"[{self.name}] 청크 {chunk_number}/{chunk_count} 전사 완료: {len(text)}자")

        if plan.has_overlap:
            return merge_transcriptions_with_overlap(texts, overlap_boundaries=plan.overlap_boundaries)
        return merge_transcriptions(texts)

    async def _transcribe_chunk_file(
        self,
        chunk_index: int,
        chunk_path: str,
        total_chunks: int,
    ) -> ChunkTranscriptionOutcome:
        """녹음 청크 파일 하나를 재시도 포함하여 전사하고 결과를 기록합니다. 예외를 전파하지 않습니다."""
        label = f"녹음 청크 {chunk_index + 1}/{total_chunks}"
        file_path = Path(chunk_path)

        if not file_path.is_file():
            logger.warning(f"{label} 파일 없음: {chunk_path}")
            return ChunkTranscriptionOutcome(
                chunk_index=chunk_index,
                chunk_path=chunk_path,
                succeeded=False,
                error="청크 파일을 찾을 수 없습니다",
                attempts=0,
            )

        if file_path.stat().st_size <= WAV_HEADER_SIZE:
            logger.warning(f"{label} 오디오 데이터 없음 (헤더만 존재): {chunk_path}")
            return ChunkTranscriptionOutcome(
                chunk_index=chunk_index,
                chunk_path=chunk_path,
                succeeded=False,
                error="청크에 오디오 데이터가 없습니다",
                attempts=0,
            )

        attempts = 0

        async def _attempt() -> str:
            nonlocal attempts
            attempts += 1
            return await self.transcribe_file(file_path)

        policy = self._stt_cfg.retry.model_copy(
            update={"max_attempts": self._config.recording.chunk_max_attempts}
        )

        try:
            text = await with_retry(
                _attempt,
                policy,
                should_retry=_is_recoverable,
                label=label,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"{label} 전사 실패 ({attempts}회 시도): {exc}")
            return ChunkTranscriptionOutcome(
                chunk_index=chunk_index,
                chunk_path=chunk_path,
                succeeded=False,
                error=str(exc),
                attempts=attempts,
            )

        text = text.strip()
        if not text:
            logger.warning(f"{label} 전사 결과가 비어있음")
            return ChunkTranscriptionOutcome(
                chunk_index=chunk_index,
                chunk_path=chunk_path,
                succeeded=False,
                error="전사 결과가 비어있습니다",
                attempts=attempts,
            )

        return ChunkTranscriptionOutcome(
            chunk_index=chunk_index,
            chunk_path=chunk_path,
            succeeded=True,
            text=text,
            attempts=attempts,
        )


def _is_recoverable(error: BaseException) -> bool:
    """녹음 청크 재시도 대상 판별: 복구 가능한 TranscriptionError만 재시도합니다."""
    return isinstance(error, TranscriptionError) and error.recoverable
