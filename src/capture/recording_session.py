"""
녹음 세션 모듈입니다.

역할:
- 캡처된 PCM 프레임을 일정 주기(chunk_duration_sec)마다 새 WAV 청크 파일로 나누어 저장
- 회전 필요 여부는 순수 함수(should_rotate)로 판단하고, asyncio 타이머 태스크가 주기적으로 점검
- asyncio.Queue로 들어오는 PCM 바이트를 소비하여 기록 (None 수신 시 종료)
- 녹음 종료 후 청크 파일 목록을 전사 제공자에 넘겨 청크별 독립 전사

사용 예시:
    >>> session = RecordingSession(config, provider)
    >>> session.start()
    >>> session.start_rotation_timer()
    >>> await session.consume(audio_queue)
    >>> await session.stop()
    >>> result = await session.transcribe()
    >>> session.cleanup()
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import soundfile as sf

from src.config.schema import AppConfig
from src.stt import TranscriptionResult
from src.stt.provider import TranscriptionProvider

logger = logging.getLogger(__name__)

# 청크 파일 이름 형식
CHUNK_FILENAME_FORMAT = "mch-rec-{session_id}-{index:04d}.wav"

# 16bit PCM 샘플 크기 (바이트)
_SAMPLE_WIDTH_BYTES = 2


def should_rotate(elapsed_sec: float, chunk_duration_sec: float) -> bool:
    """현재 청크의 경과 시간이 회전 주기에 도달했는지 판단합니다."""
    return elapsed_sec >= chunk_duration_sec


class RecordingSession:
    """
    PCM 스트림을 시간 단위 WAV 청크 파일로 저장하는 녹음 세션입니다.

    청크 파일은 각각 독립적으로 유효한 16bit PCM WAV이며,
    회전 시점에는 진행 중인 파일을 닫고 다음 순번의 파일을 엽니다.

    파라미터:
        config: 전체 애플리케이션 설정 객체
        provider: 녹음 종료 후 청크를 전사할 제공자
        clock: 단조 증가 시계 함수 (테스트에서 교체)
    """

    def __init__(
        self,
        config: AppConfig,
        provider: TranscriptionProvider,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rec_cfg = config.recording
        self._provider = provider
        self._clock = clock
        self._session_id = config.system.session_id or uuid.uuid4().hex[:8]

        output_dir = self._rec_cfg.output_dir or tempfile.gettempdir()
        self._output_dir = Path(output_dir).expanduser()
        self._frame_size = self._rec_cfg.channels * _SAMPLE_WIDTH_BYTES

        self._chunk_paths: list[str] = []
        self._current_file: Optional[sf.SoundFile] = None
        self._chunk_started_at: float = 0.0
        # 프레임 단위로 나누어 떨어지지 않은 나머지 바이트
        self._pending: bytes = b""
        self._timer_task: Optional[asyncio.Task] = None

        logger.info(
            f"RecordingSession 초기화: session={self._session_id}, "
            f"{self._rec_cfg.sample_rate}Hz/{self._rec_cfg.channels}ch, "
            f"회전 주기={self._rec_cfg.chunk_duration_sec}초, 저장 위치={self._output_dir}"
        )

    # =========================================================================
    # 공개 인터페이스
    # =========================================================================

    @property
    def is_recording(self) -> bool:
        return self._current_file is not None

    @property
    def chunk_count(self) -> int:
        return len(self._chunk_paths)

    @property
    def session_id(self) -> str:
        return self._session_id

    def get_chunk_paths(self) -> list[str]:
        """지금까지 생성된 청크 파일 경로 목록(녹음 순서)을 반환합니다."""
        return list(self._chunk_paths)

    def start(self) -> None:
        """
        첫 번째 청크 파일을 열고 녹음을 시작합니다.

        이미 녹음 중이면 경고 로그를 출력하고 반환합니다.
        """
        if self.is_recording:
            logger.warning("RecordingSession이 이미 녹음 중입니다")
            return

        self._output_dir.mkdir(parents=True, exist_ok=True)
        self._open_next_chunk()
        logger.info(f"녹음 시작: {self._chunk_paths[-1]}")

    def write(self, pcm: bytes) -> int:
        """
        16bit PCM 바이트를 현재 청크 파일에 기록합니다.

        프레임 크기로 나누어 떨어지지 않는 나머지 바이트는 다음 호출까지 보관합니다.

        파라미터:
            pcm: 인터리브된 16bit little-endian PCM 바이트

        반환값:
            int: 기록된 프레임 수

        에러:
            RuntimeError: 녹음 중이 아닌 경우
        """
        if self._current_file is None:
            raise RuntimeError("녹음 중이 아닙니다. start()를 먼저 호출하세요")

        data = self._pending + pcm
        usable = len(data) - len(data) % self._frame_size
        self._pending = data[usable:]
        if usable == 0:
            return 0

        samples = np.frombuffer(data[:usable], dtype="<i2")
        if self._rec_cfg.channels > 1:
            samples = samples.reshape(-1, self._rec_cfg.channels)
        self._current_file.write(samples)
        return usable // self._frame_size

    def check_rotation(self, now: Optional[float] = None) -> bool:
        """
        회전 주기에 도달했으면 현재 청크를 닫고 새 청크를 엽니다.

        파라미터:
            now: 현재 시각 (None이면 clock() 사용)

        반환값:
            bool: 회전했으면 True
        """
        if self._current_file is None:
            return False

        current_time = self._clock() if now is None else now
        elapsed_sec = current_time - self._chunk_started_at
        if not should_rotate(elapsed_sec, self._rec_cfg.chunk_duration_sec):
            return False

        self._close_current_chunk()
        self._open_next_chunk(started_at=current_time)
        logger.info(f"청크 회전: {elapsed_sec:.1f}초 경과, 새 청크 {self.chunk_count}번 시작")
        return True

    def start_rotation_timer(self) -> asyncio.Task:
        """check_interval_sec마다 check_rotation()을 호출하는 asyncio 태스크를 시작합니다."""
        if self._timer_task is not None and not self._timer_task.done():
            return self._timer_task
        self._timer_task = asyncio.create_task(
            self._rotation_loop(), name="recording_rotation_timer"
        )
        return self._timer_task

    async def consume(self, audio_queue: asyncio.Queue[Optional[bytes]]) -> None:
        """큐에서 PCM 바이트를 꺼내 기록합니다. None을 받으면 종료합니다."""
        while True:
            pcm = await audio_queue.get()
            try:
                if pcm is None:
                    logger.debug("오디오 큐 종료 신호 수신")
                    return
                self.write(pcm)
            finally:
                audio_queue.task_done()

    async def stop(self) -> list[str]:
        """
        회전 타이머를 취소하고 현재 청크 파일을 닫습니다.

        반환값:
            list[str]: 생성된 청크 파일 경로 목록
        """
        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
        self._timer_task = None

        if self._pending:
            logger.debug(f"불완전한 프레임 {len(self._pending)}바이트 버림")
            self._pending = b""

        if self._current_file is not None:
            self._close_current_chunk()
            logger.info(f"녹음 중지: 청크 {self.chunk_count}개")

        return self.get_chunk_paths()

    async def transcribe(self, chunk_paths: Optional[list[str]] = None) -> TranscriptionResult:
        """청크 파일들을 제공자로 전사합니다. 경로를 생략하면 이 세션의 청크를 사용합니다."""
        paths = self.get_chunk_paths() if chunk_paths is None else list(chunk_paths)
        return await self._provider.transcribe_chunks(paths)

    def cleanup(self, chunk_paths: Optional[list[str]] = None) -> int:
        """
        청크 파일을 삭제합니다. 이미 없는 파일은 무시합니다.

        반환값:
            int: 실제로 삭제한 파일 수
        """
        paths = self.get_chunk_paths() if chunk_paths is None else list(chunk_paths)
        removed = 0
        for path in paths:
            try:
                os.unlink(path)
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning(f"청크 파일 삭제 실패: {path} ({exc})")
        logger.info(f"청크 파일 정리: {removed}/{len(paths)}개 삭제")
        return removed

    # =========================================================================
    # 내부 메서드
    # =========================================================================

    async def _rotation_loop(self) -> None:
        interval = self._rec_cfg.check_interval_sec
        while self.is_recording:
            await asyncio.sleep(interval)
            self.check_rotation()

    def _open_next_chunk(self, started_at: Optional[float] = None) -> None:
        filename = CHUNK_FILENAME_FORMAT.format(
            session_id=self._session_id, index=len(self._chunk_paths)
        )
        chunk_path = self._output_dir / filename
        self._current_file = sf.SoundFile(
            str(chunk_path),
            mode="w",
            samplerate=self._rec_cfg.sample_rate,
            channels=self._rec_cfg.channels,
            subtype="PCM_16",
            format="WAV",
        )
        self._chunk_paths.append(str(chunk_path))
        self._chunk_started_at = self._clock() if started_at is None else started_at

    def _close_current_chunk(self) -> None:
        current_file = self._current_file
        self._current_file = None
        if current_file is not None:
            current_file.close()
