"""
TranscriptionProvider 공통 정책 단위 테스트 (녹음 청크 전사)

_transcribe_single만 AsyncMock으로 대체한 테스트용 제공자를 사용합니다.

검증 항목:
- 청크별 독립 전사, 성공 텍스트를 빈 줄로 연결
- 파일 없음 / 헤더만 있는 청크 / 빈 결과는 실패로 기록하고 나머지 계속 처리
- 복구 가능한 실패는 recording.chunk_max_attempts까지 재시도
- 모든 청크 실패 또는 청크 없음 → TranscriptionError
- 부분 성공 여부(is_partial)
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from src.audio import WavMetadata
from src.audio.wav_container import build_header, build_wav
from src.config.schema import AppConfig
from src.stt.errors import ErrorCode, TranscriptionError
from src.stt.provider import CHUNK_TEXT_SEPARATOR, TranscriptionProvider

_METADATA = WavMetadata(sample_rate=16000, channels=1, bits_per_sample=16, data_size=0)


class _FakeProvider(TranscriptionProvider):
    name = "fake"

    def __init__(self, config: AppConfig, responses) -> None:
        super().__init__(config)
        self.single = AsyncMock(side_effect=responses)

    async def _transcribe_single(self, data: bytes, filename: str) -> str:
        return await self.single(data, filename)


def _make_config(chunk_max_attempts: int = 3) -> AppConfig:
    return AppConfig(**{"recording": {"chunk_max_attempts": chunk_max_attempts}})


def _write_chunk(tmp_path, name: str, payload_size: int = 3200) -> str:
    path = tmp_path / name
    path.write_bytes(build_wav(_METADATA, b"\x01\x00" * (payload_size // 2)))
    return str(path)


# =============================================================================
# transcribe_chunks
# =============================================================================

@pytest.mark.asyncio
async def test_all_chunks_succeed(tmp_path):
    paths = [_write_chunk(tmp_path, f"rec-{i}.wav") for i in range(3)]
    provider = _FakeProvider(_make_config(), [" 첫 번째 ", "두 번째", "세 번째"])

    result = await provider.transcribe_chunks(paths)

    assert result.combined_text == CHUNK_TEXT_SEPARATOR.join(["첫 번째", "두 번째", "세 번째"])
    assert result.success_count == 3
    assert result.failed_count == 0
    assert result.total_chunks == 3
    assert not result.is_partial
    assert [outcome.chunk_index for outcome in result.chunks] == [0, 1, 2]
    assert all(outcome.attempts == 1 for outcome in result.chunks)


@pytest.mark.asyncio
async def test_missing_and_header_only_chunks_are_skipped(tmp_path):
    """없는 파일과 헤더만 있는 파일은 시도 없이 실패로 기록하고 나머지를 계속 처리합니다."""
    header_only = tmp_path / "rec-1.wav"
    header_only.write_bytes(build_header(_METADATA, 0))
    paths = [
        _write_chunk(tmp_path, "rec-0.wav"),
        str(header_only),
        str(tmp_path / "rec-2.wav"),
        _write_chunk(tmp_path, "rec-3.wav"),
    ]
    provider = _FakeProvider(_make_config(), ["앞부분", "뒷부분"])

    result = await provider.transcribe_chunks(paths)

    assert result.combined_text == "앞부분\n\n뒷부분"
    assert result.success_count == 2
    assert result.failed_count == 2
    assert result.is_partial
    assert result.chunks[1].succeeded is False and result.chunks[1].attempts == 0
    assert result.chunks[2].succeeded is False and result.chunks[2].attempts == 0
    assert provider.single.await_count == 2


@pytest.mark.asyncio
async def test_empty_result_is_recorded_as_failure(tmp_path):
    paths = [_write_chunk(tmp_path, "rec-0.wav"), _write_chunk(tmp_path, "rec-1.wav")]
    provider = _FakeProvider(_make_config(), ["   ", "내용"])

    result = await provider.transcribe_chunks(paths)

    assert result.combined_text == "내용"
    assert result.chunks[0].succeeded is False
    assert result.chunks[0].error == "전사 결과가 비어있습니다"


@pytest.mark.asyncio
async def test_recoverable_failure_is_retried_per_chunk(tmp_path):
    paths = [_write_chunk(tmp_path, "rec-0.wav")]
    provider = _FakeProvider(_make_config(), [RuntimeError("decoder hiccup"), "복구됨"])

    with patch("src.stt.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await provider.transcribe_chunks(paths)

    assert result.combined_text == "복구됨"
    assert result.chunks[0].attempts == 2
    mock_sleep.assert_awaited_once()


@pytest.mark.asyncio
async def test_chunk_retry_is_bounded(tmp_path):
    paths = [_write_chunk(tmp_path, "rec-0.wav"), _write_chunk(tmp_path, "rec-1.wav")]
    failures = [RuntimeError(f"fail {n}") for n in range(2)]
    provider = _FakeProvider(_make_config(chunk_max_attempts=2), failures + ["두 번째 청크"])

    with patch("src.stt.retry.asyncio.sleep", new_callable=AsyncMock):
        result = await provider.transcribe_chunks(paths)

    assert result.chunks[0].succeeded is False
    assert result.chunks[0].attempts == 2
    assert "fail 1" in result.chunks[0].error
    assert result.chunks[1].text == "두 번째 청크"


@pytest.mark.asyncio
async def test_all_chunks_failed_raises(tmp_path):
    paths = [str(tmp_path / "missing-0.wav"), str(tmp_path / "missing-1.wav")]
    provider = _FakeProvider(_make_config(), [])

    with pytest.raises(TranscriptionError) as exc_info:
        await provider.transcribe_chunks(paths)

    assert exc_info.value.code == ErrorCode.FAILED


@pytest.mark.asyncio
async def test_empty_chunk_list_raises():
    provider = _FakeProvider(_make_config(), [])

    with pytest.raises(TranscriptionError) as exc_info:
        await provider.transcribe_chunks([])

    assert exc_info.value.recoverable is False
