"""
크기 기반 WAV 분할 모듈입니다.

역할:
- 원격 STT API 요청 크기 리밋(24MiB)을 넘지 않도록 WAV 버퍼를 순차 분할
- 모든 분할 지점을 프레임 경계에 정렬하여 샘플이 쪼개지지 않도록 보장
- 각 청크에 새 44바이트 헤더를 붙여 독립적으로 디코딩 가능한 WAV로 생성

사용 예시:
    >>> if needs_split(len(wav_bytes)):
    ...     chunks = split_wav_buffer(wav_bytes)
"""

from __future__ import annotations

import logging
import math

from src.audio import WAV_HEADER_SIZE
from src.audio.wav_container import build_wav, parse_metadata
from src.config.schema import API_SIZE_LIMIT_BYTES, DEFAULT_MAX_CHUNK_BYTES

logger = logging.getLogger(__name__)

# 청크 분할 안전 상한선 (20MiB)
MAX_CHUNK_SIZE = DEFAULT_MAX_CHUNK_BYTES

# 원격 STT API 하드 리밋 (24MiB)
API_SIZE_LIMIT = API_SIZE_LIMIT_BYTES


def needs_split(total_byte_length: int, max_chunk_bytes: int = MAX_CHUNK_SIZE) -> bool:
    """버퍼 크기가 청크 상한선을 넘는지 판별합니다."""
    return total_byte_length > max_chunk_bytes


def estimate_chunk_count(total_byte_length: int, max_chunk_bytes: int = MAX_CHUNK_SIZE) -> int:
    """
    크기 기반 분할 시 예상되는 청크 수를 반환합니다.

    헤더 오버헤드를 무시한 근사값이므로 진행률 표시 용도로만 사용합니다.
    """
    if not needs_split(total_byte_length, max_chunk_bytes):
        return 1
    return math.ceil(total_byte_length / max_chunk_bytes)


def split_wav_buffer(buffer: bytes, max_chunk_bytes: int = MAX_CHUNK_SIZE) -> list[bytes]:
    """
    WAV 버퍼를 상한선 이하의 독립 WAV 청크들로 분할합니다.

    상한선 이하인 버퍼는 원본 그대로 단일 원소 리스트로 반환합니다.
    청크별 페이로드 크기는 (상한선 - 44)를 프레임 크기 배수로 내림한 값이며,
    마지막 청크는 더 작을 수 있습니다. 끝에 남은 불완전한 프레임은 버립니다.

    파라미터:
        buffer (bytes): 원본 WAV 바이트
        max_chunk_bytes (int): 청크 하나의 최대 크기 (헤더 포함)

    반환값:
        list[bytes]: 순서가 보존된 WAV 청크 목록

    에러:
        InvalidContainerError: 상한선을 넘는 버퍼의 헤더가 손상된 경우
        ValueError: 상한선이 헤더와 프레임 하나를 담기에도 작은 경우
    """
    if not needs_split(len(buffer), max_chunk_bytes):
        return [buffer]

    metadata = parse_metadata(buffer)
    frame_size = metadata.frame_size

    max_payload_per_chunk = (max_chunk_bytes - WAV_HEADER_SIZE) // frame_size * frame_size
    if max_payload_per_chunk <= 0:
        raise ValueError(
            f"max_chunk_bytes({max_chunk_bytes})가 너무 작아 프레임을 담을 수 없습니다 "
            f"(frame_size={frame_size})"
        )

    payload_start = metadata.header_size
    # 불완전한 마지막 프레임은 제외
    usable_payload_size = metadata.data_size // frame_size * frame_size
    payload_end = payload_start + usable_payload_size

    chunks: list[bytes] = []
    offset = payload_start
    while offset < payload_end:
        chunk_end = min(offset + max_payload_per_chunk, payload_end)
        chunks.append(build_wav(metadata, buffer[offset:chunk_end]))
        offset = chunk_end

    if not chunks:
        logger.warning("분할할 페이로드가 없어 원본 버퍼를 그대로 반환")
        return [buffer]

    logger.info(
        f"크기 기반 분할 완료: {len(buffer)}바이트 → {len(chunks)}개 청크 "
        f"(청크당 최대 페이로드 {max_payload_per_chunk}바이트)"
    )
    return chunks
