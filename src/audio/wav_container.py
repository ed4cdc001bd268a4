"""
WAV(RIFF) 컨테이너 파서 모듈입니다.

역할:
- WAV 바이트 버퍼의 헤더를 검증하고 PCM 포맷 정보(WavMetadata)를 추출
- fmt/data 하위 청크를 순회하며 LIST 등 부가 청크를 건너뜀
- 분할된 청크에 붙일 표준 44바이트 PCM 헤더 생성

사용 예시:
    >>> metadata = parse_metadata(wav_bytes)
    >>> payload = wav_bytes[metadata.header_size:metadata.header_size + metadata.data_size]
    >>> chunk = build_wav(metadata, payload[:32000])
"""

from __future__ import annotations

import logging
import struct

from src.audio import WAV_HEADER_SIZE, WavMetadata

logger = logging.getLogger(__name__)

# 하위 청크 탐색 범위 상한 (바이트). 이 범위 안에 data 청크가 없으면 손상된 파일로 본다
MAX_HEADER_SCAN_BYTES = 64 * 1024

# 표준 44바이트 PCM 헤더 구조 (little-endian)
_HEADER_STRUCT = struct.Struct("<4sI4s4sIHHIIHH4sI")

# 하위 청크 헤더 구조: 4바이트 ID + 4바이트 크기
_SUBCHUNK_STRUCT = struct.Struct("<4sI")

# fmt 청크 본문 앞부분: format, channels, sample_rate, byte_rate, block_align, bits
_FMT_STRUCT = struct.Struct("<HHIIHH")

# WAVE_FORMAT_PCM, WAVE_FORMAT_EXTENSIBLE
_PCM_FORMAT_TAGS = (1, 0xFFFE)


class InvalidContainerError(ValueError):
    """WAV 컨테이너 구조가 올바르지 않을 때 발생하는 에러입니다. 재시도 대상이 아닙니다."""
    pass


# =============================================================================
# 공개 인터페이스
# =============================================================================

def parse_metadata(buffer: bytes) -> WavMetadata:
    """
    WAV 버퍼의 헤더를 파싱하여 PCM 포맷 정보를 반환합니다.

    처리 순서:
    1. 최소 길이(44바이트) 및 RIFF/WAVE 태그 검증
    2. 오프셋 12부터 하위 청크를 순회하며 fmt, data 청크 탐색
    3. fmt 청크가 없으면 표준 위치(22/24/34)에서 포맷 필드 읽기
    4. 선언된 data 크기가 실제 버퍼보다 크면 남은 바이트 수로 보정

    파라미터:
        buffer (bytes): WAV 파일 전체 바이트

    반환값:
        WavMetadata: 추출된 포맷 정보

    에러:
        InvalidContainerError: 헤더 구조가 손상되었거나 포맷 필드가 유효하지 않을 때
    """
    buffer_length = len(buffer)

    if buffer_length < WAV_HEADER_SIZE:
        raise InvalidContainerError(
            f"WAV 버퍼가 너무 짧습니다: {buffer_length}바이트 (최소 {WAV_HEADER_SIZE}바이트)"
        )

    if bytes(buffer[0:4]) != b"RIFF":
        raise InvalidContainerError("RIFF 헤더가 없습니다. WAV 파일이 아닙니다")

    if bytes(buffer[8:12]) != b"WAVE":
        raise InvalidContainerError("WAVE 포맷 태그가 없습니다. 지원하지 않는 컨테이너입니다")

    fmt_fields = None
    data_offset = None
    declared_data_size = 0

    scan_limit = min(buffer_length, MAX_HEADER_SCAN_BYTES)
    offset = 12
    while offset + _SUBCHUNK_STRUCT.size <= scan_limit:
        chunk_id, chunk_size = _SUBCHUNK_STRUCT.unpack_from(buffer, offset)
        body_offset = offset + _SUBCHUNK_STRUCT.size

        if chunk_id == b"fmt " and body_offset + _FMT_STRUCT.size <= buffer_length:
            fmt_fields = _FMT_STRUCT.unpack_from(buffer, body_offset)
        elif chunk_id == b"data":
            data_offset = body_offset
            declared_data_size = chunk_size
            break

        # RIFF 하위 청크는 2바이트 경계로 패딩된다
        offset = body_offset + chunk_size + (chunk_size & 1)

    if data_offset is None:
        raise InvalidContainerError(
            f"data 청크를 찾을 수 없습니다 (탐색 범위: {scan_limit}바이트)"
        )

    if fmt_fields is None:
        logger.debug("fmt 청크가 data 청크보다 앞에 없음, 표준 헤더 위치에서 포맷 필드 읽기")
        format_tag = 1
        channels, sample_rate = struct.unpack_from("<HI", buffer, 22)
        (bits_per_sample,) = struct.unpack_from("<H", buffer, 34)
    else:
        format_tag, channels, sample_rate, _byte_rate, _block_align, bits_per_sample = fmt_fields

    if channels <= 0 or sample_rate <= 0:
        raise InvalidContainerError(
            f"유효하지 않은 포맷 필드: channels={channels}, sample_rate={sample_rate}"
        )
    if bits_per_sample <= 0 or bits_per_sample % 8 != 0:
        raise InvalidContainerError(
            f"지원하지 않는 비트뎁스: {bits_per_sample} (8의 배수여야 합니다)"
        )
    if format_tag not in _PCM_FORMAT_TAGS:
        logger.warning(f"PCM이 아닌 포맷 태그: 0x{format_tag:04X}, 정수 PCM으로 간주하고 진행")

    available_size = buffer_length - data_offset
    data_size = declared_data_size
    if data_size > available_size:
        # 스트리밍 녹음은 헤더에 임시 크기를 기록하므로 실제 바이트 수로 보정
        logger.debug(
            f"선언된 data 크기({declared_data_size})가 실제 크기({available_size})보다 큼, 보정"
        )
        data_size = available_size

    return WavMetadata(
        sample_rate=sample_rate,
        channels=channels,
        bits_per_sample=bits_per_sample,
        data_size=data_size,
        header_size=data_offset,
    )


def build_header(metadata: WavMetadata, payload_size: int) -> bytes:
    """
    주어진 포맷과 페이로드 크기로 표준 44바이트 PCM WAV 헤더를 생성합니다.

    파라미터:
        metadata (WavMetadata): 샘플링레이트/채널/비트뎁스를 제공할 포맷 정보
        payload_size (int): 헤더 뒤에 붙을 PCM 바이트 수

    반환값:
        bytes: 44바이트 헤더
    """
    block_align = metadata.frame_size
    byte_rate = metadata.sample_rate * block_align
    return _HEADER_STRUCT.pack(
        b"RIFF",
        36 + payload_size,
        b"WAVE",
        b"fmt ",
        16,
        1,
        metadata.channels,
        metadata.sample_rate,
        byte_rate,
        block_align,
        metadata.bits_per_sample,
        b"data",
        payload_size,
    )


def build_wav(metadata: WavMetadata, payload: bytes) -> bytes:
    """헤더와 페이로드를 이어 붙여 독립적인 WAV 버퍼를 만듭니다."""
    return build_header(metadata, len(payload)) + bytes(payload)


def extract_payload(buffer: bytes, metadata: WavMetadata) -> bytes:
    """메타데이터가 가리키는 PCM 페이로드 구간을 잘라 반환합니다."""
    start = metadata.header_size
    return bytes(buffer[start:start + metadata.data_size])
