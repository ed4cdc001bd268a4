"""
VAD 기반 WAV 분할 모듈입니다.

역할:
- 무음 구간 중앙을 분할 지점으로 사용해 단어가 잘리지 않도록 WAV를 분할
- 각 분할 지점 양쪽으로 chunk_overlap_ms 만큼 청크를 겹쳐 경계 단어 누락 방지
- 분할 정책(plan_split): 상한선 이하면 그대로, VAD 실패 시 크기 기반 분할로 대체,
  VAD 청크가 여전히 크면 해당 청크만 추가로 크기 분할

사용 예시:
    >>> plan = plan_split(wav_bytes, config.audio.vad, config.audio.max_chunk_bytes)
    >>> print(plan.method, len(plan.chunks))
    vad 4
"""

from __future__ import annotations

import logging

from src.audio import SplitPlan
from src.audio.size_splitter import needs_split, split_wav_buffer
from src.audio.vad_filter import detect_silence_regions
from src.audio.wav_container import build_wav, extract_payload, parse_metadata
from src.config.schema import VadConfig

logger = logging.getLogger(__name__)


def split_by_vad(buffer: bytes, vad_config: VadConfig) -> list[bytes]:
    """
    무음 구간 중앙에서 WAV 버퍼를 분할합니다.

    처리 순서:
    1. 무음 구간 검출 (없으면 원본 버퍼 하나를 반환)
    2. 구간마다 floor((start + end) / 2) ms 를 바이트 오프셋으로 환산해 프레임 경계로 내림
    3. 현재 청크는 분할 지점 + 오버랩까지 포함 (페이로드 끝을 넘지 않음)
    4. 다음 청크는 분할 지점 - 오버랩부터 시작 (0 미만이면 0)
    5. 남은 페이로드를 프레임 단위로 잘라 마지막 청크로 추가

    길이가 0인 청크는 만들지 않으며, 유효한 청크가 하나도 없으면 원본을 반환합니다.

    파라미터:
        buffer (bytes): 원본 WAV 바이트
        vad_config (VadConfig): VAD 설정 (오버랩 길이 포함)

    반환값:
        list[bytes]: 순서가 보존된 WAV 청크 목록

    에러:
        InvalidContainerError: WAV 헤더가 손상된 경우
    """
    metadata = parse_metadata(buffer)
    payload = extract_payload(buffer, metadata)
    silences = detect_silence_regions(payload, metadata, vad_config)

    if not silences:
        logger.debug("무음 구간 없음, 원본 버퍼 반환")
        return [buffer]

    frame_size = metadata.frame_size
    bytes_per_ms = metadata.bytes_per_ms
    payload_length = len(payload)
    overlap_bytes = int(vad_config.chunk_overlap_ms * bytes_per_ms)

    chunks: list[bytes] = []
    chunk_start = 0

    for silence in silences:
        split_point = _align_down(int(silence.midpoint_ms * bytes_per_ms), frame_size)
        chunk_end = _align_down(min(split_point + overlap_bytes, payload_length), frame_size)

        if chunk_end <= chunk_start:
            continue

        chunks.append(build_wav(metadata, payload[chunk_start:chunk_end]))
        chunk_start = _align_down(max(0, split_point - overlap_bytes), frame_size)

    if chunk_start < payload_length:
        tail_end = chunk_start + _align_down(payload_length - chunk_start, frame_size)
        if tail_end > chunk_start:
            chunks.append(build_wav(metadata, payload[chunk_start:tail_end]))

    if not chunks:
        return [buffer]

    logger.info(
        f"VAD 분할 완료: 무음 구간 {len(silences)}개 → {len(chunks)}개 청크 "
        f"(overlap={vad_config.chunk_overlap_ms}ms)"
    )
    return chunks


def plan_split(
    buffer: bytes,
    vad_config: VadConfig,
    max_chunk_bytes: int,
    use_vad: bool = True,
) -> SplitPlan:
    """
    버퍼 크기와 VAD 결과에 따라 분할 방식을 결정하고 청크를 만듭니다.

    결정 규칙:
    - 상한선 이하: 분할하지 않음 (method="none")
    - VAD 비활성 또는 페이로드가 max_analysis_bytes 초과: 크기 기반 분할
    - VAD 결과가 청크 하나뿐: 크기 기반 분할로 대체
    - 그 외: VAD 청크를 사용하되 상한선을 넘는 청크만 제자리에서 크기 분할

    파라미터:
        buffer (bytes): 원본 WAV 바이트
        vad_config (VadConfig): VAD 설정
        max_chunk_bytes (int): 청크 하나의 최대 크기
        use_vad (bool): VAD 분할 시도 여부

    반환값:
        SplitPlan: 청크 목록과 사용된 분할 방식
    """
    if not needs_split(len(buffer), max_chunk_bytes):
        return SplitPlan(chunks=[buffer], method="none")

    if not use_vad:
        return SplitPlan(chunks=split_wav_buffer(buffer, max_chunk_bytes), method="size")

    if len(buffer) > vad_config.max_analysis_bytes:
        logger.info(
            f"버퍼가 VAD 분석 한도를 초과하여 크기 기반 분할 사용: "
            f"{len(buffer)} > {vad_config.max_analysis_bytes}바이트"
        )
        return SplitPlan(chunks=split_wav_buffer(buffer, max_chunk_bytes), method="size")

    vad_chunks = split_by_vad(buffer, vad_config)
    if len(vad_chunks) <= 1:
        logger.info("VAD 분할 지점을 찾지 못해 크기 기반 분할로 대체")
        return SplitPlan(chunks=split_wav_buffer(buffer, max_chunk_bytes), method="size")

    final_chunks: list[bytes] = []
    overlap_boundaries: list[bool] = []
    oversized_count = 0
    for chunk in vad_chunks:
        if needs_split(len(chunk), max_chunk_bytes):
            oversized_count += 1
            pieces = split_wav_buffer(chunk, max_chunk_bytes)
        else:
            pieces = [chunk]
        # VAD 청크 사이 경계만 오버랩이 있고, 크기 분할 경계에는 없음
        if final_chunks:
            overlap_boundaries.append(True)
        overlap_boundaries.extend([False] * (len(pieces) - 1))
        final_chunks.extend(pieces)

    if oversized_count:
        logger.info(f"상한선을 넘는 VAD 청크 {oversized_count}개를 크기 기반으로 추가 분할")

    return SplitPlan(chunks=final_chunks, method="vad", overlap_boundaries=overlap_boundaries)


def _align_down(offset: int, frame_size: int) -> int:
    return offset // frame_size * frame_size
