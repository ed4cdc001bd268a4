"""
STT 모듈 패키지

공통 데이터 타입:
- ChunkTranscriptionOutcome: 녹음 청크 파일 하나의 전사 결과
- TranscriptionResult: 녹음 세션 전체 청크의 전사 결과 집계
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ChunkTranscriptionOutcome:
    """
    녹음 청크 파일 하나의 전사 결과입니다.

    필드:
        chunk_index: 청크 순번 (0부터 시작)
        chunk_path: 청크 WAV 파일 경로
        succeeded: 전사 성공 여부
        text: 전사된 텍스트 (실패 시 None)
        error: 실패 사유 (성공 시 None)
        attempts: 전사 시도 횟수 (파일이 없거나 비어 시도하지 않았으면 0)
    """
    chunk_index: int
    chunk_path: str
    succeeded: bool
    text: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 1


@dataclass
class TranscriptionResult:
    """
    녹음 세션 전체 청크의 전사 결과 집계입니다.

    필드:
        combined_text: 성공한 청크 텍스트를 빈 줄로 이어 붙인 전체 텍스트
        chunks: 청크별 결과 목록 (청크 순서 유지)
        success_count: 성공한 청크 수
        failed_count: 실패한 청크 수
        total_chunks: 전체 청크 수
    """
    combined_text: str
    chunks: list[ChunkTranscriptionOutcome] = field(default_factory=list)
    success_count: int = 0
    failed_count: int = 0
    total_chunks: int = 0

    @property
    def is_partial(self) -> bool:
        """일부 청크만 성공했는지 여부입니다."""
        return self.failed_count > 0 and self.success_count > 0
