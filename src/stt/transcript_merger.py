"""
청크별 전사 텍스트 병합 모듈입니다.

역할:
- 크기 기반 분할 결과를 공백 하나로 단순 병합
- VAD 분할 결과는 청크 경계 오버랩으로 중복 인식된 단어열을 제거한 뒤 병합
- 단어 비교는 소문자 변환 및 구두점 제거 후 수행

사용 예시:
    >>> merge_transcriptions_with_overlap([
    ...     "안녕하세요 오늘 회의를 시작하겠습니다",
    ...     "회의를 시작하겠습니다 첫 번째 안건은",
    ... ])
    '안녕하세요 오늘 회의를 시작하겠습니다 첫 번째 안건은'
"""

from __future__ import annotations

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

# 경계 중복 탐색 시 비교할 최대 단어 수
DEFAULT_MAX_OVERLAP_WORDS = 50

_NON_WORD_PATTERN = re.compile(r"[^\w]+", flags=re.UNICODE)


def normalize_token(token: str) -> str:
    """단어 비교용으로 소문자 변환 후 구두점/기호를 제거합니다."""
    return _NON_WORD_PATTERN.sub("", token.lower())


def merge_transcriptions(texts: list[str]) -> str:
    """
    전사 텍스트들을 순서대로 공백 하나로 이어 붙입니다.

    각 텍스트의 앞뒤 공백을 제거하고 빈 텍스트는 건너뜁니다.
    """
    return " ".join(stripped for stripped in (text.strip() for text in texts) if stripped)


def find_overlap_word_count(
    previous: str,
    current: str,
    max_overlap_words: int = DEFAULT_MAX_OVERLAP_WORDS,
) -> int:
    """
    previous의 끝 단어열과 current의 시작 단어열이 일치하는 최대 길이를 구합니다.

    가장 긴 후보부터 줄여가며 비교하므로 처음 일치한 길이가 최장 일치입니다.
    정규화 결과가 빈 문자열인 단어(기호만 있는 단어)는 일치로 보지 않습니다.

    파라미터:
        previous: 지금까지 병합된 텍스트
        current: 이어 붙일 다음 청크 텍스트
        max_overlap_words: 비교할 최대 단어 수

    반환값:
        int: current 앞에서 제거할 단어 수 (일치 없으면 0)
    """
    previous_tokens = [normalize_token(word) for word in previous.split()]
    current_tokens = [normalize_token(word) for word in current.split()]

    max_k = min(len(previous_tokens), len(current_tokens), max_overlap_words)
    for k in range(max_k, 0, -1):
        tail = previous_tokens[-k:]
        head = current_tokens[:k]
        if tail == head and all(tail):
            return k
    return 0


def merge_transcriptions_with_overlap(
    texts: list[str],
    max_overlap_words: int = DEFAULT_MAX_OVERLAP_WORDS,
    overlap_boundaries: Optional[list[bool]] = None,
) -> str:
    """
    청크 경계 오버랩으로 중복된 단어열을 제거하며 전사 텍스트를 병합합니다.

    왼쪽부터 누적하면서, 다음 텍스트의 시작 단어열 중 누적 텍스트의 끝과
    일치하는 가장 긴 부분을 잘라낸 뒤 공백으로 이어 붙입니다.

    파라미터:
        texts: 청크 순서대로 정렬된 전사 텍스트 목록
        max_overlap_words: 경계에서 비교할 최대 단어 수
        overlap_boundaries: texts[i]와 texts[i + 1] 사이에 오디오 오버랩이 있는지 여부.
            None이면 모든 경계를 오버랩으로 간주. 오버랩이 없는 경계는 중복 제거 없이 연결

    반환값:
        str: 병합된 텍스트. 빈 목록이면 빈 문자열
    """
    cleaned = [(index, text.strip()) for index, text in enumerate(texts) if text and text.strip()]
    if not cleaned:
        return ""

    previous_index, merged = cleaned[0]
    removed_total = 0
    for index, current in cleaned[1:]:
        if overlap_boundaries is None or all(overlap_boundaries[previous_index:index]):
            overlap_count = find_overlap_word_count(merged, current, max_overlap_words)
        else:
            overlap_count = 0
        previous_index = index
        remaining = " ".join(current.split()[overlap_count:])
        removed_total += overlap_count
        if remaining:
            merged = f"{merged} {remaining}"

    if removed_total:
        logger.debug(f"청크 경계 중복 단어 {removed_total}개 제거")
    return merged
