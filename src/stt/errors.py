"""
전사(STT) 에러 정의 모듈입니다.

역할:
- 에러 코드(ErrorCode)와 전사 에러(TranscriptionError) 정의
- 외부 라이브러리 예외를 에러 코드로 분류 (HTTP 상태 코드, 예외 타입, 메시지 패턴)
- 재시도 가능 여부 판별
- 에러 코드별 한국어/영어 복구 안내 메시지 제공

사용 예시:
    >>> try:
    ...     await provider.transcribe_file("meeting.wav")
    ... except TranscriptionError as exc:
    ...     print(exc.code, exc.get_recovery_message("ko"))
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """전사 파이프라인 에러 코드입니다."""
    FAILED = "TRANSCRIPTION_FAILED"
    FILE_NOT_FOUND = "TRANSCRIPTION_FILE_NOT_FOUND"
    FILE_TOO_LARGE = "TRANSCRIPTION_FILE_TOO_LARGE"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"


# 에러 코드별 복구 안내 메시지
ERROR_RECOVERY: dict[ErrorCode, dict[str, str]] = {
    ErrorCode.FAILED: {
        "ko": "음성 인식에 실패했습니다. 오디오 품질을 확인해주세요.",
        "en": "Transcription failed. Please check your audio quality.",
    },
    ErrorCode.FILE_NOT_FOUND: {
        "ko": "오디오 파일을 찾을 수 없습니다.",
        "en": "Audio file not found.",
    },
    ErrorCode.FILE_TOO_LARGE: {
        "ko": "오디오 파일이 너무 큽니다. 자동으로 분할하여 처리합니다.",
        "en": "Audio file is too large. Automatically splitting for processing.",
    },
    ErrorCode.RATE_LIMITED: {
        "ko": "잠시 후 다시 시도해주세요. (API 요청 제한)",
        "en": "Please wait and try again. (API rate limited)",
    },
    ErrorCode.NETWORK_ERROR: {
        "ko": "인터넷 연결을 확인하고 다시 시도해주세요.",
        "en": "Please check your internet connection and try again.",
    },
    ErrorCode.TIMEOUT_ERROR: {
        "ko": "요청 시간이 초과되었습니다. 다시 시도해주세요.",
        "en": "The request timed out. Please try again.",
    },
}

# 재시도 대상 에러 코드 (일시적 오류)
RETRYABLE_CODES = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.TIMEOUT_ERROR,
})

# 메시지 패턴 → 에러 코드 (앞에서부터 먼저 일치하는 항목 사용)
_STATUS_PREFIX = r"(?:error code|status(?: code)?|http(?:/[\d.]+)?)\W*"

_MESSAGE_PATTERNS: tuple[tuple[re.Pattern[str], ErrorCode], ...] = (
    # 상태 코드 숫자는 "error code: 413"처럼 상태 표기 뒤에 올 때만 인정
    (re.compile(_STATUS_PREFIX + r"413\b|maximum content size|payload too large|request entity too large"),
     ErrorCode.FILE_TOO_LARGE),
    (re.compile(_STATUS_PREFIX + r"429\b|rate limit|too many requests"), ErrorCode.RATE_LIMITED),
    (re.compile(r"timeout|timed out"), ErrorCode.TIMEOUT_ERROR),
    (re.compile(r"network|econnreset|enotfound|socket hang up|connection"), ErrorCode.NETWORK_ERROR),
    (re.compile(r"enoent|no such file"), ErrorCode.FILE_NOT_FOUND),
)


class TranscriptionError(Exception):
    """
    전사 실패를 나타내는 에러입니다.

    파라미터:
        message: 에러 메시지
        code: 에러 코드 (기본값 FAILED)
        recoverable: 재시도 또는 다른 제공자로 복구 가능한지 여부
        original_error: 원인 예외
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.FAILED,
        recoverable: bool = True,
        original_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.original_error = original_error

    def get_recovery_message(self, language: str = "ko") -> str:
        """에러 코드에 해당하는 복구 안내 메시지를 반환합니다. 지원하지 않는 언어는 영어로 대체합니다."""
        messages = ERROR_RECOVERY.get(self.code, ERROR_RECOVERY[ErrorCode.FAILED])
        return messages.get(language, messages["en"])

    def __repr__(self) -> str:
        return (
            f"TranscriptionError(code={self.code.value}, "
            f"recoverable={self.recoverable}, message={self.message!r})"
        )


def detect_error_code(error: BaseException) -> ErrorCode:
    """
    임의의 예외를 에러 코드로 분류합니다.

    판별 순서:
    1. TranscriptionError는 자신의 코드
    2. FileNotFoundError → FILE_NOT_FOUND
    3. status_code 속성 (413, 429, 5xx)
    4. 예외 타입 이름 (Timeout, Connection)
    5. 메시지 패턴
    6. 그 외 → FAILED

    파라미터:
        error: 분류할 예외

    반환값:
        ErrorCode: 분류된 에러 코드
    """
    if isinstance(error, TranscriptionError):
        return error.code

    if isinstance(error, FileNotFoundError):
        return ErrorCode.FILE_NOT_FOUND

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        if status_code == 413:
            return ErrorCode.FILE_TOO_LARGE
        if status_code == 429:
            return ErrorCode.RATE_LIMITED
        if status_code == 408:
            return ErrorCode.TIMEOUT_ERROR
        if status_code >= 500:
            return ErrorCode.NETWORK_ERROR

    type_name = type(error).__name__.lower()
    if "timeout" in type_name:
        return ErrorCode.TIMEOUT_ERROR
    if "connection" in type_name:
        return ErrorCode.NETWORK_ERROR

    message = str(error).lower()
    for pattern, code in _MESSAGE_PATTERNS:
        if pattern.search(message):
            return code

    return ErrorCode.FAILED


def is_retryable_error(error: BaseException) -> bool:
    """
    예외가 일시적 오류(요청 제한, 네트워크, 타임아웃)인지 판별합니다.

    복구 불가능(recoverable=False)으로 표시된 TranscriptionError는 코드와 무관하게 False입니다.
    """
    if isinstance(error, TranscriptionError) and not error.recoverable:
        return False
    return detect_error_code(error) in RETRYABLE_CODES
