"""
전사 에러 분류 단위 테스트

검증 항목:
- HTTP 상태 코드, 예외 타입 이름, 메시지 패턴에 따른 에러 코드 분류
- 재시도 가능 여부 판별
- 한국어/영어 복구 안내 메시지
"""

from __future__ import annotations

import pytest

from src.stt.errors import (
    ErrorCode,
    TranscriptionError,
    detect_error_code,
    is_retryable_error,
)


class _StatusError(Exception):
    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code


class APITimeoutError(Exception):
    pass


# =============================================================================
# detect_error_code
# =============================================================================

@pytest.mark.parametrize(
    "status_code, expected",
    [
        (413, ErrorCode.FILE_TOO_LARGE),
        (429, ErrorCode.RATE_LIMITED),
        (408, ErrorCode.TIMEOUT_ERROR),
        (500, ErrorCode.NETWORK_ERROR),
        (503, ErrorCode.NETWORK_ERROR),
        (400, ErrorCode.FAILED),
    ],
)
def test_status_code_classification(status_code, expected):
    assert detect_error_code(_StatusError(status_code)) == expected


def test_exception_type_name_classification():
    assert detect_error_code(APITimeoutError("")) == ErrorCode.TIMEOUT_ERROR
    assert detect_error_code(ConnectionResetError()) == ErrorCode.NETWORK_ERROR


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Maximum content size limit exceeded", ErrorCode.FILE_TOO_LARGE),
        ("Rate limit reached for requests", ErrorCode.RATE_LIMITED),
        ("read timed out", ErrorCode.TIMEOUT_ERROR),
        ("socket hang up", ErrorCode.NETWORK_ERROR),
        ("ENOENT: no such file", ErrorCode.FILE_NOT_FOUND),
        ("unexpected decoder state", ErrorCode.FAILED),
        ("Error code: 413 - {'error': 'too big'}", ErrorCode.FILE_TOO_LARGE),
        ("HTTP/1.1 429", ErrorCode.RATE_LIMITED),
        ("decoder rejected 413 bytes after 4130 frames", ErrorCode.FAILED),
        ("buffer of 1429 samples is malformed", ErrorCode.FAILED),
    ],
)
def test_message_pattern_classification(message, expected):
    assert detect_error_code(RuntimeError(message)) == expected


def test_transcription_error_keeps_own_code():
    error = TranscriptionError("too big", code=ErrorCode.FILE_TOO_LARGE)

    assert detect_error_code(error) == ErrorCode.FILE_TOO_LARGE


def test_file_not_found_error():
    assert detect_error_code(FileNotFoundError("meeting.wav")) == ErrorCode.FILE_NOT_FOUND


# =============================================================================
# is_retryable_error
# =============================================================================

def test_transient_errors_are_retryable():
    assert is_retryable_error(_StatusError(429))
    assert is_retryable_error(_StatusError(502))
    assert is_retryable_error(TimeoutError())


def test_permanent_errors_are_not_retryable():
    assert not is_retryable_error(_StatusError(413))
    assert not is_retryable_error(_StatusError(401, "invalid api key"))
    assert not is_retryable_error(ValueError("bad header"))


def test_non_recoverable_transcription_error_is_never_retryable():
    error = TranscriptionError("network", code=ErrorCode.NETWORK_ERROR, recoverable=False)

    assert not is_retryable_error(error)


# =============================================================================
# TranscriptionError
# =============================================================================

def test_transcription_error_defaults():
    cause = OSError("disk")
    error = TranscriptionError("실패", original_error=cause)

    assert error.code == ErrorCode.FAILED
    assert error.recoverable is True
    assert error.original_error is cause
    assert str(error) == "실패"


def test_recovery_message_languages():
    error = TranscriptionError("missing", code=ErrorCode.FILE_NOT_FOUND, recoverable=False)

    assert error.get_recovery_message("ko") == "오디오 파일을 찾을 수 없습니다."
    assert error.get_recovery_message("en") == "Audio file not found."
    # 지원하지 않는 언어는 영어로 대체
    assert error.get_recovery_message("ja") == "Audio file not found."
