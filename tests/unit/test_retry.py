"""
재시도(exponential backoff) 단위 테스트

asyncio.sleep을 patch하여 실제로 대기하지 않습니다.

검증 항목:
- backoff 대기 시간: base * multiplier^(n-1) + 지터, max_delay_sec 상한
- 일시적 오류는 max_attempts까지 재시도 후 마지막 예외 전파
- 재시도 대상이 아닌 예외는 즉시 전파
- on_retry 콜백 호출 인자
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.config.schema import RetryConfig
from src.stt.errors import ErrorCode, TranscriptionError
from src.stt.retry import compute_backoff_delay, with_retry


def _make_policy(**overrides) -> RetryConfig:
    values = {"max_attempts": 3, "base_delay_sec": 1.0, "max_delay_sec": 10.0, "backoff_multiplier": 2.0}
    values.update(overrides)
    return RetryConfig(**values)


class _RateLimitError(Exception):
    status_code = 429


# =============================================================================
# compute_backoff_delay
# =============================================================================

def test_backoff_without_jitter_is_exponential():
    policy = _make_policy()

    delays = [compute_backoff_delay(n, policy, jitter_source=lambda: 0.0) for n in (1, 2, 3)]

    assert delays == [1.0, 2.0, 4.0]


def test_backoff_jitter_is_at_most_ten_percent():
    policy = _make_policy()

    assert compute_backoff_delay(2, policy, jitter_source=lambda: 1.0) == pytest.approx(2.2)


def test_backoff_is_capped():
    policy = _make_policy(max_delay_sec=5.0)

    assert compute_backoff_delay(10, policy, jitter_source=lambda: 1.0) == 5.0


# =============================================================================
# with_retry
# =============================================================================

@pytest.mark.asyncio
async def test_returns_on_first_success():
    operation = AsyncMock(return_value="ok")

    with patch("src.stt.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await with_retry(operation, _make_policy())

    assert result == "ok"
    assert operation.await_count == 1
    mock_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_retries_transient_error_then_succeeds():
    operation = AsyncMock(side_effect=[_RateLimitError("slow down"), ConnectionError("reset"), "텍스트"])

    with patch("src.stt.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await with_retry(operation, _make_policy())

    assert result == "텍스트"
    assert operation.await_count == 3
    assert mock_sleep.await_count == 2


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    """max_attempts에 도달하면 마지막 예외를 그대로 전파하는지 확인합니다."""
    operation = AsyncMock(side_effect=TimeoutError("timed out"))

    with patch("src.stt.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        with pytest.raises(TimeoutError):
            await with_retry(operation, _make_policy(max_attempts=4))

    assert operation.await_count == 4
    assert mock_sleep.await_count == 3


@pytest.mark.asyncio
async def test_non_retryable_error_is_raised_immediately():
    operation = AsyncMock(side_effect=ValueError("bad audio"))

    with patch("src.stt.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        with pytest.raises(ValueError):
            await with_retry(operation, _make_policy())

    assert operation.await_count == 1
    mock_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_non_recoverable_transcription_error_is_not_retried():
    error = TranscriptionError("rate limited", code=ErrorCode.RATE_LIMITED, recoverable=False)
    operation = AsyncMock(side_effect=error)

    with patch("src.stt.retry.asyncio.sleep", new_callable=AsyncMock):
        with pytest.raises(TranscriptionError):
            await with_retry(operation, _make_policy())

    assert operation.await_count == 1


@pytest.mark.asyncio
async def test_custom_predicate_and_callback():
    operation = AsyncMock(side_effect=[KeyError("x"), "done"])
    on_retry = MagicMock()

    with patch("src.stt.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await with_retry(
            operation,
            _make_policy(base_delay_sec=0.5),
            should_retry=lambda exc: isinstance(exc, KeyError),
            on_retry=on_retry,
        )

    assert result == "done"
    on_retry.assert_called_once()
    error_arg, attempt_arg, delay_arg = on_retry.call_args.args
    assert isinstance(error_arg, KeyError)
    assert attempt_arg == 1
    assert 0.5 <= delay_arg <= 0.55
    mock_sleep.assert_awaited_once_with(delay_arg)
