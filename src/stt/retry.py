"""
비동기 재시도(exponential backoff) 유틸리티 모듈입니다.

역할:
- 일시적 오류가 발생한 비동기 작업을 제한된 횟수만큼 재시도
- 대기 시간: base × multiplier^(시도-1) + 10% 지터, 최대값으로 제한
- 재시도 여부 판별 함수와 재시도 콜백을 주입 가능

사용 예시:
    >>> text = await with_retry(
    ...     lambda: client.transcribe(chunk),
    ...     config.stt.retry,
    ...     label="chunk 1",
    ... )
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from src.config.schema import RetryConfig
from src.stt.errors import is_retryable_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 지터 비율 (지수 대기 시간의 최대 10%)
JITTER_RATIO = 0.1

# (예외, 실패한 시도 번호, 다음 대기 시간 초) -> None
RetryCallback = Callable[[BaseException, int, float], None]


def compute_backoff_delay(
    attempt: int,
    policy: RetryConfig,
    jitter_source: Callable[[], float] = random.random,
) -> float:
    """
    attempt번째 실패 후 대기할 시간(초)을 계산합니다.

    파라미터:
        attempt: 실패한 시도 번호 (1부터 시작)
        policy: 재시도 설정
        jitter_source: 0.0~1.0 난수 생성 함수 (테스트에서 고정값 주입)

    반환값:
        float: 대기 시간 (초, max_delay_sec 이하)
    """
    exponential_delay = policy.base_delay_sec * (policy.backoff_multiplier ** (attempt - 1))
    jitter = jitter_source() * JITTER_RATIO * exponential_delay
    return min(exponential_delay + jitter, policy.max_delay_sec)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryConfig,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    on_retry: Optional[RetryCallback] = None,
    label: str = "",
) -> T:
    """
    비동기 작업을 exponential backoff로 재시도합니다.

    재시도 대상이 아닌 예외이거나 최대 시도 횟수에 도달하면
    마지막 예외를 그대로 전파합니다.

    파라미터:
        operation: 인자 없이 호출하면 awaitable을 반환하는 함수
        policy: 재시도 설정 (max_attempts, base_delay_sec, max_delay_sec, backoff_multiplier)
        should_retry: 예외가 재시도 대상인지 판별하는 함수
        on_retry: 재시도 직전에 호출되는 콜백
        label: 로그에 표시할 작업 이름

    반환값:
        T: 작업 결과

    에러:
        마지막으로 발생한 예외
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            attempt += 1
            if attempt >= policy.max_attempts or not should_retry(exc):
                if attempt > 1:
                    logger.error(f"{label or '작업'} 재시도 {attempt}회 후 실패: {exc}")
                raise

            delay_sec = compute_backoff_delay(attempt, policy)
            logger.warning(
                f"{label or '작업'} 실패 ({attempt}/{policy.max_attempts}), "
                f"{delay_sec:.2f}초 후 재시도: {exc}"
            )
            if on_retry is not None:
                on_retry(exc, attempt, delay_sec)
            await asyncio.sleep(delay_sec)
