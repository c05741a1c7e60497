"""
Bounded retry with exponential backoff for calls to external collaborators.
"""

import random
import time
from typing import Callable, Tuple, Type, TypeVar

from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


def call_with_retry(func: Callable[[], T],
                    attempts: int,
                    delay: float,
                    retry_on: Tuple[Type[BaseException], ...],
                    description: str = 'call',
                    sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Invoke ``func`` until it succeeds or runs out of attempts.

    Args:
        func: Zero-argument callable to invoke
        attempts: Maximum number of attempts (at least one is always made)
        delay: Base delay in seconds, doubled after every failed attempt
        retry_on: Exception types considered retryable
        description: Label used in log messages
        sleep: Sleep function, replaceable in tests

    Returns:
        The value returned by ``func``

    Raises:
        The last retryable exception once attempts are exhausted; non-retryable
        exceptions propagate immediately.
    """
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except retry_on as e:
            logger.warning(f'{description} attempt {attempt + 1}/{attempts} failed: {e}')

            if attempt >= attempts - 1:
                raise

            # Exponential backoff with jitter
            sleep(delay * (2**attempt) + random.uniform(0, delay))

    raise RuntimeError('unreachable')
