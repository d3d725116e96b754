import asyncio
import functools
import random
from typing import Callable, Optional, Tuple, Type

from plexi_vault.exceptions import APIError
from plexi_vault.monitoring.logger import get_logger

logger = get_logger(__name__)


def retry_on_transient_errors(
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_backoff: float = 5.0,
    transient_errors: Tuple[Type[Exception], ...] = (APIError,),
    sleep: Optional[Callable] = None,
):
    """
    Decorator to retry async functions on transient errors.

    Exponential backoff with jitter. Only exceptions in ``transient_errors`` are
    retried; anything else (validation, rejections, programming errors) propagates
    immediately.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial wait time in seconds
        max_backoff: Maximum wait time in seconds
        transient_errors: Exception types worth retrying
        sleep: Awaitable sleep, injectable for tests (defaults to asyncio.sleep)
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            retry_count = 0
            backoff = base_delay
            do_sleep = sleep or asyncio.sleep

            while True:
                try:
                    return await func(*args, **kwargs)
                except transient_errors as e:
                    if retry_count >= max_retries:
                        logger.warning(
                            "RETRIES_EXHAUSTED",
                            func=func.__name__,
                            max_retries=max_retries,
                            error=str(e),
                        )
                        raise

                    logger.warning(
                        "TRANSIENT_ERROR_RETRY",
                        func=func.__name__,
                        attempt=retry_count + 1,
                        max_retries=max_retries,
                        error=str(e),
                        wait=f"{backoff:.2f}s",
                    )
                    await do_sleep(backoff)

                    retry_count += 1
                    backoff = min(backoff * 2, max_backoff)
                    backoff += random.uniform(0, 0.25)  # Jitter

        return wrapper
    return decorator
