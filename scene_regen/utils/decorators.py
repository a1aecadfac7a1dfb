import asyncio
import time
from functools import wraps

from scene_regen.utils.logger import get_logger

logger = get_logger()

TRANSIENT_ERRORS = (ConnectionError, TimeoutError)
FATAL_ERRORS = (ValueError, RuntimeError, TypeError)


def smart_retry(retries=3, delay=1, backoff=2, transient=TRANSIENT_ERRORS):
    """
    Retries a function or coroutine on transient client errors.

    Transient errors are retried with exponential backoff; ValueError,
    RuntimeError and TypeError are raised immediately. When every attempt
    fails, the last transient error is re-raised.
    """

    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            current_delay = delay
            for i in range(retries):
                try:
                    return await func(*args, **kwargs)
                except FATAL_ERRORS as e:
                    logger.critical(f"🛑 Non-retryable failure in {func.__name__}: {e}")
                    raise
                except transient as e:
                    if i == retries - 1:
                        logger.error(f"❌ {func.__name__} failed after {retries} attempts.")
                        raise
                    logger.warning(
                        f"⚠️ [Retry {i+1}/{retries}] Transient error: {e}. Waiting {current_delay}s..."
                    )
                    await asyncio.sleep(current_delay)
                    current_delay *= backoff

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            current_delay = delay
            for i in range(retries):
                try:
                    return func(*args, **kwargs)
                except FATAL_ERRORS as e:
                    logger.critical(f"🛑 Non-retryable failure in {func.__name__}: {e}")
                    raise
                except transient as e:
                    if i == retries - 1:
                        logger.error(f"❌ {func.__name__} failed after {retries} attempts.")
                        raise
                    logger.warning(
                        f"⚠️ [Retry {i+1}/{retries}] Transient error: {e}. Waiting {current_delay}s..."
                    )
                    time.sleep(current_delay)
                    current_delay *= backoff

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
