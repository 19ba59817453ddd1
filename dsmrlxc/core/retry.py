"""Retry decorator for downloads (templates, compose files)."""
import functools
import time
from typing import Callable, Optional, Tuple, Type

from dsmrlxc.core.logger import get_logger

logger = get_logger(__name__)


def retry(
    max_attempts: int = 3,
    delay: float = 2.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    label: Optional[str] = None,
    sleep: Callable[[float], None] = None,
):
    """Retry the wrapped call with exponential backoff.

    Only host-side downloads are wrapped; in-container steps fail on the
    first error.

    Args:
        max_attempts: Total number of attempts, including the first
        delay: Seconds to wait before the second attempt
        backoff: Multiplier applied to the delay after every failure
        exceptions: Exception types that trigger another attempt
        label: Name used in log lines (defaults to the function name)
        sleep: Replacement for ``time.sleep``, resolved at call time

    Example:
        @retry(max_attempts=3, delay=5, exceptions=(requests.RequestException,))
        def fetch(url):
            ...
    """

    def decorator(func):
        name = label or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            wait = delay
            pause = sleep or time.sleep

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        logger.error(f"{name} failed after {max_attempts} attempts: {e}")
                        raise
                    logger.warning(f"{name} failed (attempt {attempt}/{max_attempts}): {e}")
                    logger.info(f"Retrying {name} in {wait:.1f}s...")
                    pause(wait)
                    wait *= backoff

        return wrapper

    return decorator
