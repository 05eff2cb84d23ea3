import functools
import random
import time
from typing import Any, Callable

from autoapply.core.logging import get_logger

logger = get_logger(__name__)


def retry_call(
    fn: Callable[..., Any],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    retryable: tuple[type[BaseException], ...] = (Exception,),
    should_retry: Callable[[BaseException], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> Any:
    """Call fn, retrying listed exception types with exponential backoff.

    should_retry narrows retries further by inspecting the raised exception;
    anything it rejects propagates immediately.
    """
    attempts = max(1, max_attempts)
    name = getattr(fn, "__qualname__", repr(fn))
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except retryable as exc:
            if should_retry is not None and not should_retry(exc):
                raise
            if attempt == attempts:
                logger.error("%s failed after %d attempts: %s", name, attempts, exc)
                raise
            delay = min(base_delay * (backoff_factor ** (attempt - 1)), max_delay)
            if jitter:
                delay *= 0.5 + random.random()
            logger.warning(
                "%s attempt %d/%d failed (%s), retrying in %.1fs",
                name,
                attempt,
                attempts,
                exc,
                delay,
            )
            sleep(delay)
    raise RuntimeError("unreachable")


def retry(**options: Any) -> Callable:
    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return retry_call(fn, *args, **options, **kwargs)

        return wrapper

    return decorator
