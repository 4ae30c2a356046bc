"""Bounded retry with linear or exponential backoff."""

import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from ingest.exceptions import RetriesExhaustedError
from ingest.logging_config import get_logger

__all__ = ["LINEAR", "EXPONENTIAL", "compute_backoff", "retry_call"]

logger = get_logger("retry")

T = TypeVar("T")

LINEAR = "linear"
EXPONENTIAL = "exponential"


def compute_backoff(attempt: int, base_delay: float, strategy: str = EXPONENTIAL) -> float:
    """Delay (seconds) to wait after failed attempt number ``attempt`` (1-based).

    Linear: base, 2*base, 3*base ... Exponential: base, 2*base, 4*base ...
    """
    if attempt < 1:
        return 0.0
    if strategy == LINEAR:
        return base_delay * attempt
    if strategy == EXPONENTIAL:
        return base_delay * (2 ** (attempt - 1))
    raise ValueError(f"Unknown backoff strategy: {strategy}")


def retry_call(
    func: Callable[[], T],
    attempts: int,
    base_delay: float,
    strategy: str = EXPONENTIAL,
    sleep: Callable[[float], None] = time.sleep,
    give_up_on: Tuple[Type[BaseException], ...] = (),
    description: str = "operation",
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """Call ``func`` until it succeeds or ``attempts`` calls have failed.

    Exceptions in ``give_up_on`` propagate at once without further attempts.

    Raises:
        RetriesExhaustedError: After the last failed attempt, chained to the
            last underlying exception
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    last_error: Optional[Exception] = None
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except give_up_on:
            raise
        except Exception as e:
            last_error = e
            if attempt == attempts:
                break
            delay = compute_backoff(attempt, base_delay, strategy)
            logger.warning(
                f"{description} failed (attempt {attempt}/{attempts}): {e}; "
                f"retrying in {delay:.1f}s"
            )
            if on_retry is not None:
                on_retry(attempt, e)
            sleep(delay)

    raise RetriesExhaustedError(
        f"{description} failed after {attempts} attempts: {last_error}",
        attempts=attempts,
    ) from last_error
