"""
Retry utilities for registry operations.

Transient registry failures (TransientRegistryError) are retried with
bounded exponential backoff; every other error propagates immediately.
"""
from typing import Any, Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..exceptions import TransientRegistryError
from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _log_retry_attempt(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "registry_operation_retry",
        attempt=retry_state.attempt_number,
        error_type=type(exception).__name__ if exception else "unknown",
        error_message=str(exception) if exception else "unknown",
        next_wait_seconds=(retry_state.next_action.sleep if retry_state.next_action else 0),
    )


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    min_wait_seconds: float = 1.0,
    max_wait_seconds: float = 30.0,
    sleep: Callable[[float], None] | None = None,
    **kwargs: Any,
) -> T:
    """
    Call func, retrying on TransientRegistryError.

    Args:
        func: Callable to invoke
        max_retries: Retries after the first attempt (0 disables retry)
        min_wait_seconds: Lower bound of the backoff wait
        max_wait_seconds: Upper bound of the backoff wait
        sleep: Optional sleep function (tests pass a no-op)

    Returns:
        Whatever func returns

    Raises:
        TransientRegistryError: When every attempt failed transiently
    """
    options = dict(
        # stop_after_attempt counts attempts, not retries
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=min_wait_seconds, min=min_wait_seconds, max=max_wait_seconds),
        retry=retry_if_exception_type(TransientRegistryError),
        before_sleep=_log_retry_attempt,
        reraise=True,
    )
    if sleep is not None:
        options["sleep"] = sleep

    return Retrying(**options)(func, *args, **kwargs)
