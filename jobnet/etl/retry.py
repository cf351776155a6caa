import logging
import os
from typing import Any, Callable

import psycopg2
import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from jobnet.etl.errors import TransientError

logger = structlog.get_logger(__name__)

MAX_RETRIES = int(os.getenv("JOBNET_DB_MAX_RETRIES", "3"))
BASE_DELAY = float(os.getenv("JOBNET_DB_RETRY_DELAY_SECONDS", "1"))

# deadlock_detected, serialization_failure
TRANSIENT_PGCODES = {"40P01", "40001"}


def _is_transient_exception(exc: BaseException) -> bool:
    # Explicit signal
    if isinstance(exc, TransientError):
        return True

    # DB-level errors
    if isinstance(exc, psycopg2.OperationalError):
        return True
    pgcode = getattr(exc, "pgcode", None)
    return pgcode in TRANSIENT_PGCODES


def _stop() -> Any:
    return stop_after_attempt(MAX_RETRIES)


def _wait() -> Any:
    # random exponential backoff with cap
    return wait_random_exponential(multiplier=BASE_DELAY, max=30)


def run_with_retry(func: Callable, *args, **kwargs):
    """Run a callable with standardized retry/backoff for transient errors."""

    @retry(
        retry=retry_if_exception(_is_transient_exception),
        stop=_stop(),
        wait=_wait(),
        reraise=True,
        before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
    )
    def _wrapped():
        return func(*args, **kwargs)

    return _wrapped()


def classify_exception(exc: BaseException) -> str:
    """Return 'transient' or 'permanent' for logging/metrics."""
    return "transient" if _is_transient_exception(exc) else "permanent"
