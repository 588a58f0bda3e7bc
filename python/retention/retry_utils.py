"""Retry policy for registry reads.

Only idempotent reads (catalog, tag list, descriptor, manifest, blob) go
through a RetryPolicy. Manifest deletes are sent exactly once.
"""

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, TypeVar

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(Enum):
    NETWORK = "network"  # connection refused/reset, timeouts
    TEMPORARY = "temporary"  # 5xx, 429
    PERMANENT = "permanent"  # other 4xx, unparseable payloads


TRANSIENT_MARKERS = (
    "connection",
    "timed out",
    "timeout",
    "refused",
    "reset",
    "unreachable",
    "temporary failure",
    "name resolution",
)


def _status_of(error: Exception) -> Optional[int]:
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def classify_error(error: Exception) -> ErrorKind:
    """Decide whether a failed registry read is worth repeating.

    HTTP status wins over everything else; errors without one fall back to
    their message, and anything unrecognised is treated as temporary.
    """
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return ErrorKind.NETWORK

    status = _status_of(error)
    if status is not None:
        if status == 429 or status >= 500:
            return ErrorKind.TEMPORARY
        if status >= 400:
            return ErrorKind.PERMANENT

    if isinstance(error, ValueError):
        return ErrorKind.PERMANENT

    text = str(error).lower()
    if any(marker in text for marker in TRANSIENT_MARKERS):
        return ErrorKind.NETWORK
    if "too many requests" in text or "429" in text:
        return ErrorKind.TEMPORARY
    if any(marker in text for marker in ("401", "403", "404", "unauthorized", "forbidden", "unknown")):
        return ErrorKind.PERMANENT
    return ErrorKind.TEMPORARY


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings (the ``retry`` config section)"""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    @classmethod
    def from_config(cls, config_manager) -> "RetryPolicy":
        return cls(
            max_retries=config_manager.get_max_retries(),
            initial_delay=config_manager.get_retry_initial_delay(),
            max_delay=config_manager.get_retry_max_delay(),
            exponential_base=config_manager.get_retry_exponential_base(),
            jitter=config_manager.get_retry_jitter(),
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (0-based), +/-10% when jittered"""
        delay = min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter and delay > 0:
            delay = max(0.1, delay + random.uniform(-delay * 0.1, delay * 0.1))
        return delay

    def call(self, func: Callable[[], T], description: str = "",
             retry_on: Iterable[ErrorKind] = (ErrorKind.NETWORK, ErrorKind.TEMPORARY)) -> T:
        """Call ``func`` until it succeeds, fails permanently, or retries run out.

        Raises:
            The last exception raised by ``func``
        """
        description = description or getattr(func, "__name__", "operation")
        retry_on = tuple(retry_on)
        attempts = max(self.max_retries, 0) + 1

        for attempt in range(attempts):
            try:
                result = func()
            except Exception as e:
                kind = classify_error(e)
                if kind not in retry_on:
                    logger.debug(f"{description} failed ({kind.value}), not retrying: {e}")
                    raise
                if attempt == attempts - 1:
                    logger.error(f"{description} failed after {attempts} attempts ({kind.value}): {e}")
                    raise
                wait = self.delay(attempt)
                logger.warning(f"{description} failed ({kind.value}: {e}), retry {attempt + 1}/{self.max_retries} in {wait:.2f}s")
                time.sleep(wait)
            else:
                if attempt:
                    logger.info(f"{description} succeeded on attempt {attempt + 1}")
                return result
