from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectRetriesExhausted(RuntimeError):
    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"connection failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class SupervisorConfig:
    max_retries: int = 3
    retry_delay_seconds: float = 5.0


def connect_with_retry(
    *,
    connect: Callable[[], T],
    cfg: Optional[SupervisorConfig] = None,
    sleep_fn: Callable[[float], object] = time.sleep,
    should_continue: Callable[[], bool] = lambda: True,
) -> T:
    """
    Run the initial session handshake with a bounded, fixed-delay retry.

    One attempt plus cfg.max_retries more, cfg.retry_delay_seconds apart.
    Exhaustion raises ConnectRetriesExhausted; there is no further retry.
    """
    if cfg is None:
        cfg = SupervisorConfig()

    attempts = 0
    while True:
        attempts += 1
        try:
            return connect()
        except Exception as exc:
            logger.error("[Supervisor] connection attempt %d failed: %s", attempts, exc)
            if attempts > cfg.max_retries or not should_continue():
                raise ConnectRetriesExhausted(attempts, exc) from exc
            logger.info("[Supervisor] retrying in %.0f seconds...", cfg.retry_delay_seconds)
            sleep_fn(cfg.retry_delay_seconds)
