"""ResetCoordinator: keeps a Realtime subscription alive and turns
``voting_phase_start`` inserts into PhaseGuard resets.

Architecture: one daemon thread owns the whole subscription lifecycle, so
subscribe/teardown never overlap. Each client is stamped with a generation
number; notifications from anything but the current generation are dropped.
The operator chat command resets the same PhaseGuard from the chat thread.
"""
from __future__ import annotations

import logging
import threading
import uuid
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ripple.phase_guard import PhaseGuard
from ripple.types import ResetOrigin

logger = logging.getLogger(__name__)

VOTING_PHASE_START = "voting_phase_start"


class SubscriptionState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    ERROR = "error"
    CLOSED = "closed"
    GAVE_UP = "gave_up"


def compute_backoff_seconds(attempt: int, *, base_seconds: float = 2.0, max_seconds: float = 60.0) -> float:
    """
    Delay before reconnect number ``attempt`` (1-based): 2, 4, 8, ... capped.

    The coordinator makes at most ``max_attempts`` subscription attempts in a
    row (the first one included), so with the default of 10 this is only called
    after failures 1..9.
    """
    exponent = max(0, int(attempt) - 1)
    return min(float(max_seconds), float(base_seconds) * (2.0 ** exponent))


def _new_topic() -> str:
    return f"realtime:voting-phase-{uuid.uuid4().hex}"


class ResetCoordinator:
    def __init__(
        self,
        *,
        guard: PhaseGuard,
        client_factory: Callable[..., Any],
        trigger_event_type: str = VOTING_PHASE_START,
        backoff_base_seconds: float = 2.0,
        backoff_max_seconds: float = 60.0,
        max_attempts: int = 10,
        wait_fn: Optional[Callable[[float], Any]] = None,
        topic_fn: Callable[[], str] = _new_topic,
    ) -> None:
        self._guard = guard
        self._client_factory = client_factory
        self._trigger_event_type = str(trigger_event_type).strip()
        self._backoff_base_seconds = max(0.0, float(backoff_base_seconds))
        self._backoff_max_seconds = max(self._backoff_base_seconds, float(backoff_max_seconds))
        self._max_attempts = max(1, int(max_attempts))
        self._stop = threading.Event()
        self._wait_fn = wait_fn or self._stop.wait
        self._topic_fn = topic_fn

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._handle: Optional[Any] = None
        self._generation = 0
        self._state = SubscriptionState.UNSUBSCRIBED
        self._attempts = 0
        self._last_error: Optional[str] = None
        self._notifications = 0

    # -- public API ---------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ripple-reset-coordinator", daemon=True)
        self._thread.start()
        logger.info("[ResetCoordinator] started")

    def stop(self) -> None:
        self._stop.set()
        self._teardown()
        logger.info("[ResetCoordinator] stop requested")

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def state(self) -> SubscriptionState:
        with self._lock:
            return self._state

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            topic = getattr(self._handle, "topic", None) if self._handle is not None else None
            return {
                "state": self._state.value,
                "attempts": self._attempts,
                "generation": self._generation,
                "topic": topic,
                "last_error": self._last_error,
                "notifications": self._notifications,
            }

    # -- lifecycle ------------------------------------------------------------

    def _set_state(self, state: SubscriptionState, *, error: Optional[str] = None) -> None:
        with self._lock:
            previous = self._state
            self._state = state
            if error is not None:
                self._last_error = error
        if previous != state:
            logger.info("[ResetCoordinator] %s -> %s", previous.value, state.value)

    def _teardown(self) -> None:
        with self._lock:
            handle = self._handle
            self._handle = None
        if handle is None:
            return
        try:
            handle.close()
        except Exception as exc:
            logger.warning("[ResetCoordinator] teardown of stale subscription failed: %s", exc)

    def _open(self) -> Any:
        self._teardown()
        self._set_state(SubscriptionState.SUBSCRIBING)
        with self._lock:
            self._generation += 1
            generation = self._generation
        topic = self._topic_fn()

        def _on_insert(record: Dict[str, Any]) -> None:
            self._on_insert(generation, record)

        client = self._client_factory(topic=topic, on_insert=_on_insert)
        with self._lock:
            self._handle = client
        logger.info("[ResetCoordinator] subscribing topic=%s generation=%d", topic, generation)
        return client

    def _run(self) -> None:
        with self._lock:
            self._attempts = 0
        while not self._stop.is_set():
            outcome = SubscriptionState.CLOSED
            error: Optional[str] = None
            try:
                client = self._open()
                client.join()
                if self._stop.is_set():
                    break
                with self._lock:
                    self._attempts = 0
                self._set_state(SubscriptionState.SUBSCRIBED, error="")
                client.run_until_closed()
            except Exception as exc:
                outcome = SubscriptionState.ERROR
                error = str(exc)
            if self._stop.is_set():
                break

            self._set_state(outcome, error=error)
            with self._lock:
                self._attempts += 1
                attempt = self._attempts
            if attempt >= self._max_attempts:
                self._teardown()
                self._set_state(SubscriptionState.GAVE_UP)
                logger.error(
                    "[ResetCoordinator] giving up after %d failed subscription attempts; last error: %s",
                    self._max_attempts,
                    error or "closed",
                )
                return
            delay = compute_backoff_seconds(
                attempt,
                base_seconds=self._backoff_base_seconds,
                max_seconds=self._backoff_max_seconds,
            )
            logger.warning(
                "[ResetCoordinator] subscription %s (%s); attempt %d/%d in %.1fs",
                outcome.value,
                error or "closed by server",
                attempt + 1,
                self._max_attempts,
                delay,
            )
            self._wait_fn(delay)

        self._teardown()
        self._set_state(SubscriptionState.UNSUBSCRIBED)
        logger.info("[ResetCoordinator] stopped")

    # -- notifications -------------------------------------------------------

    def _on_insert(self, generation: int, record: Dict[str, Any]) -> None:
        with self._lock:
            current = self._generation
        if generation != current:
            logger.debug("[ResetCoordinator] dropped notification from stale generation %d", generation)
            return
        event_type = str(record.get("event_type", "")).strip()
        if event_type != self._trigger_event_type:
            return
        with self._lock:
            self._notifications += 1
        self._guard.reset(ResetOrigin.EXTERNAL_NOTIFICATION)
