from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Deque, Dict, Optional, Protocol

from ripple.network import NetworkClient, NetworkDisabledError
from ripple.types import CanonicalEvent

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def send(self, event: CanonicalEvent) -> bool:
        ...


class SupabaseEventSink:
    """
    Inserts one row per canonical event through the Supabase REST API.

    A failed insert is logged and reported as False; nothing is retried.
    """

    def __init__(self, *, net: NetworkClient, url: str, api_key: str) -> None:
        self._net = net
        self._url = url
        self._api_key = str(api_key or "")

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Prefer": "return=minimal",
        }

    def send(self, event: CanonicalEvent) -> bool:
        logger.info("[EventSink] sending %s", event.describe())
        try:
            resp = self._net.post_json(self._url, payload=event.to_record(), headers=self._headers())
        except NetworkDisabledError:
            logger.info("[EventSink] network disabled, not sent: %s", event.to_record())
            return False
        except Exception as exc:
            logger.error("[EventSink] request failed for %s: %s", event.event_type.value, exc)
            return False
        if resp.ok:
            logger.info("[EventSink] row inserted (%s)", event.event_type.value)
            return True
        logger.error("[EventSink] rejected status=%s body=%s", resp.status, resp.body)
        return False


class ForwardingSink:
    """
    Fire-and-forget front for an EventSink.

    submit() only enqueues; a single dispatcher thread sends events in
    submission order, so a slow or failing endpoint never stalls chat.
    """

    def __init__(self, *, sink: EventSink) -> None:
        self._sink = sink
        self._pending: Deque[CanonicalEvent] = deque()
        self._pending_lock = threading.Lock()
        self._pending_ready = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._sent = 0
        self._failed = 0

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ripple-forwarding-sink", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop after draining whatever is already queued."""
        self._stop.set()
        self._pending_ready.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def submit(self, event: CanonicalEvent) -> None:
        with self._pending_lock:
            self._pending.append(event)
        self._pending_ready.set()

    def pending(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def stats(self) -> Dict[str, Any]:
        with self._pending_lock:
            return {"pending": len(self._pending), "sent": self._sent, "failed": self._failed}

    def _next(self) -> Optional[CanonicalEvent]:
        with self._pending_lock:
            if self._pending:
                return self._pending.popleft()
            return None

    def drain(self) -> None:
        while True:
            event = self._next()
            if event is None:
                return
            self._dispatch(event)

    def _dispatch(self, event: CanonicalEvent) -> None:
        try:
            ok = bool(self._sink.send(event))
        except Exception as exc:
            logger.error("[ForwardingSink] sink raised for %s: %s", event.event_type.value, exc)
            ok = False
        with self._pending_lock:
            if ok:
                self._sent += 1
            else:
                self._failed += 1

    def _run(self) -> None:
        while True:
            self.drain()
            if self._stop.is_set():
                break
            self._pending_ready.wait(1.0)
            self._pending_ready.clear()
        self.drain()
