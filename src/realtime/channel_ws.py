from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode, urlsplit

import websocket

logger = logging.getLogger(__name__)

_REALTIME_PATH = "/realtime/v1/websocket"
_PHOENIX_TOPIC = "phoenix"


class RealtimeChannelError(RuntimeError):
    pass


class RealtimeChannelClosed(RealtimeChannelError):
    pass


def realtime_socket_url(supabase_url: str, api_key: str) -> str:
    """Derive the Realtime websocket URL from a project URL like https://<ref>.supabase.co."""
    parts = urlsplit(str(supabase_url or "").strip())
    if not parts.netloc:
        raise ValueError(f"invalid Supabase URL: {supabase_url!r}")
    scheme = "ws" if parts.scheme == "http" else "wss"
    query = urlencode({"apikey": api_key, "vsn": "1.0.0"})
    return f"{scheme}://{parts.netloc}{_REALTIME_PATH}?{query}"


def extract_inserted_record(message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the inserted row of a postgres_changes INSERT message, else None."""
    if not isinstance(message, dict):
        return None
    if str(message.get("event", "")).strip() != "postgres_changes":
        return None
    payload = message.get("payload", {})
    if not isinstance(payload, dict):
        return None
    data = payload.get("data", {})
    if not isinstance(data, dict):
        return None
    if str(data.get("type", "")).strip().upper() != "INSERT":
        return None
    record = data.get("record", {})
    return record if isinstance(record, dict) else None


class RealtimeChannelClient:
    """
    One Phoenix channel on Supabase Realtime, subscribed to row inserts.

    join() blocks until the server acknowledges the subscription (or fails);
    run_until_closed() then pumps notifications and heartbeats until the
    channel closes (returns) or errors (raises). A client is single-use.
    """

    def __init__(
        self,
        *,
        socket_url: str,
        access_token: str,
        topic: str,
        table: str,
        on_insert: Callable[[Dict[str, Any]], None],
        schema: str = "public",
        row_filter: Optional[str] = None,
        ws_factory: Optional[Callable[[str], Any]] = None,
        time_fn: Callable[[], float] = time.monotonic,
        heartbeat_seconds: float = 25.0,
        join_timeout_seconds: float = 10.0,
    ) -> None:
        self._socket_url = socket_url
        self._access_token = str(access_token or "").strip()
        self._topic = topic
        self._table = table
        self._schema = schema
        self._row_filter = row_filter
        self._on_insert = on_insert
        self._ws_factory = ws_factory or self._default_ws_factory
        self._time_fn = time_fn
        self._heartbeat_seconds = max(1.0, float(heartbeat_seconds))
        self._join_timeout_seconds = max(0.1, float(join_timeout_seconds))

        self._ws: Optional[Any] = None
        self._ws_lock = threading.Lock()
        self._ref = 0
        self._join_ref: Optional[str] = None
        self._last_heartbeat = 0.0
        self._closed = threading.Event()

    @property
    def topic(self) -> str:
        return self._topic

    def _default_ws_factory(self, url: str) -> Any:
        return websocket.create_connection(url, timeout=self._heartbeat_seconds)

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def _send(self, topic: str, event: str, payload: Dict[str, Any], *, join_ref: Optional[str] = None) -> str:
        ref = self._next_ref()
        frame: Dict[str, Any] = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        if join_ref is not None:
            frame["join_ref"] = join_ref
        with self._ws_lock:
            ws = self._ws
        if ws is None:
            raise RealtimeChannelClosed("realtime socket is not open")
        ws.send(json.dumps(frame))
        return ref

    def _join_payload(self) -> Dict[str, Any]:
        change: Dict[str, Any] = {"event": "INSERT", "schema": self._schema, "table": self._table}
        if self._row_filter:
            change["filter"] = self._row_filter
        return {
            "config": {
                "broadcast": {"ack": False, "self": False},
                "presence": {"key": ""},
                "postgres_changes": [change],
            },
            "access_token": self._access_token,
        }

    def join(self) -> None:
        if self._closed.is_set():
            raise RealtimeChannelClosed("realtime client already closed")
        ws = self._ws_factory(self._socket_url)
        with self._ws_lock:
            self._ws = ws
        self._join_ref = self._send(self._topic, "phx_join", self._join_payload())
        self._last_heartbeat = self._time_fn()
        deadline = self._time_fn() + self._join_timeout_seconds

        while True:
            remaining = deadline - self._time_fn()
            if remaining <= 0:
                raise RealtimeChannelError(f"join timed out on {self._topic}")
            # A silent server must not hold recv() past the join deadline.
            ws.settimeout(min(remaining, self._heartbeat_seconds))
            raw = self._recv()
            if raw is None:
                continue
            message = json.loads(raw)
            if not isinstance(message, dict):
                continue
            event = str(message.get("event", "")).strip()
            if event == "phx_reply" and str(message.get("ref", "")) == self._join_ref:
                payload = message.get("payload", {})
                status = str(payload.get("status", "")).strip().lower() if isinstance(payload, dict) else ""
                if status == "ok":
                    ws.settimeout(self._heartbeat_seconds)
                    logger.info("[RealtimeChannel] joined %s table=%s.%s", self._topic, self._schema, self._table)
                    return
                raise RealtimeChannelError(f"join rejected on {self._topic}: {payload}")
            self.handle_message(message)

    def _recv(self) -> Optional[str]:
        with self._ws_lock:
            ws = self._ws
        if ws is None:
            raise RealtimeChannelClosed("realtime socket is not open")
        try:
            raw = ws.recv()
        except websocket.WebSocketTimeoutException:
            self._maybe_heartbeat()
            return None
        except websocket.WebSocketConnectionClosedException as exc:
            raise RealtimeChannelClosed(f"realtime socket closed: {exc}") from exc
        if raw is None or raw == "":
            raise RealtimeChannelClosed("realtime socket closed")
        self._maybe_heartbeat()
        return raw

    def _maybe_heartbeat(self) -> None:
        now = self._time_fn()
        if (now - self._last_heartbeat) >= self._heartbeat_seconds:
            self._last_heartbeat = now
            self._send(_PHOENIX_TOPIC, "heartbeat", {})

    def handle_message(self, message: Dict[str, Any]) -> None:
        topic = str(message.get("topic", "")).strip()
        event = str(message.get("event", "")).strip()
        payload = message.get("payload", {})
        if not isinstance(payload, dict):
            payload = {}

        if topic == _PHOENIX_TOPIC:
            return
        if topic and topic != self._topic:
            return

        if event == "phx_error":
            raise RealtimeChannelError(f"channel error on {self._topic}: {payload or 'unknown'}")
        if event == "phx_close":
            raise RealtimeChannelClosed(f"channel closed by server: {self._topic}")
        if event == "system" and str(payload.get("status", "")).strip().lower() == "error":
            raise RealtimeChannelError(f"system error on {self._topic}: {payload.get('message', '')}")

        record = extract_inserted_record(message)
        if record is not None:
            self._on_insert(record)

    def run_until_closed(self) -> None:
        try:
            while not self._closed.is_set():
                raw = self._recv()
                if raw is None:
                    continue
                message = json.loads(raw)
                if isinstance(message, dict):
                    self.handle_message(message)
        except Exception:
            # close() from another thread surfaces here as a socket error.
            if self._closed.is_set():
                return
            raise

    def close(self) -> None:
        """Leave the channel and close the socket. Safe to call more than once."""
        if self._closed.is_set():
            return
        self._closed.set()
        with self._ws_lock:
            ws = self._ws
        if ws is None:
            return
        try:
            self._send(self._topic, "phx_leave", {}, join_ref=self._join_ref)
        finally:
            with self._ws_lock:
                self._ws = None
            ws.close()
