from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from app.supervisor import ConnectRetriesExhausted, SupervisorConfig, connect_with_retry
from ripple.control.reset_coordinator import ResetCoordinator
from ripple.normalizer import chat_event_from_twitch
from ripple.relay import EventRelay
from ripple.sink import ForwardingSink
from twitch.read_path import TwitchAuthError, TwitchMsg

logger = logging.getLogger(__name__)


class RelayService:
    """
    Owns the chat session lifecycle and feeds chat into the relay.

    Startup: handshake with bounded retry, then the reset coordinator, then
    the chat loop. Shutdown order: subscription teardown, chat close, sink
    drain.
    """

    def __init__(
        self,
        *,
        session: Any,
        relay: EventRelay,
        sink: ForwardingSink,
        coordinator: Optional[ResetCoordinator] = None,
        supervisor_cfg: Optional[SupervisorConfig] = None,
    ) -> None:
        self._session = session
        self._relay = relay
        self._sink = sink
        self._coordinator = coordinator
        self._supervisor_cfg = supervisor_cfg or SupervisorConfig()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._connected = False
        self._fatal: Optional[str] = None
        self._auth_failed = False
        self._handled = 0

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._sink.start()
        self._thread = threading.Thread(target=self._run, name="ripple-relay-service", daemon=True)
        self._thread.start()
        logger.info("[RelayService] started")

    def stop(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        logger.info("[RelayService] stop requested")
        if self._coordinator is not None:
            self._coordinator.stop()
        self._session.close()
        self._sink.stop()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        if self._coordinator is not None:
            self._coordinator.join(timeout=timeout)
        self._sink.join(timeout=timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def fatal(self) -> Optional[str]:
        return self._fatal

    @property
    def auth_failed(self) -> bool:
        """True when Twitch revoked the login after the session was up."""
        return self._auth_failed

    def snapshot(self) -> Dict[str, Any]:
        guard = self._relay.guard
        return {
            "chat_connected": self._connected,
            "fatal": self._fatal,
            "handled": self._handled,
            "voters": guard.size(),
            "phase_epoch": guard.epoch,
            "resets": guard.reset_counts(),
            "duplicate_votes": self._relay.duplicate_votes,
            "sink": self._sink.stats(),
            "reset_coordinator": self._coordinator.snapshot() if self._coordinator is not None else None,
        }

    def handle_message(self, msg: TwitchMsg) -> None:
        self._handled += 1
        try:
            event = chat_event_from_twitch(msg, bot_nick=getattr(self._session, "nick", ""))
            self._relay.handle(event)
        except Exception as exc:
            logger.error("[RelayService] failed to handle message from %s: %s", msg.nick, exc)

    def _run(self) -> None:
        try:
            connect_with_retry(
                connect=self._session.connect,
                cfg=self._supervisor_cfg,
                sleep_fn=self._stop.wait,
                should_continue=lambda: not self._stop.is_set(),
            )
        except ConnectRetriesExhausted as exc:
            if not self._stop.is_set():
                self._fatal = str(exc)
                logger.critical("[RelayService] max retries reached. Check token or network. (%s)", exc)
            self._shutdown_after_run()
            return

        if self._stop.is_set():
            self._shutdown_after_run()
            return

        self._connected = True
        logger.info("[RelayService] connected to #%s chat", getattr(self._session, "channel", ""))
        if self._coordinator is not None:
            self._coordinator.start()

        try:
            for incoming in self._session.iter_messages():
                if self._stop.is_set():
                    break
                self.handle_message(incoming)
        except TwitchAuthError as exc:
            self._fatal = str(exc)
            self._auth_failed = True
            logger.critical("[RelayService] %s", exc)
        finally:
            self._connected = False
            self._shutdown_after_run()
        logger.info("[RelayService] stopped")

    def _shutdown_after_run(self) -> None:
        if self._stop.is_set():
            return
        # Chat ended on its own (fatal); bring the rest down with it.
        self.stop()
