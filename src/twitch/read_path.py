from __future__ import annotations

import logging
import re
import socket
import ssl
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional

logger = logging.getLogger(__name__)

# Twitch may prepend IRCv3 tags to PRIVMSG lines.
PRIVMSG_RE = re.compile(
    r"^(?:@(?P<tags>[^\s]+)\s+)?:(?P<nick>[^!]+)![^ ]+ PRIVMSG #(?P<chan>[^ ]+) :(?P<msg>.*)$"
)
# Subs, resubs and gifts arrive as USERNOTICE; the user message is optional.
USERNOTICE_RE = re.compile(
    r"^(?:@(?P<tags>[^\s]+)\s+)?:(?P<server>[^ ]+)\s+USERNOTICE\s+#(?P<chan>[^ ]+)(?:\s+:(?P<msg>.*))?$"
)
NOTICE_RE = re.compile(
    r"^(?:@(?P<tags>[^\s]+)\s+)?:(?P<server>[^ ]+)\s+NOTICE\s+(?P<target>[^ ]+)\s+:(?P<msg>.*)$"
)
RECONNECT_RE = re.compile(r"^(?:@(?P<tags>[^\s]+)\s+)?:(?P<server>[^ ]+)\s+RECONNECT\b")
WELCOME_RE = re.compile(r"^:(?P<server>[^ ]+)\s+001\s+")

_TAG_ESCAPES = {":": ";", "s": " ", "\\": "\\", "r": "\r", "n": "\n"}

_AUTH_FAILURE_MARKERS = (
    "login authentication failed",
    "improperly formatted auth",
    "login unsuccessful",
    "authentication failed",
)


class TwitchAuthError(RuntimeError):
    pass


@dataclass(frozen=True)
class TwitchMsg:
    nick: str
    channel: str
    message: str
    raw: str
    command: str = "PRIVMSG"
    tags: Dict[str, str] = field(default_factory=dict)


def _unescape_tag_value(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\" and i + 1 < len(value):
            out.append(_TAG_ESCAPES.get(value[i + 1], value[i + 1]))
            i += 2
            continue
        if ch != "\\":
            out.append(ch)
        i += 1
    return "".join(out)


def parse_tags(raw: Optional[str]) -> Dict[str, str]:
    tags: Dict[str, str] = {}
    for part in str(raw or "").split(";"):
        if not part:
            continue
        key, _, value = part.partition("=")
        tags[key] = _unescape_tag_value(value)
    return tags


def parse_line(line: str) -> Optional[TwitchMsg]:
    """Parse a chat-bearing IRC line; anything else returns None."""
    m = PRIVMSG_RE.match(line)
    if m:
        msg = m.group("msg")
        # CTCP ACTION (/me) wraps the text.
        if msg.startswith("\x01ACTION ") and msg.endswith("\x01"):
            msg = msg[len("\x01ACTION "):-1]
        return TwitchMsg(
            nick=m.group("nick"),
            channel=m.group("chan"),
            message=msg,
            raw=line,
            command="PRIVMSG",
            tags=parse_tags(m.group("tags")),
        )
    m = USERNOTICE_RE.match(line)
    if m:
        tags = parse_tags(m.group("tags"))
        return TwitchMsg(
            nick=tags.get("login", ""),
            channel=m.group("chan"),
            message=m.group("msg") or "",
            raw=line,
            command="USERNOTICE",
            tags=tags,
        )
    return None


def _connect_tls(host: str, port: int, timeout_s: int) -> socket.socket:
    raw = socket.create_connection((host, port), timeout=timeout_s)
    ctx = ssl.create_default_context()
    return ctx.wrap_socket(raw, server_hostname=host)


def _is_auth_failure(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _AUTH_FAILURE_MARKERS)


class TwitchChatSession:
    """
    Read-only Twitch IRC session.

    connect() performs one login handshake and raises on failure; callers own
    the retry policy for that. Once connected, iter_messages() survives
    transport drops (server RECONNECT, socket errors) by logging back in with
    its own backoff. Authentication failures always propagate.
    """

    def __init__(
        self,
        *,
        oauth_token: str,
        nick: str,
        channel: str,
        timeout_s: int = 20,
        host: str = "irc.chat.twitch.tv",
        port: int = 6697,
        reconnect_initial_seconds: float = 2.0,
        reconnect_max_seconds: float = 15.0,
        wait_fn: Optional[Callable[[float], Any]] = None,
    ) -> None:
        if not str(oauth_token or "").startswith("oauth:"):
            raise ValueError("TWITCH_OAUTH_TOKEN must start with 'oauth:'")
        self._oauth_token = oauth_token
        self._nick = str(nick or "").strip().lower()
        self._channel = str(channel or "").lstrip("#").lower()
        self._timeout_s = timeout_s
        self._host = host
        self._port = port
        self._reconnect_initial_seconds = max(0.0, float(reconnect_initial_seconds))
        self._reconnect_max_seconds = max(self._reconnect_initial_seconds, float(reconnect_max_seconds))
        self._stop = threading.Event()
        self._wait_fn = wait_fn or self._stop.wait
        self._sock: Optional[Any] = None
        self._file: Optional[Any] = None
        self._lock = threading.Lock()
        self.reconnect_count = 0

    @property
    def nick(self) -> str:
        return self._nick

    @property
    def channel(self) -> str:
        return self._channel

    def is_connected(self) -> bool:
        return self._file is not None

    def _send(self, line: str) -> None:
        f = self._file
        if f is None:
            raise RuntimeError("Twitch IRC session is not connected")
        f.write((line + "\r\n").encode("utf-8"))

    def connect(self) -> None:
        if self._stop.is_set():
            raise RuntimeError("Twitch IRC session is closed")
        sock = _connect_tls(self._host, self._port, self._timeout_s)
        f = sock.makefile("rwb", buffering=0)
        with self._lock:
            self._sock = sock
            self._file = f
        try:
            self._send("CAP REQ :twitch.tv/tags twitch.tv/commands")
            self._send(f"PASS {self._oauth_token}")
            self._send(f"NICK {self._nick}")
            self._send(f"JOIN #{self._channel}")
            self._await_welcome(f)
        except BaseException:
            self._drop()
            raise
        # Blocking mode for the read stream; timeouts on makefile-backed
        # sockets poison subsequent reads ("cannot read from timed out object").
        if hasattr(sock, "settimeout"):
            sock.settimeout(None)
        logger.info("[TwitchChat] joined #%s as %s", self._channel, self._nick)

    def _await_welcome(self, f: Any) -> None:
        while True:
            try:
                raw = f.readline()
            except (TimeoutError, socket.timeout) as exc:
                raise RuntimeError("Twitch IRC login timed out") from exc
            except OSError as exc:
                raise RuntimeError(f"Twitch IRC login failed: {exc}") from exc
            if not raw:
                raise RuntimeError("Twitch IRC closed during login")
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line.startswith("PING "):
                self._send(f"PONG {line.split(' ', 1)[1]}")
                continue
            notice = NOTICE_RE.match(line)
            if notice:
                msg = str(notice.group("msg") or "").strip()
                if _is_auth_failure(msg):
                    raise TwitchAuthError(f"Twitch IRC auth failed: {msg or 'NOTICE'}")
                continue
            if WELCOME_RE.match(line):
                return

    def _read_stream(self) -> Iterator[TwitchMsg]:
        f = self._file
        if f is None:
            return
        while True:
            try:
                raw = f.readline()
            except (TimeoutError, socket.timeout):
                continue
            except OSError as exc:
                raise RuntimeError(f"Twitch IRC read failed: {exc}") from exc
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")

            if line.startswith("PING "):
                self._send(f"PONG {line.split(' ', 1)[1]}")
                continue

            notice = NOTICE_RE.match(line)
            if notice:
                msg = str(notice.group("msg") or "").strip()
                if _is_auth_failure(msg):
                    raise TwitchAuthError(f"Twitch IRC auth failed: {msg or 'NOTICE'}")
                logger.debug("[TwitchChat] NOTICE %s", msg)
                continue

            if RECONNECT_RE.match(line):
                raise RuntimeError("Twitch IRC requested reconnect")

            parsed = parse_line(line)
            if parsed is not None:
                yield parsed

    def iter_messages(self) -> Iterator[TwitchMsg]:
        backoff_s = self._reconnect_initial_seconds
        while not self._stop.is_set():
            try:
                if self._file is None:
                    self.reconnect_count += 1
                    logger.info("[TwitchChat] reconnecting (attempt %d)", self.reconnect_count)
                    self.connect()
                    backoff_s = self._reconnect_initial_seconds
                yield from self._read_stream()
                if self._stop.is_set():
                    break
                raise RuntimeError("Twitch IRC stream closed")
            except TwitchAuthError:
                self._drop()
                raise
            except (RuntimeError, OSError) as exc:
                self._drop()
                if self._stop.is_set():
                    break
                logger.warning("[TwitchChat] transport dropped: %s; retrying in %.1fs", exc, backoff_s)
                self._wait_fn(backoff_s)
                backoff_s = min(backoff_s * 2.0, self._reconnect_max_seconds)

    def _drop(self) -> None:
        with self._lock:
            sock, f = self._sock, self._file
            self._sock = None
            self._file = None
        for item in (f, sock):
            if item is None or not hasattr(item, "close"):
                continue
            try:
                item.close()
            except OSError as exc:
                logger.debug("[TwitchChat] close error: %s", exc)

    def close(self) -> None:
        self._stop.set()
        self._drop()
