from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from app.supervisor import SupervisorConfig
from realtime.channel_ws import RealtimeChannelClient, realtime_socket_url
from ripple.config import RelayConfig
from ripple.control.relay_service import RelayService
from ripple.control.reset_coordinator import VOTING_PHASE_START, ResetCoordinator
from ripple.network import NetworkClient
from ripple.network.transports_urllib import UrllibJsonTransport
from ripple.network.types import Transport
from ripple.phase_guard import PhaseGuard
from ripple.relay import EventRelay
from ripple.sink import ForwardingSink, SupabaseEventSink
from twitch.read_path import TwitchChatSession

USER_AGENT = "ripple-relay/0.1"


@dataclass
class App:
    """Fully wired relay. Nothing touches the network until service.start()."""
    cfg: RelayConfig
    guard: PhaseGuard
    relay: EventRelay
    sink: ForwardingSink
    coordinator: Optional[ResetCoordinator]
    service: RelayService


def build_realtime_client_factory(
    cfg: RelayConfig,
    *,
    ws_factory: Optional[Callable[[str], Any]] = None,
) -> Callable[..., RealtimeChannelClient]:
    socket_url = realtime_socket_url(cfg.supabase_url, str(cfg.supabase_key or ""))

    def _factory(*, topic: str, on_insert: Callable[[dict], None]) -> RealtimeChannelClient:
        return RealtimeChannelClient(
            socket_url=socket_url,
            access_token=str(cfg.supabase_key or ""),
            topic=topic,
            table=cfg.phase_table,
            row_filter=f"event_type=eq.{VOTING_PHASE_START}",
            on_insert=on_insert,
            ws_factory=ws_factory,
        )

    return _factory


def build_app(
    cfg: RelayConfig,
    *,
    session: Optional[Any] = None,
    transport: Optional[Transport] = None,
    realtime_client_factory: Optional[Callable[..., Any]] = None,
) -> App:
    """
    Build the relay with injected dependencies. Defaults are the real
    Twitch IRC session, urllib transport and Supabase Realtime client.
    """
    guard = PhaseGuard()
    net = NetworkClient(cfg=cfg, transport=transport or UrllibJsonTransport(user_agent=USER_AGENT))
    sink = ForwardingSink(
        sink=SupabaseEventSink(net=net, url=cfg.events_url, api_key=str(cfg.supabase_key or "")),
    )
    relay = EventRelay(
        guard=guard,
        forward=sink.submit,
        operator=cfg.operator,
        eligibility=cfg.vote_eligibility,
    )

    coordinator: Optional[ResetCoordinator] = None
    if cfg.realtime_enabled:
        coordinator = ResetCoordinator(
            guard=guard,
            client_factory=realtime_client_factory or build_realtime_client_factory(cfg),
            backoff_base_seconds=cfg.realtime_backoff_base_seconds,
            backoff_max_seconds=cfg.realtime_backoff_max_seconds,
            max_attempts=cfg.realtime_max_attempts,
        )

    if session is None:
        session = TwitchChatSession(
            oauth_token=str(cfg.twitch_oauth_token or ""),
            nick=cfg.twitch_nick,
            channel=cfg.twitch_channel,
        )

    service = RelayService(
        session=session,
        relay=relay,
        sink=sink,
        coordinator=coordinator,
        supervisor_cfg=SupervisorConfig(
            max_retries=cfg.connect_max_retries,
            retry_delay_seconds=cfg.connect_retry_delay_seconds,
        ),
    )
    return App(cfg=cfg, guard=guard, relay=relay, sink=sink, coordinator=coordinator, service=service)
