from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import os
import tomllib

from ripple.normalizer import VoteEligibility

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    pass


def _parse_env_file(path: Path) -> dict[str, str]:
    out: dict[str, str] = {}
    if not path.exists():
        return out
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        k, v = line.split("=", 1)
        v = v.strip()
        if len(v) >= 2 and v[0] == v[-1] and v[0] in {'"', "'"}:
            v = v[1:-1]
        out[k.strip()] = v
    return out


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    text = str(value or "").strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    return None


@dataclass(repr=False)
class RelayConfig:
    # Non-secret config
    operator: str = "iblackish_"
    vote_eligibility: VoteEligibility = VoteEligibility.ALL
    twitch_nick: str = ""
    twitch_channel: str = ""
    connect_max_retries: int = 3
    connect_retry_delay_seconds: float = 5.0
    supabase_url: str = ""
    events_table: str = "events_queue"
    phase_table: str = "events_queue"
    realtime_enabled: bool = True
    realtime_backoff_base_seconds: float = 2.0
    realtime_backoff_max_seconds: float = 60.0
    realtime_max_attempts: int = 10
    network_enabled: bool = False

    # Secrets
    twitch_oauth_token: Optional[str] = field(default=None, repr=False)
    supabase_key: Optional[str] = field(default=None, repr=False)

    def __repr__(self) -> str:
        # Redact secrets explicitly
        return (
            "RelayConfig("
            f"operator={self.operator!r}, "
            f"vote_eligibility={self.vote_eligibility.value!r}, "
            f"twitch_nick={self.twitch_nick!r}, "
            f"twitch_channel={self.twitch_channel!r}, "
            f"supabase_url={self.supabase_url!r}, "
            f"events_table={self.events_table!r}, "
            f"phase_table={self.phase_table!r}, "
            f"realtime_enabled={self.realtime_enabled!r}, "
            f"network_enabled={self.network_enabled!r}, "
            "twitch_oauth_token=<redacted>, "
            "supabase_key=<redacted>"
            ")"
        )

    @property
    def events_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{self.events_table}"

    def missing_for_live_run(self) -> List[str]:
        missing = []
        if not self.twitch_nick:
            missing.append("twitch.nick")
        if not self.twitch_channel:
            missing.append("twitch.channel")
        if not self.twitch_oauth_token:
            missing.append("TWITCH_OAUTH_TOKEN")
        if not self.operator:
            missing.append("relay.operator")
        if self.network_enabled or self.realtime_enabled:
            if not self.supabase_url:
                missing.append("supabase.url")
            if not self.supabase_key:
                missing.append("SUPABASE_KEY")
        return missing

    def validate(self) -> None:
        missing = self.missing_for_live_run()
        if missing:
            raise ConfigError(f"missing required settings: {', '.join(missing)}")
        if self.twitch_oauth_token and not self.twitch_oauth_token.startswith("oauth:"):
            raise ConfigError("TWITCH_OAUTH_TOKEN must start with 'oauth:'")


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name, {}) if isinstance(data, dict) else {}
    return value if isinstance(value, dict) else {}


def _apply_toml(cfg: RelayConfig, data: Dict[str, Any]) -> None:
    relay = _section(data, "relay")
    twitch = _section(data, "twitch")
    supabase = _section(data, "supabase")
    realtime = _section(data, "realtime")
    net = _section(data, "network")

    operator = relay.get("operator")
    if isinstance(operator, str) and operator.strip():
        cfg.operator = operator.strip().lower()
    if "vote_eligibility" in relay:
        cfg.vote_eligibility = VoteEligibility.parse(relay.get("vote_eligibility"))

    for key, attr in (("nick", "twitch_nick"), ("channel", "twitch_channel")):
        value = twitch.get(key)
        if isinstance(value, str) and value.strip():
            setattr(cfg, attr, value.strip().lstrip("#").lower())
    if isinstance(twitch.get("connect_max_retries"), int):
        cfg.connect_max_retries = max(0, twitch["connect_max_retries"])
    if isinstance(twitch.get("connect_retry_delay_seconds"), (int, float)):
        cfg.connect_retry_delay_seconds = max(0.0, float(twitch["connect_retry_delay_seconds"]))

    for key, attr in (("url", "supabase_url"), ("events_table", "events_table"), ("phase_table", "phase_table")):
        value = supabase.get(key)
        if isinstance(value, str) and value.strip():
            setattr(cfg, attr, value.strip())

    if isinstance(realtime.get("enabled"), bool):
        cfg.realtime_enabled = realtime["enabled"]
    if isinstance(realtime.get("backoff_base_seconds"), (int, float)):
        cfg.realtime_backoff_base_seconds = max(0.0, float(realtime["backoff_base_seconds"]))
    if isinstance(realtime.get("backoff_max_seconds"), (int, float)):
        cfg.realtime_backoff_max_seconds = max(0.0, float(realtime["backoff_max_seconds"]))
    if isinstance(realtime.get("max_attempts"), int):
        cfg.realtime_max_attempts = max(1, realtime["max_attempts"])

    enabled = net.get("enabled")
    if isinstance(enabled, bool):
        cfg.network_enabled = enabled


def load_config(base_dir: Path | str) -> RelayConfig:
    """
    Config/secrets boundary.
    Deterministic merge order:
      defaults < config/relay.toml < config/secrets.env < environment
    """
    base = Path(base_dir)

    cfg = RelayConfig()

    # 1) relay.toml (non-secret)
    toml_path = base / "config" / "relay.toml"
    if toml_path.exists():
        try:
            data = tomllib.loads(toml_path.read_text(encoding="utf-8"))
            _apply_toml(cfg, data)
        except (tomllib.TOMLDecodeError, ValueError) as exc:
            raise ConfigError(f"invalid {toml_path}: {exc}") from exc

    # 2) secrets.env (secret)
    secrets_path = base / "config" / "secrets.env"
    env_data = _parse_env_file(secrets_path)
    cfg.twitch_oauth_token = env_data.get("TWITCH_OAUTH_TOKEN", cfg.twitch_oauth_token)
    cfg.supabase_key = env_data.get("SUPABASE_KEY", cfg.supabase_key)

    # 3) environment overrides (only via loader)
    operator = os.getenv("RIPPLE_OPERATOR")
    if operator:
        cfg.operator = operator.strip().lower()
    eligibility = os.getenv("RIPPLE_VOTE_ELIGIBILITY")
    if eligibility:
        try:
            cfg.vote_eligibility = VoteEligibility.parse(eligibility)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
    network = _parse_bool(os.getenv("RIPPLE_NETWORK_ENABLED"))
    if network is not None:
        cfg.network_enabled = network
    nick = os.getenv("TWITCH_NICK")
    if nick:
        cfg.twitch_nick = nick.strip().lower()
    channel = os.getenv("TWITCH_CHANNEL")
    if channel:
        cfg.twitch_channel = channel.strip().lstrip("#").lower()
    cfg.twitch_oauth_token = os.getenv("TWITCH_OAUTH_TOKEN") or cfg.twitch_oauth_token
    cfg.supabase_url = os.getenv("SUPABASE_URL") or cfg.supabase_url
    cfg.supabase_key = os.getenv("SUPABASE_KEY") or cfg.supabase_key

    return cfg
