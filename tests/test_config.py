from pathlib import Path

import pytest

from ripple.config import ConfigError, load_config
from ripple.normalizer import VoteEligibility


def _write(base: Path, name: str, text: str) -> None:
    path = base / "config" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_default_config_loads_without_files(tmp_path):
    cfg = load_config(base_dir=tmp_path)

    assert cfg.network_enabled is False
    assert cfg.operator == "iblackish_"
    assert cfg.vote_eligibility is VoteEligibility.ALL
    assert cfg.connect_max_retries == 3
    assert cfg.connect_retry_delay_seconds == 5.0
    assert cfg.realtime_max_attempts == 10
    assert cfg.twitch_oauth_token is None
    assert cfg.supabase_key is None


def test_toml_overrides_non_secret_values(tmp_path):
    _write(
        tmp_path,
        "relay.toml",
        '[relay]\n'
        'operator="SomeStreamer"\n'
        'vote_eligibility="subscribers"\n'
        '\n'
        '[twitch]\n'
        'nick="RippleBot"\n'
        'channel="#SomeStreamer"\n'
        '\n'
        '[supabase]\n'
        'url="https://abc.supabase.co/"\n'
        'events_table="queue"\n'
        '\n'
        '[realtime]\n'
        'enabled=false\n'
        'max_attempts=4\n'
        '\n'
        '[network]\n'
        'enabled=true\n',
    )

    cfg = load_config(base_dir=tmp_path)

    assert cfg.operator == "somestreamer"
    assert cfg.vote_eligibility is VoteEligibility.SUBSCRIBERS
    assert cfg.twitch_nick == "ripplebot"
    assert cfg.twitch_channel == "somestreamer"
    assert cfg.events_url == "https://abc.supabase.co/rest/v1/queue"
    assert cfg.realtime_enabled is False
    assert cfg.realtime_max_attempts == 4
    assert cfg.network_enabled is True


def test_secrets_env_loaded_but_not_exposed_in_repr(tmp_path):
    _write(tmp_path, "secrets.env", 'TWITCH_OAUTH_TOKEN=oauth:supersecret\nSUPABASE_KEY="alsosecret"\n')

    cfg = load_config(base_dir=tmp_path)

    assert cfg.twitch_oauth_token == "oauth:supersecret"
    assert cfg.supabase_key == "alsosecret"

    s = repr(cfg)
    assert "supersecret" not in s
    assert "alsosecret" not in s


def test_env_overrides_files(tmp_path, monkeypatch):
    _write(tmp_path, "relay.toml", '[network]\nenabled=true\n')
    monkeypatch.setenv("RIPPLE_NETWORK_ENABLED", "0")
    monkeypatch.setenv("RIPPLE_OPERATOR", "OtherOp")
    monkeypatch.setenv("TWITCH_CHANNEL", "#Chan")
    monkeypatch.setenv("SUPABASE_KEY", "envkey")

    cfg = load_config(base_dir=tmp_path)

    assert cfg.network_enabled is False
    assert cfg.operator == "otherop"
    assert cfg.twitch_channel == "chan"
    assert cfg.supabase_key == "envkey"


def test_bad_eligibility_is_a_config_error(tmp_path, monkeypatch):
    monkeypatch.setenv("RIPPLE_VOTE_ELIGIBILITY", "mods-only")
    with pytest.raises(ConfigError):
        load_config(base_dir=tmp_path)

    monkeypatch.delenv("RIPPLE_VOTE_ELIGIBILITY")
    _write(tmp_path, "relay.toml", '[relay]\nvote_eligibility="everyone"\n')
    with pytest.raises(ConfigError):
        load_config(base_dir=tmp_path)


def test_validate_lists_missing_live_settings(tmp_path):
    cfg = load_config(base_dir=tmp_path)
    with pytest.raises(ConfigError) as excinfo:
        cfg.validate()
    message = str(excinfo.value)
    assert "twitch.nick" in message
    assert "TWITCH_OAUTH_TOKEN" in message
    assert "supabase.url" in message


def test_validate_rejects_token_without_oauth_prefix(tmp_path, monkeypatch):
    _write(tmp_path, "relay.toml", '[twitch]\nnick="bot"\nchannel="chan"\n[realtime]\nenabled=false\n')
    monkeypatch.setenv("TWITCH_OAUTH_TOKEN", "abc")
    cfg = load_config(base_dir=tmp_path)
    with pytest.raises(ConfigError, match="oauth:"):
        cfg.validate()
