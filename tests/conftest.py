from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
for entry in (str(ROOT), str(ROOT / "src")):
    if entry not in sys.path:
        sys.path.insert(0, entry)

_CONFIG_ENV_VARS = (
    "RIPPLE_OPERATOR",
    "RIPPLE_VOTE_ELIGIBILITY",
    "RIPPLE_NETWORK_ENABLED",
    "RIPPLE_BASE_DIR",
    "RIPPLE_LOG_LEVEL",
    "TWITCH_NICK",
    "TWITCH_CHANNEL",
    "TWITCH_OAUTH_TOKEN",
    "SUPABASE_URL",
    "SUPABASE_KEY",
)


@pytest.fixture(autouse=True)
def _clean_config_env(monkeypatch):
    # Config must come from the test, never from the developer's shell.
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
