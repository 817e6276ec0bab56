from __future__ import annotations

from typing import List

import pytest

from app.supervisor import ConnectRetriesExhausted, SupervisorConfig, connect_with_retry


def test_connect_succeeds_after_transient_failures() -> None:
    calls: List[int] = []
    sleeps: List[float] = []

    def _connect() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise OSError("network unreachable")
        return "session"

    result = connect_with_retry(connect=_connect, sleep_fn=sleeps.append)

    assert result == "session"
    assert len(calls) == 3
    assert sleeps == [5.0, 5.0]


def test_retries_are_bounded_to_three_after_first_attempt() -> None:
    sleeps: List[float] = []
    attempts: List[int] = []

    def _connect() -> None:
        attempts.append(1)
        raise RuntimeError("Twitch IRC auth failed: Login authentication failed")

    with pytest.raises(ConnectRetriesExhausted) as excinfo:
        connect_with_retry(connect=_connect, sleep_fn=sleeps.append)

    assert len(attempts) == 4
    assert sleeps == [5.0, 5.0, 5.0]
    assert excinfo.value.attempts == 4
    assert "auth failed" in str(excinfo.value.last_error)


def test_custom_policy_and_early_stop() -> None:
    sleeps: List[float] = []

    def _connect() -> None:
        raise OSError("down")

    with pytest.raises(ConnectRetriesExhausted):
        connect_with_retry(
            connect=_connect,
            cfg=SupervisorConfig(max_retries=5, retry_delay_seconds=1.5),
            sleep_fn=sleeps.append,
            should_continue=lambda: len(sleeps) < 2,
        )
    assert sleeps == [1.5, 1.5]
