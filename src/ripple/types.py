from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class EventType(str, Enum):
    CHEER = "channel.cheer"
    SUBSCRIBE = "channel.subscribe"
    GIFT_SUBSCRIPTION = "channel.subscription.gift"
    VOTE = "vote"
    BOSS_ATTACK = "boss_attack"
    SECRET_START = "secret_start"
    SECRET_END = "secret_end"


class ResetOrigin(str, Enum):
    OPERATOR_COMMAND = "operator_command"
    EXTERNAL_NOTIFICATION = "external_notification"


def participant_id(name: Optional[str]) -> str:
    return str(name or "").strip().lower()


@dataclass(frozen=True)
class ChatEvent:
    """One parsed chat occurrence as delivered by the chat transport."""

    sender: str
    message: str = ""
    display_name: str = ""
    roles: FrozenSet[str] = field(default_factory=frozenset)
    bits: int = 0
    sub_event: Optional[str] = None
    months: int = 0
    gift_count: int = 0
    recipient: Optional[str] = None
    is_self: bool = False

    def has_role(self, role: str) -> bool:
        return role in self.roles


@dataclass(frozen=True)
class CanonicalEvent:
    event_type: EventType
    participant: str
    amount: int = 1
    payload: str = ""

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"amount must be >= 0, got {self.amount}")

    def to_record(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "user_name": self.participant,
            "amount": int(self.amount),
            "message": self.payload,
        }

    def describe(self) -> str:
        return f"{self.event_type.value} | {self.participant} | amount:{self.amount} | \"{self.payload}\""
