from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional

from ripple.types import CanonicalEvent, ChatEvent, EventType, participant_id
from twitch.read_path import TwitchMsg

logger = logging.getLogger(__name__)

VOTE_COMMANDS = {"!1": "1", "!2": "2", "!3": "3"}
ATTACK_COMMAND = "!attack"
SECRET_START_COMMAND = "!ripple_start"
SECRET_END_COMMAND = "!ripple_end"

SUB_EVENTS = frozenset({"sub", "resub"})
GIFT_EVENTS = frozenset({"subgift", "anonsubgift"})
MYSTERY_GIFT_EVENTS = frozenset({"submysterygift", "anonsubmysterygift"})


class VoteEligibility(str, Enum):
    ALL = "all"
    SUBSCRIBERS = "subscribers"

    @classmethod
    def parse(cls, value: Optional[str]) -> "VoteEligibility":
        text = str(value or "").strip().lower()
        if not text:
            return cls.ALL
        for item in cls:
            if item.value == text:
                return item
        raise ValueError(f"unknown vote eligibility policy: {value!r}")


def is_vote_eligible(event: ChatEvent, eligibility: VoteEligibility) -> bool:
    if eligibility is VoteEligibility.ALL:
        return True
    return event.has_role("subscriber") or event.has_role("broadcaster")


def _gift_text(event: ChatEvent) -> str:
    recipient = str(event.recipient or "").strip()
    return f"gift sub to {recipient}" if recipient else "gift sub"


def normalize_chat_event(
    event: ChatEvent,
    *,
    operator: str,
    eligibility: VoteEligibility = VoteEligibility.ALL,
) -> List[CanonicalEvent]:
    """
    Map one chat occurrence to canonical events.

    Every rule is evaluated on its own; a resub that also carries bits yields
    both a cheer and a subscribe. An empty list means "not recognized".
    Votes returned here are candidates only: the relay still has to admit
    them through the PhaseGuard.
    """
    sender = participant_id(event.sender)
    message = str(event.message or "")
    stripped = message.strip()
    is_operator = bool(sender) and sender == participant_id(operator)
    out: List[CanonicalEvent] = []

    if event.bits > 0:
        out.append(CanonicalEvent(EventType.CHEER, sender, event.bits, ""))

    if event.sub_event in SUB_EVENTS:
        out.append(CanonicalEvent(EventType.SUBSCRIBE, sender, max(1, event.months), stripped))

    if event.sub_event in GIFT_EVENTS:
        out.append(CanonicalEvent(EventType.GIFT_SUBSCRIPTION, sender, 1, _gift_text(event)))
    elif event.sub_event in MYSTERY_GIFT_EVENTS:
        # Twitch follows up with one subgift per recipient; those carry the count.
        logger.debug("[Normalizer] mystery gift of %d from %s not forwarded", event.gift_count, sender)

    choice = VOTE_COMMANDS.get(stripped)
    if choice is not None:
        if is_vote_eligible(event, eligibility):
            out.append(CanonicalEvent(EventType.VOTE, sender, 1, choice))
        else:
            logger.debug("[Normalizer] vote from %s ignored by eligibility=%s", sender, eligibility.value)

    if stripped.lower() == ATTACK_COMMAND:
        out.append(CanonicalEvent(EventType.BOSS_ATTACK, sender, 1, ""))

    if is_operator:
        if message.startswith(SECRET_START_COMMAND):
            rest = message[len(SECRET_START_COMMAND):].strip()
            out.append(CanonicalEvent(EventType.SECRET_START, sender, 1, rest))
        if message == SECRET_END_COMMAND:
            out.append(CanonicalEvent(EventType.SECRET_END, sender, 1, ""))

    return out


def _int_tag(value: Optional[str]) -> int:
    try:
        return max(0, int(str(value or "0").strip() or 0))
    except (TypeError, ValueError):
        return 0


def _roles_from_tags(tags: dict) -> frozenset:
    badges = {
        part.split("/", 1)[0]
        for part in str(tags.get("badges", "") or "").split(",")
        if part
    }
    roles = set()
    if tags.get("subscriber") == "1" or "subscriber" in badges or "founder" in badges:
        roles.add("subscriber")
    if tags.get("mod") == "1" or "moderator" in badges:
        roles.add("moderator")
    if "broadcaster" in badges:
        roles.add("broadcaster")
    if tags.get("vip") == "1" or "vip" in badges:
        roles.add("vip")
    return frozenset(roles)


def chat_event_from_twitch(msg: TwitchMsg, *, bot_nick: str = "") -> ChatEvent:
    """Build a ChatEvent from a parsed PRIVMSG/USERNOTICE line."""
    tags = dict(msg.tags or {})
    sender = str(tags.get("login") or msg.nick or "").strip()
    sub_event = str(tags.get("msg-id", "")).strip().lower() if msg.command == "USERNOTICE" else ""
    months = _int_tag(tags.get("msg-param-cumulative-months")) or _int_tag(tags.get("msg-param-months"))
    gift_count = _int_tag(tags.get("msg-param-mass-gift-count"))
    recipient = (
        str(tags.get("msg-param-recipient-display-name") or tags.get("msg-param-recipient-user-name") or "").strip()
        or None
    )
    return ChatEvent(
        sender=sender,
        message=str(msg.message or ""),
        display_name=str(tags.get("display-name") or sender),
        roles=_roles_from_tags(tags),
        bits=_int_tag(tags.get("bits")),
        sub_event=sub_event or None,
        months=months,
        gift_count=gift_count,
        recipient=recipient,
        is_self=bool(bot_nick) and participant_id(sender) == participant_id(bot_nick),
    )
