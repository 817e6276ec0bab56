from __future__ import annotations

import pytest

from ripple.normalizer import VoteEligibility, chat_event_from_twitch, normalize_chat_event
from ripple.types import CanonicalEvent, ChatEvent, EventType
from twitch.read_path import parse_line

OPERATOR = "iblackish_"


def _norm(event: ChatEvent, **kwargs):
    return normalize_chat_event(event, operator=OPERATOR, **kwargs)


def test_plain_chat_is_not_recognized() -> None:
    assert _norm(ChatEvent(sender="viewer", message="hello there")) == []


def test_cheer_uses_bit_count() -> None:
    out = _norm(ChatEvent(sender="Alice", message="Cheer100 nice", bits=100))
    assert out == [CanonicalEvent(EventType.CHEER, "alice", 100, "")]


def test_bits_and_resub_produce_two_separate_events() -> None:
    event = ChatEvent(sender="bob", message="still here", bits=50, sub_event="resub", months=7)
    out = _norm(event)
    assert [e.event_type for e in out] == [EventType.CHEER, EventType.SUBSCRIBE]
    assert out[0].amount == 50
    assert out[1].amount == 7
    assert out[1].payload == "still here"


def test_new_sub_without_months_counts_one() -> None:
    out = _norm(ChatEvent(sender="carol", sub_event="sub"))
    assert out == [CanonicalEvent(EventType.SUBSCRIBE, "carol", 1, "")]


def test_gift_sub_names_recipient() -> None:
    out = _norm(ChatEvent(sender="dave", sub_event="subgift", recipient="Erin"))
    assert out == [CanonicalEvent(EventType.GIFT_SUBSCRIPTION, "dave", 1, "gift sub to Erin")]


def test_mystery_gift_announcement_is_not_forwarded() -> None:
    assert _norm(ChatEvent(sender="ananonymousgifter", sub_event="anonsubmysterygift", gift_count=5)) == []
    assert _norm(ChatEvent(sender="dave", sub_event="submysterygift", gift_count=2)) == []


@pytest.mark.parametrize("text,choice", [("!1", "1"), ("!2", "2"), (" !3 ", "3")])
def test_vote_commands(text: str, choice: str) -> None:
    out = _norm(ChatEvent(sender="Voter", message=text))
    assert out == [CanonicalEvent(EventType.VOTE, "voter", 1, choice)]


@pytest.mark.parametrize("text", ["!4", "!1!", "!12", "vote !1", "!"])
def test_non_vote_commands_are_ignored(text: str) -> None:
    assert _norm(ChatEvent(sender="voter", message=text)) == []


def test_votes_are_open_to_everyone_by_default() -> None:
    out = _norm(ChatEvent(sender="lurker", message="!2"))
    assert [e.event_type for e in out] == [EventType.VOTE]


def test_subscriber_policy_drops_non_subscriber_votes() -> None:
    policy = VoteEligibility.SUBSCRIBERS
    assert _norm(ChatEvent(sender="lurker", message="!2"), eligibility=policy) == []
    sub = ChatEvent(sender="fan", message="!2", roles=frozenset({"subscriber"}))
    assert [e.payload for e in _norm(sub, eligibility=policy)] == ["2"]


def test_eligibility_parse() -> None:
    assert VoteEligibility.parse(None) is VoteEligibility.ALL
    assert VoteEligibility.parse(" Subscribers ") is VoteEligibility.SUBSCRIBERS
    with pytest.raises(ValueError):
        VoteEligibility.parse("mods")


@pytest.mark.parametrize("text", ["!attack", "!ATTACK", "  !Attack "])
def test_attack_is_case_insensitive(text: str) -> None:
    out = _norm(ChatEvent(sender="Knight", message=text))
    assert out == [CanonicalEvent(EventType.BOSS_ATTACK, "knight", 1, "")]


def test_operator_secret_start_carries_argument() -> None:
    out = _norm(ChatEvent(sender="iBlackish_", message="!ripple_start Boss Phase 2"))
    assert out == [CanonicalEvent(EventType.SECRET_START, "iblackish_", 1, "Boss Phase 2")]


def test_operator_secret_start_without_argument() -> None:
    out = _norm(ChatEvent(sender="iblackish_", message="!ripple_start"))
    assert out == [CanonicalEvent(EventType.SECRET_START, "iblackish_", 1, "")]


def test_non_operator_secret_commands_are_ignored() -> None:
    assert _norm(ChatEvent(sender="viewer", message="!ripple_start anything")) == []
    assert _norm(ChatEvent(sender="viewer", message="!ripple_end")) == []


def test_secret_end_requires_exact_text() -> None:
    assert [e.event_type for e in _norm(ChatEvent(sender="iblackish_", message="!ripple_end"))] == [
        EventType.SECRET_END
    ]
    assert _norm(ChatEvent(sender="iblackish_", message="!ripple_end now")) == []


def test_record_shape_matches_ingestion_table() -> None:
    record = CanonicalEvent(EventType.GIFT_SUBSCRIPTION, "dave", 3, "x").to_record()
    assert record == {"event_type": "channel.subscription.gift", "user_name": "dave", "amount": 3, "message": "x"}


def test_negative_amount_is_rejected() -> None:
    with pytest.raises(ValueError):
        CanonicalEvent(EventType.CHEER, "alice", -1, "")


def test_chat_event_from_tagged_privmsg() -> None:
    line = (
        "@badge-info=subscriber/8;badges=subscriber/6,bits/100;bits=100;display-name=Alice;"
        "mod=0;subscriber=1 :alice!alice@alice.tmi.twitch.tv PRIVMSG #iblackish_ :Cheer100 go"
    )
    msg = parse_line(line)
    assert msg is not None
    event = chat_event_from_twitch(msg, bot_nick="ripplebot")
    assert event.sender == "alice"
    assert event.display_name == "Alice"
    assert event.bits == 100
    assert event.roles == frozenset({"subscriber"})
    assert event.sub_event is None
    assert event.is_self is False


def test_chat_event_from_resub_usernotice() -> None:
    line = (
        "@badges=broadcaster/1;display-name=Bob;login=bob;msg-id=resub;"
        "msg-param-cumulative-months=12;system-msg=Bob\\ssubscribed :tmi.twitch.tv USERNOTICE #iblackish_ :a year!"
    )
    msg = parse_line(line)
    assert msg is not None
    event = chat_event_from_twitch(msg)
    assert event.sender == "bob"
    assert event.sub_event == "resub"
    assert event.months == 12
    assert event.message == "a year!"
    assert "broadcaster" in event.roles


def test_chat_event_marks_bot_messages_as_self() -> None:
    msg = parse_line(":ripplebot!ripplebot@ripplebot.tmi.twitch.tv PRIVMSG #iblackish_ :!1")
    assert msg is not None
    assert chat_event_from_twitch(msg, bot_nick="RippleBot").is_self is True


def test_chat_event_from_mystery_gift_usernotice() -> None:
    line = (
        "@display-name=Dave;login=dave;msg-id=submysterygift;msg-param-mass-gift-count=3 "
        ":tmi.twitch.tv USERNOTICE #iblackish_"
    )
    msg = parse_line(line)
    assert msg is not None
    event = chat_event_from_twitch(msg)
    assert event.sub_event == "submysterygift"
    assert event.gift_count == 3
