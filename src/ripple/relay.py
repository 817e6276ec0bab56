from __future__ import annotations

import logging
from typing import Callable, List

from ripple.normalizer import VoteEligibility, normalize_chat_event
from ripple.phase_guard import PhaseGuard
from ripple.types import CanonicalEvent, ChatEvent, EventType, ResetOrigin

logger = logging.getLogger(__name__)


class EventRelay:
    """
    Chat pipeline: Normalizer -> PhaseGuard -> sink.

    handle() is called from the single chat thread. It returns the events it
    handed to ``forward`` so callers and tests can see what was admitted.
    """

    def __init__(
        self,
        *,
        guard: PhaseGuard,
        forward: Callable[[CanonicalEvent], None],
        operator: str,
        eligibility: VoteEligibility = VoteEligibility.ALL,
    ) -> None:
        self._guard = guard
        self._forward = forward
        self._operator = operator
        self._eligibility = eligibility
        self.duplicate_votes = 0

    @property
    def guard(self) -> PhaseGuard:
        return self._guard

    def handle(self, event: ChatEvent) -> List[CanonicalEvent]:
        if event.is_self:
            return []
        candidates = normalize_chat_event(event, operator=self._operator, eligibility=self._eligibility)
        if not candidates:
            logger.debug("[Relay] ignored %s: %r", event.sender, event.message)
            return []

        admitted: List[CanonicalEvent] = []
        for candidate in candidates:
            if candidate.event_type is EventType.SECRET_START:
                # The new phase must be open before anything after this line is counted.
                self._guard.reset(ResetOrigin.OPERATOR_COMMAND)
            elif candidate.event_type is EventType.VOTE:
                if not self._guard.check_and_record(candidate.participant):
                    self.duplicate_votes += 1
                    logger.info(
                        "[Relay] duplicate vote rejected user=%s choice=%s",
                        candidate.participant,
                        candidate.payload,
                    )
                    continue
            logger.info("[Relay] %s detected from %s", candidate.event_type.value, candidate.participant)
            try:
                self._forward(candidate)
            except Exception as exc:
                logger.error("[Relay] forward failed for %s: %s", candidate.event_type.value, exc)
                continue
            admitted.append(candidate)
        return admitted
