"""PhaseGuard: one counted vote per participant per voting phase.

The voter set is private to the guard; the chat pipeline and the reset
coordinator only ever go through ``check_and_record`` and ``reset``.
Both paths run on different threads, so every operation takes the same lock.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, Set

from ripple.types import ResetOrigin, participant_id

logger = logging.getLogger(__name__)


class PhaseGuard:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._voters: Set[str] = set()
        self._epoch = 0
        self._reset_counts: Dict[ResetOrigin, int] = {origin: 0 for origin in ResetOrigin}

    def check_and_record(self, participant: str) -> bool:
        """Admit ``participant``'s vote unless they already voted this phase."""
        key = participant_id(participant)
        if not key:
            return False
        with self._lock:
            if key in self._voters:
                return False
            self._voters.add(key)
            return True

    def reset(self, origin: ResetOrigin = ResetOrigin.OPERATOR_COMMAND) -> int:
        """Clear every recorded voter and open a new phase.

        Returns the number of voters that were cleared. Safe to call on an
        empty phase.
        """
        with self._lock:
            cleared = len(self._voters)
            self._voters.clear()
            self._epoch += 1
            self._reset_counts[origin] += 1
            epoch = self._epoch
        logger.info("[PhaseGuard] phase reset origin=%s cleared=%d epoch=%d", origin.value, cleared, epoch)
        return cleared

    def size(self) -> int:
        with self._lock:
            return len(self._voters)

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    def reset_counts(self) -> Dict[str, int]:
        with self._lock:
            return {origin.value: count for origin, count in self._reset_counts.items()}
