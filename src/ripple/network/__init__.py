from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ripple.config import RelayConfig
from ripple.network.types import HttpResponse, Transport


class NetworkDisabledError(RuntimeError):
    pass


@dataclass
class NetworkClient:
    """
    Outbound HTTP boundary.

    - Transport must be injected (urllib in production, fake in tests).
    - Hard-gated by cfg.network_enabled.
    """
    cfg: RelayConfig
    transport: Transport

    def post_json(
        self,
        url: str,
        *,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        if not self.cfg.network_enabled:
            raise NetworkDisabledError("Network is disabled by configuration")
        return self.transport.post_json(url, payload=payload, headers=headers)
