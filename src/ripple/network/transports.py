from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ripple.network.types import HttpResponse


@dataclass
class FakeTransport:
    """
    Deterministic in-memory transport.

    Records every request and answers with the scripted statuses in order;
    once the script runs out it keeps answering ``default_status``.
    """
    statuses: List[int] = field(default_factory=list)
    default_status: int = 201
    requests: List[Dict[str, Any]] = field(default_factory=list)

    def post_json(
        self,
        url: str,
        *,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        self.requests.append({"url": url, "payload": dict(payload), "headers": dict(headers or {})})
        status = self.statuses.pop(0) if self.statuses else self.default_status
        return HttpResponse(status=int(status), headers={}, body=None)
