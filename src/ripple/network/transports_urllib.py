from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from ripple.network.types import HttpResponse


def _decode_body(raw: str) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@dataclass
class UrllibJsonTransport:
    """
    Real HTTP transport (standard library urllib).

    Never raises for HTTP-level failures: error statuses come back as an
    HttpResponse, and unreachable hosts as status 0.
    """
    user_agent: str
    timeout_seconds: int = 10

    def post_json(
        self,
        url: str,
        *,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        body_bytes = json.dumps(payload).encode("utf-8")
        req_headers: Dict[str, str] = {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if headers:
            for key, value in headers.items():
                req_headers[str(key)] = str(value)

        req = Request(url, headers=req_headers, data=body_bytes, method="POST")

        try:
            with urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
                headers_out: Dict[str, str] = {k.lower(): v for k, v in resp.headers.items()}
                return HttpResponse(status=int(resp.status), headers=headers_out, body=_decode_body(raw))

        except HTTPError as e:
            raw = ""
            try:
                raw = e.read().decode("utf-8", errors="replace")
            except OSError:
                pass
            headers_out = {k.lower(): v for k, v in e.headers.items()} if e.headers else {}
            return HttpResponse(status=int(e.code or 0), headers=headers_out, body=_decode_body(raw))

        except (URLError, TimeoutError) as e:
            return HttpResponse(status=0, headers={}, body={"error": "urlerror", "reason": str(e)})
