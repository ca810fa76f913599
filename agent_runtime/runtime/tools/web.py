from __future__ import annotations

import json as jsonlib
from typing import Any, Dict, Optional

import httpx

from agent_runtime.errors import ToolExecutionError
from agent_runtime.runtime.tools.sandbox import ToolScope

USER_AGENT = "agent_runtime/0.1"
METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")


async def http_request(
    scope: ToolScope,
    url: str,
    *,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    body: Optional[str] = None,
    json: Any = None,
    timeout_ms: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """
    Make an HTTP request and return status, headers and the (truncated) body.
    Responses with status >= 400 are reported as tool errors.
    """
    u = scope.check_url(url)
    m = str(method or "GET").upper()
    if m not in METHODS:
        raise ToolExecutionError(f"Unsupported HTTP method: {m}")

    timeout_s = scope.timeout_s
    if timeout_ms is not None:
        timeout_s = min(timeout_s, max(0.001, int(timeout_ms) / 1000.0))

    req_headers = {"User-Agent": USER_AGENT}
    req_headers.update({str(k): str(v) for k, v in (headers or {}).items()})

    async def _confine(request: httpx.Request) -> None:
        # every hop, redirects included
        scope.check_url(str(request.url))

    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            follow_redirects=True,
            headers=req_headers,
            transport=transport,
            event_hooks={"request": [_confine]},
        ) as client:
            if json is not None:
                r = await client.request(m, u, json=json)
            else:
                r = await client.request(m, u, content=body)
    except httpx.TimeoutException as e:
        raise ToolExecutionError(f"Request timed out: {u}") from e
    except httpx.HTTPError as e:
        raise ToolExecutionError(f"Request failed: {e}") from e

    out = {
        "status": int(r.status_code),
        "status_text": r.reason_phrase,
        "headers": dict(r.headers),
        "body": scope.truncate(r.text),
    }
    if r.status_code >= 400:
        raise ToolExecutionError(jsonlib.dumps(out, ensure_ascii=False))
    return out
