from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Mapping, Literal

import httpx


HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

RETRYABLE_STATUS_CODES = (408, 429, 500, 502, 503, 504)


@dataclass(frozen=True)
class HttpResult:
    ok: bool
    status_code: int | None
    detail: dict[str, Any]

    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False

    elapsed_ms: int | None = None
    response_headers: dict[str, str] | None = None


@dataclass(frozen=True)
class FetchResult:
    ok: bool
    status_code: int | None
    content: bytes = b""
    content_type: str | None = None

    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False


def _is_json_response(resp: httpx.Response) -> bool:
    ct = (resp.headers.get("content-type") or "").lower()
    return "application/json" in ct or ct.endswith("+json")


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + f"...(truncated, {len(s)} chars)"


class HubHttpClient:
    """
    Shared HTTP client wrapper for outbound calls (AI provider, image fetches).

    - Uses one AsyncClient instance (connection pooling).
    - Does NOT implement exponential backoff retries (the workflow engine handles it per stage).
    - Returns structured result with retryable classification.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        max_response_body_chars: int = 20_000,
        default_headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = httpx.Timeout(timeout_seconds)
        self._max_body = max_response_body_chars
        self._default_headers = dict(default_headers or {})
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=transport, follow_redirects=True)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request_json(
        self,
        *,
        method: HttpMethod,
        url: str,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
        request_id: str | None = None,
        timeout_seconds: float | None = None,
    ) -> HttpResult:
        # Merge headers (caller wins)
        h = dict(self._default_headers)
        if headers:
            h.update(dict(headers))
        if request_id and "X-Request-Id" not in h:
            h["X-Request-Id"] = request_id

        started = time.monotonic()
        try:
            resp = await self._client.request(
                method=method,
                url=url,
                headers=h,
                params=dict(params or {}),
                json=json_body,
                timeout=httpx.Timeout(timeout_seconds) if timeout_seconds else self._timeout,
            )
        except httpx.TimeoutException as e:
            return HttpResult(
                ok=False,
                status_code=None,
                detail={"error": "timeout"},
                error_code="TIMEOUT",
                error_message=str(e),
                retryable=True,
            )
        except httpx.RequestError as e:
            # DNS errors, connection refused, TLS, etc.
            return HttpResult(
                ok=False,
                status_code=None,
                detail={"error": "request_error"},
                error_code="REQUEST_ERROR",
                error_message=str(e),
                retryable=True,
            )
        elapsed_ms = int((time.monotonic() - started) * 1000)

        # Parse response
        detail: dict[str, Any]
        if _is_json_response(resp):
            try:
                parsed = resp.json()
                # Ensure dict payload (if API returns list/string, still keep it)
                detail = parsed if isinstance(parsed, dict) else {"data": parsed}
            except ValueError:
                detail = {"raw": _cap_text(resp.text, max_chars=self._max_body)}
        else:
            # Non-JSON response (HTML, text, etc.)
            detail = {
                "raw": _cap_text(resp.text, max_chars=self._max_body),
                "content_type": resp.headers.get("content-type"),
            }

        response_headers = {
            "x-request-id": resp.headers.get("x-request-id", ""),
            "retry-after": resp.headers.get("retry-after", ""),
        }

        if 200 <= resp.status_code < 300:
            return HttpResult(
                ok=True,
                status_code=resp.status_code,
                detail=detail,
                retryable=False,
                elapsed_ms=elapsed_ms,
                response_headers=response_headers,
            )

        retryable = resp.status_code in RETRYABLE_STATUS_CODES

        return HttpResult(
            ok=False,
            status_code=resp.status_code,
            detail=detail,
            error_code=f"HTTP_{resp.status_code}",
            error_message=f"HTTP {resp.status_code}",
            retryable=retryable,
            elapsed_ms=elapsed_ms,
            response_headers=response_headers,
        )

    async def post_json(self, *, url: str, headers: Mapping[str, str] | None = None, json_body: dict[str, Any] | None = None, request_id: str | None = None, timeout_seconds: float | None = None) -> HttpResult:
        return await self.request_json(method="POST", url=url, headers=headers, json_body=json_body, request_id=request_id, timeout_seconds=timeout_seconds)

    async def fetch_bytes(self, *, url: str, max_bytes: int, timeout_seconds: float | None = None) -> FetchResult:
        """
        Download a binary resource with a hard size ceiling.
        The body is streamed so an oversized response is abandoned early.
        """
        timeout = httpx.Timeout(timeout_seconds) if timeout_seconds else self._timeout
        try:
            async with self._client.stream("GET", url, headers=self._default_headers, timeout=timeout) as resp:
                if not (200 <= resp.status_code < 300):
                    return FetchResult(
                        ok=False,
                        status_code=resp.status_code,
                        error_code=f"HTTP_{resp.status_code}",
                        error_message=f"HTTP {resp.status_code}",
                        retryable=resp.status_code in RETRYABLE_STATUS_CODES,
                    )

                declared = resp.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    return FetchResult(
                        ok=False,
                        status_code=resp.status_code,
                        error_code="TOO_LARGE",
                        error_message=f"content-length {declared} exceeds {max_bytes}",
                    )

                chunks: list[bytes] = []
                received = 0
                async for chunk in resp.aiter_bytes():
                    received += len(chunk)
                    if received > max_bytes:
                        return FetchResult(
                            ok=False,
                            status_code=resp.status_code,
                            error_code="TOO_LARGE",
                            error_message=f"body exceeds {max_bytes} bytes",
                        )
                    chunks.append(chunk)

                return FetchResult(
                    ok=True,
                    status_code=resp.status_code,
                    content=b"".join(chunks),
                    content_type=resp.headers.get("content-type"),
                )
        except httpx.TimeoutException as e:
            return FetchResult(ok=False, status_code=None, error_code="TIMEOUT", error_message=str(e), retryable=True)
        except httpx.RequestError as e:
            return FetchResult(ok=False, status_code=None, error_code="REQUEST_ERROR", error_message=str(e), retryable=True)
