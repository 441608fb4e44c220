import asyncio
import logging
import ssl
from typing import Any

import httpx

from console_gateway.errors import (
    UpstreamError,
    UpstreamTrustError,
    UpstreamUnreachable,
)
from console_gateway.metrics import metrics


logger = logging.getLogger(__name__)

TLS_MARKERS = ("CERTIFICATE_VERIFY_FAILED", "certificate verify failed", "SSL", "CERT")


class RetryPolicy:
    def __init__(self, attempts: int, sleep_sec: float):
        self.attempts = attempts
        self.sleep_sec = sleep_sec


NO_RETRY = RetryPolicy(attempts=1, sleep_sec=0)


def _is_tls_failure(exc: BaseException) -> bool:
    cause: BaseException | None = exc
    while cause is not None:
        if isinstance(cause, ssl.SSLError):
            return True
        cause = cause.__cause__ or cause.__context__
    text = str(exc)
    return any(marker in text for marker in TLS_MARKERS)


def classify_transport_error(
    exc: httpx.RequestError, method: str, url: str
) -> UpstreamUnreachable | UpstreamTrustError | UpstreamError:
    detail = f"{method} {url}: {exc.__class__.__name__}: {exc}"
    if isinstance(exc, httpx.ConnectError) and _is_tls_failure(exc):
        return UpstreamTrustError(detail=detail)
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return UpstreamUnreachable(detail=detail)
    return UpstreamError(detail=detail)


def response_failure(response: httpx.Response) -> UpstreamError:
    body = (response.text or "").strip()
    status_code = response.status_code
    detail = f"HTTP {status_code}: {body[:240]}" if body else f"HTTP {status_code}"
    return UpstreamError(
        f"Upstream request failed: {status_code}",
        status_code=status_code,
        detail=detail,
    )


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    retry: RetryPolicy = NO_RETRY,
    **kwargs: Any,
) -> httpx.Response:
    """Send one upstream request, returning any response the upstream produced.

    Transport failures are retried according to ``retry`` and finally raised as
    domain errors. HTTP status handling is left to the caller.
    """
    for attempt in range(1, retry.attempts + 1):
        metrics.inc("upstream_requests_total")
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            logger.warning(
                "upstream request failed method=%s url=%s attempt=%s/%s error=%s",
                method,
                url,
                attempt,
                retry.attempts,
                exc.__class__.__name__,
            )
            if attempt == retry.attempts:
                error = classify_transport_error(exc, method, url)
                metrics.inc("upstream_failures_total", kind=error.kind)
                raise error from exc
        else:
            if response.status_code < 500 or attempt == retry.attempts:
                return response
            logger.warning(
                "upstream request failed method=%s url=%s attempt=%s/%s status=%s",
                method,
                url,
                attempt,
                retry.attempts,
                response.status_code,
            )
        await asyncio.sleep(retry.sleep_sec)
    raise UpstreamError(detail=f"{method} {url}: retry policy allows no attempts")


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    retry: RetryPolicy = NO_RETRY,
    **kwargs: Any,
) -> Any:
    """Send a request and unwrap the ``data`` member of the upstream envelope."""
    response = await send_request(client, method, url, retry, **kwargs)
    if response.is_error:
        failure = response_failure(response)
        metrics.inc("upstream_failures_total", kind=failure.kind)
        raise failure
    try:
        payload = response.json()
    except ValueError as exc:
        raise UpstreamError(
            "Upstream returned a malformed response",
            status_code=response.status_code,
            detail=f"{method} {url}: body is not JSON",
        ) from exc
    if not isinstance(payload, dict) or "data" not in payload:
        raise UpstreamError(
            "Upstream returned a malformed response",
            status_code=response.status_code,
            detail=f"{method} {url}: missing data envelope",
        )
    return payload["data"]
