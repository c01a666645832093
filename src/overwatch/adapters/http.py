"""Shared HTTP push helper for backend adapters.

The HTTP call uses `requests` executed in a worker thread. Transient failures
(429, 5xx, transport errors) are retried with exponential backoff and jitter,
bounded by both an attempt count and a total delay budget.
"""

from __future__ import annotations

import asyncio
import gzip
import json
import random
import time
from dataclasses import dataclass
from typing import Any

import requests

from ..errors import BackendHttpError


@dataclass(frozen=True)
class RetryPolicy:
    max_attempt: int = 3
    base_delay: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0


DEFAULT_RETRY_POLICY = RetryPolicy()


def is_retryable_error(exc: BaseException) -> bool:
    """Return True if the error is transient."""
    if isinstance(exc, BackendHttpError):
        # Retry 429 and all 5xx.
        return exc.status_code == 429 or exc.status_code >= 500

    # Network/transport errors.
    return isinstance(exc, requests.RequestException)


async def post_json(
    url: str,
    body: Any,
    *,
    headers: dict[str, str] | None = None,
    timeout_s: float = 10.0,
    compress: bool = False,
) -> Any:
    """POST a JSON body once, returning the decoded response (or None when empty).

    Raises:
    - `BackendHttpError` for non-2xx responses
    - `requests.RequestException` for transport errors
    """
    send_headers = {"Content-Type": "application/json", **(headers or {})}
    data = json.dumps(body, separators=(",", ":"), default=str).encode("utf-8")
    if compress:
        data = gzip.compress(data)
        send_headers["Content-Encoding"] = "gzip"

    def _do_request() -> Any:
        """Execute the HTTP request synchronously (runs in a worker thread)."""
        resp = requests.post(url, data=data, headers=send_headers, timeout=timeout_s)
        if 200 <= resp.status_code < 300:
            if not resp.content:
                return None
            try:
                return resp.json()
            except ValueError:
                return None

        error_payload: Any | None
        try:
            error_payload = resp.json()
        except Exception:  # noqa: BLE001 - best-effort parsing
            error_payload = resp.text or None
        raise BackendHttpError(status_code=resp.status_code, payload=error_payload)

    return await asyncio.to_thread(_do_request)


async def post_json_with_retries(
    url: str,
    body: Any,
    *,
    headers: dict[str, str] | None = None,
    timeout_s: float = 10.0,
    compress: bool = False,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> Any:
    """POST with retry/backoff on transient errors; re-raises the last failure."""
    attempt = 0
    start = time.monotonic()

    while True:
        try:
            return await post_json(url, body, headers=headers, timeout_s=timeout_s, compress=compress)
        except Exception as exc:  # noqa: BLE001 - classify and retry/raise
            attempt += 1
            if not is_retryable_error(exc):
                raise
            if attempt >= policy.max_attempt:
                raise

            delay = policy.base_delay * (policy.backoff_multiplier ** (attempt - 1))
            delay += random.uniform(0.0, delay * 0.1)  # small jitter

            if (time.monotonic() - start) + delay > policy.max_delay:
                raise
            await asyncio.sleep(delay)
