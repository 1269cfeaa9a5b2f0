"""Bearer token cache for the analytics (ingestion) service."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
import time
from typing import Any, TypedDict

import aiohttp
from pydantic import ValidationError

from .const import (
    AUTH_PATH,
    DEFAULT_RENEW_SKEW_SECONDS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_BASE_MS,
    DEFAULT_RETRY_MAX_ATTEMPTS,
)
from .models import TokenResponse
from .sanitize import mask_identifier, redact_text

_LOGGER = logging.getLogger(__name__)

SleepCallable = Callable[[float], Awaitable[Any]]
ClockCallable = Callable[[], float]


class IngestionAuthError(Exception):
    """The credential endpoint could not issue a token."""


class ExpiryInfo(TypedDict):
    """Absolute expiry and remaining lifetime of the cached token."""

    expires_at: float
    seconds_remaining: int


class TokenCache:
    """Acquire and cache a bearer token with single-flight renewal."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        data_api_host: str,
        client_id: str,
        client_secret: str,
        *,
        renew_skew_seconds: float = DEFAULT_RENEW_SKEW_SECONDS,
        retry_base_ms: float = DEFAULT_RETRY_BASE_MS,
        retry_max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        clock: ClockCallable = time.time,
        sleep: SleepCallable = asyncio.sleep,
    ) -> None:
        """Initialise the cache with credentials and renewal policy."""

        if not data_api_host or not client_id or not client_secret:
            msg = "data_api_host, client_id and client_secret are required"
            raise ValueError(msg)
        self._session = session
        self._auth_url = f"{data_api_host.rstrip('/')}{AUTH_PATH}"
        self._client_id = client_id
        self._client_secret = client_secret
        self._renew_skew = max(float(renew_skew_seconds), 0.0)
        self._retry_base = max(float(retry_base_ms), 0.0) / 1000.0
        self._max_attempts = max(int(retry_max_attempts), 1)
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._clock = clock
        self._sleep = sleep
        self._token: str | None = None
        self._expires_at: float = 0.0
        self._inflight: asyncio.Task[str] | None = None
        self.renewals = 0

    def _about_to_expire(self) -> bool:
        """Return ``True`` when the token is absent or inside the skew window."""

        if not self._token:
            return True
        return self._clock() >= self._expires_at - self._renew_skew

    def is_token_valid(self) -> bool:
        """Return ``True`` when a cached token can be used without renewal."""

        return not self._about_to_expire()

    async def get_token(self) -> str:
        """Return the cached token, renewing it when needed.

        Concurrent callers arriving during a renewal await the same task, so
        only one credential request is ever in flight. A failed renewal is
        raised to every waiter.
        """

        if not self._about_to_expire():
            return self._token  # type: ignore[return-value]

        task = self._inflight
        if task is None:
            task = asyncio.get_running_loop().create_task(self._renew())
            self._inflight = task
            task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task[str]) -> None:
        """Forget the renewal task once it settles."""

        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark the exception retrieved; waiters already received it.
            task.exception()

    def invalidate(self) -> None:
        """Drop the cached token so the next ``get_token`` renews it."""

        self._token = None
        self._expires_at = 0.0

    def expiry_info(self) -> ExpiryInfo:
        """Return the absolute expiry and the whole seconds remaining."""

        remaining = int(max(0.0, self._expires_at - self._clock()))
        return {"expires_at": self._expires_at, "seconds_remaining": remaining}

    async def _renew(self) -> str:
        """Request a new token, retrying with exponential backoff."""

        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._request_token()
            except asyncio.CancelledError:
                raise
            except (
                aiohttp.ClientError,
                asyncio.TimeoutError,
                IngestionAuthError,
                ValidationError,
                ValueError,
            ) as err:
                _LOGGER.warning(
                    "Token request for client %s failed (attempt %d/%d): %s",
                    mask_identifier(self._client_id),
                    attempt,
                    self._max_attempts,
                    redact_text(str(err)),
                )
                if attempt >= self._max_attempts:
                    _LOGGER.error(
                        "Giving up on token renewal for client %s",
                        mask_identifier(self._client_id),
                    )
                    if isinstance(err, IngestionAuthError):
                        raise
                    raise IngestionAuthError(
                        f"Token renewal failed after {attempt} attempts"
                    ) from err
                await self._sleep(self._retry_base * (2 ** (attempt - 1)))

    async def _request_token(self) -> str:
        """POST the client credentials and store the returned token."""

        body = {"client_id": self._client_id, "client_secret": self._client_secret}
        _LOGGER.debug("Token POST %s", self._auth_url)
        self.renewals += 1
        async with self._session.post(
            self._auth_url,
            json=body,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=self._timeout,
        ) as resp:
            _LOGGER.debug("Token resp status=%s", resp.status)
            if resp.status < 200 or resp.status >= 300:
                try:
                    text = await resp.text()
                except Exception:  # noqa: BLE001 - body is informational only
                    text = "<no body>"
                raise IngestionAuthError(
                    f"Auth failed: HTTP {resp.status} {redact_text(text)}"
                )
            payload = await resp.json(content_type=None)

        token = TokenResponse.model_validate(payload)
        self._token = token.access_token
        self._expires_at = self._clock() + float(token.expires_in)
        _LOGGER.debug(
            "New token for client %s expires in ~%d min",
            mask_identifier(self._client_id),
            round(token.expires_in / 60),
        )
        return token.access_token


__all__ = ["ExpiryInfo", "IngestionAuthError", "TokenCache"]
