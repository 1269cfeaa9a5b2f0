"""Async client for the analytics (ingestion) totals endpoint."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
from pydantic import ValidationError

from .auth import TokenCache
from .const import DEFAULT_REQUEST_TIMEOUT, DEFAULT_TOTALS_PAGE_SIZE, TOTALS_PATH_FMT
from .domain.ids import ReconcilePeriod, ReconcileScope
from .models import TotalsPage, TotalsRow
from .sanitize import mask_identifier, redact_text

_LOGGER = logging.getLogger(__name__)

# Toggle to preview bodies in debug logs (redacted). Leave False by default.
API_LOG_PREVIEW = False


class IngestionRequestError(Exception):
    """A call to the analytics service failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        """Store the HTTP status alongside the message."""

        super().__init__(message)
        self.status = status


class IngestionClient:
    """Thin async client for period totals, authorised by ``TokenCache``."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        data_api_host: str,
        tokens: TokenCache,
        *,
        page_size: int = DEFAULT_TOTALS_PAGE_SIZE,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialise the client with its session and token source."""

        self._session = session
        self._api_base = data_api_host.rstrip("/")
        self._tokens = tokens
        self._page_size = max(int(page_size), 1)
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)

    @property
    def api_base(self) -> str:
        """Expose the analytics API base URL."""

        return self._api_base

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> Any:
        """Perform an authorised request and return the decoded JSON body.

        A 401 response invalidates the cached token and the call is retried
        exactly once with a fresh one. Errors are logged without secrets.
        """

        url = path if path.startswith("http") else f"{self._api_base}{path}"
        _LOGGER.debug("HTTP %s %s", method, url)

        for attempt in range(2):
            token = await self._tokens.get_token()
            headers = {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            }
            try:
                async with self._session.request(
                    method, url, headers=headers, timeout=self._timeout, **kwargs
                ) as resp:
                    try:
                        body_text = await resp.text()
                    except Exception:  # noqa: BLE001 - body is informational only
                        body_text = "<no body>"

                    if resp.status == 401 and attempt == 0:
                        _LOGGER.debug("HTTP %s -> 401; renewing token", url)
                        self._tokens.invalidate()
                        continue
                    if resp.status >= 400:
                        _LOGGER.error(
                            "HTTP error %s %s -> %s; body=%s",
                            method,
                            url,
                            resp.status,
                            redact_text(body_text),
                        )
                        raise IngestionRequestError(
                            f"HTTP {resp.status} for {method} {path}",
                            status=resp.status,
                        )
                    if API_LOG_PREVIEW:
                        _LOGGER.debug(
                            "HTTP %s -> %s, body[0:200]=%r",
                            url,
                            resp.status,
                            (redact_text(body_text) or "")[:200],
                        )
                    else:
                        _LOGGER.debug("HTTP %s -> %s", url, resp.status)
                    return await resp.json(content_type=None)
            except (IngestionRequestError, asyncio.CancelledError):
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as err:
                _LOGGER.error(
                    "Request %s %s failed (sanitized): %s",
                    method,
                    url,
                    redact_text(str(err)),
                )
                raise IngestionRequestError(
                    f"{method} {path} failed: {type(err).__name__}"
                ) from err
        raise IngestionRequestError("Unauthorized", status=401)

    async def fetch_totals(
        self, scope: ReconcileScope, period: ReconcilePeriod
    ) -> list[TotalsRow]:
        """Return every totals row for ``scope`` over ``period``, all pages."""

        path = TOTALS_PATH_FMT.format(
            customer_id=scope.customer_id, domain=scope.domain
        )
        rows: list[TotalsRow] = []
        page = 1
        while True:
            params = {
                "startTime": period.start_iso,
                "endTime": period.end_iso,
                "deep": "1",
                "page": page,
                "limit": self._page_size,
            }
            payload = await self._request("GET", path, params=params)
            try:
                parsed = TotalsPage.model_validate(payload)
            except ValidationError as err:
                raise IngestionRequestError(
                    f"Malformed totals page {page}: {err.error_count()} errors"
                ) from err
            rows.extend(parsed.data)
            if page >= parsed.pages:
                break
            page += 1

        _LOGGER.debug(
            "Totals for customer %s (%s): %d rows over %d page(s)",
            mask_identifier(scope.customer_id),
            scope.domain,
            len(rows),
            page,
        )
        return rows


__all__ = ["IngestionClient", "IngestionRequestError"]
