"""Paged JSON fetches against Socrata (SODA) open-data endpoints."""
from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import httpx


logger = logging.getLogger("pl.socrata")

USER_AGENT = "PermitLeadsBot/1.0 (+permit lead pipeline)"
RETRY_STATUS = {429, 500, 502, 503, 504}


class SourceFetchError(RuntimeError):
    """Upstream fetch failed (non-2xx, timeout, bad payload) after retries."""


def _soql_quote(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def build_where(
    *,
    permit_types: Sequence[str],
    min_valuation: float,
    valuation_expr: str = "valuation::number",
    date_field: Optional[str] = None,
    from_date: Optional[str] = None,
) -> str:
    clauses: List[str] = []
    types = [t for t in permit_types if t]
    if types:
        clauses.append(
            "(" + " OR ".join(f"permit_type={_soql_quote(t)}" for t in types) + ")"
        )
    if min_valuation and min_valuation > 0:
        clauses.append(f"{valuation_expr} > {int(min_valuation)}")
    if date_field and from_date:
        # Validates the date before it reaches the query string.
        day = date.fromisoformat(str(from_date)[:10])
        clauses.append(f"{date_field} >= {_soql_quote(day.isoformat())}")
    return " AND ".join(clauses)


def compute_backoff_delays(retries: int, base_delay: float = 1.0, factor: float = 2.0, cap: float = 16.0) -> List[float]:
    delays = []
    current = base_delay
    for _ in range(max(0, int(retries))):
        delays.append(min(current, cap))
        current *= factor
    return delays


class SocrataClient:
    def __init__(
        self,
        http: Optional[httpx.Client] = None,
        *,
        timeout: float = 30.0,
        delay_s: float = 0.5,
        retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._owns_http = http is None
        self.http = http or httpx.Client(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            follow_redirects=True,
        )
        self.delay_s = max(0.0, float(delay_s))
        self.retries = max(0, int(retries))
        self._sleep = sleep
        self._last_call: Optional[float] = None

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> "SocrataClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _pace(self) -> None:
        if self._last_call is not None and self.delay_s > 0:
            self._sleep(self.delay_s)
        self._last_call = time.monotonic()

    def fetch_page(
        self,
        url: str,
        *,
        where: str,
        order: str,
        limit: int,
        offset: int,
    ) -> List[Dict[str, Any]]:
        params = {"$limit": str(int(limit)), "$offset": str(int(offset)), "$order": order}
        if where:
            params["$where"] = where

        delays = compute_backoff_delays(self.retries)
        last_err: Optional[str] = None
        for attempt in range(len(delays) + 1):
            self._pace()
            try:
                resp = self.http.get(url, params=params)
            except httpx.HTTPError as e:
                last_err = f"{type(e).__name__}: {e}"
            else:
                if resp.status_code < 400:
                    try:
                        data = resp.json()
                    except ValueError as e:
                        raise SourceFetchError(f"Invalid JSON from {url}: {e}") from e
                    if not isinstance(data, list):
                        raise SourceFetchError(f"Unexpected payload from {url}: {type(data).__name__}")
                    return [row for row in data if isinstance(row, dict)]
                last_err = f"HTTP {resp.status_code}"
                if resp.status_code not in RETRY_STATUS:
                    break

            if attempt < len(delays):
                logger.warning(
                    "retrying fetch",
                    extra={"url": url, "offset": offset, "attempt": attempt + 1, "error": last_err},
                )
                self._sleep(delays[attempt])

        raise SourceFetchError(f"Failed to fetch {url} (offset {offset}): {last_err}")

    def iter_pages(
        self,
        url: str,
        *,
        where: str,
        order: str,
        page_size: int,
        max_records: int,
    ) -> Iterator[List[Dict[str, Any]]]:
        page_size = max(1, int(page_size))
        offset = 0
        while True:
            rows = self.fetch_page(url, where=where, order=order, limit=page_size, offset=offset)
            logger.info("fetched page", extra={"url": url, "offset": offset, "rows": len(rows)})
            yield rows
            if len(rows) < page_size:
                return
            offset += page_size
            if offset >= max_records:
                logger.warning("record cap reached", extra={"url": url, "max_records": max_records})
                return
