from __future__ import annotations

import time
from typing import Callable, Dict, Optional

import httpx

from permit_leads.permits.socrata import USER_AGENT


class PacedClient:
    """httpx client wrapper that waits ``delay_s`` between successive calls."""

    def __init__(
        self,
        http: Optional[httpx.Client] = None,
        *,
        timeout: float = 20.0,
        delay_s: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._owns_http = http is None
        self.http = http or httpx.Client(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, **(headers or {})},
            follow_redirects=True,
        )
        self.delay_s = max(0.0, float(delay_s))
        self._sleep = sleep
        self._calls = 0

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _pace(self) -> None:
        if self._calls and self.delay_s > 0:
            self._sleep(self.delay_s)
        self._calls += 1


def finish_batch_run(store, run_id: int, *, total: int, enriched: int) -> None:
    store.record_run_finish(
        run_id,
        status="completed",
        records_found=total,
        records_new=enriched,
        records_updated=0,
    )
