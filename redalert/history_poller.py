from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, List

import httpx

log = logging.getLogger("redalert.history")

DEFAULT_UA = "Mozilla/5.0 (redalert-monitor)"


class HistoryFetchError(RuntimeError):
    pass


class HistoryPoller:
    """
    Polls the alert-history endpoint and enqueues each raw batch (a list of records).

    Notes:
      - No import-time network, ever.
      - One request per tick with a hard timeout; a failed tick is logged and the next
        tick is the retry.
      - Dedup and relevance are not decided here: the history endpoint returns an
        overlapping window every time, and the monitor owns the dedup window.
    """

    def __init__(
        self,
        *,
        url: str,
        out_queue: "asyncio.Queue[list[Any]]",
        poll_seconds: float = 8.0,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_UA,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.out_queue = out_queue
        self.poll_seconds = max(1.0, float(poll_seconds))
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(float(timeout)),
            headers={
                "User-Agent": user_agent,
                "Accept": "application/json, text/plain, */*",
                "Referer": "https://www.oref.org.il/",
                "X-Requested-With": "XMLHttpRequest",
            },
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_history(self) -> List[Any]:
        try:
            r = await self._client.get(self.url)
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise HistoryFetchError(f"history fetch failed: {e}") from e

        # The endpoint answers with a BOM-prefixed body, and with an empty body when idle.
        text = r.content.decode("utf-8-sig", errors="replace").strip()
        if not text:
            return []
        try:
            data = json.loads(text)
        except ValueError as e:
            raise HistoryFetchError(f"history response is not JSON: {e}") from e
        if not isinstance(data, list):
            raise HistoryFetchError(f"history response is {type(data).__name__}, expected list")
        return data

    async def run_forever(self) -> None:
        log.info("History poller starting (poll=%ss url=%s)", self.poll_seconds, self.url)
        try:
            while True:
                t0 = time.monotonic()
                try:
                    batch = await self.fetch_history()
                    try:
                        self.out_queue.put_nowait(batch)
                    except asyncio.QueueFull:
                        log.warning("History queue full; dropping batch of %d records", len(batch))
                    log.debug("History poll: %d records", len(batch))
                except asyncio.CancelledError:
                    raise
                except HistoryFetchError as e:
                    log.warning("%s", e)
                except Exception:
                    log.exception("History poll loop error")

                # sleep to next poll, accounting for runtime
                elapsed = time.monotonic() - t0
                await asyncio.sleep(max(0.5, self.poll_seconds - elapsed))
        finally:
            await self.aclose()
