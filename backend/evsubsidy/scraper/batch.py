"""Bounded-concurrency fetching over the full region list.

Regions are cut into consecutive batches of `concurrency_limit`. Every fetch
in a batch runs concurrently; the next batch starts only after the whole
batch has finished, plus a short pause so the portal is not hammered.

One region failing (even by raising) never touches its siblings: the
exception is turned into a failed RawFetchOutcome. Outcomes come back in
input order.

The browser host spans the whole run: it is entered before the first batch
and exited after the last, including when the run dies half-way.
"""

import asyncio
import datetime
import logging
from typing import AsyncContextManager, Awaitable, Callable

from evsubsidy.models import RawFetchOutcome, Region

logger = logging.getLogger(__name__)

Fetch = Callable[[Region], Awaitable[RawFetchOutcome]]


def batched(items: list, size: int) -> list[list]:
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchOrchestrator:
    def __init__(
        self,
        host_factory: Callable[[], AsyncContextManager],
        fetch_factory: Callable[[object], Fetch],
        concurrency_limit: int = 5,
        batch_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            host_factory: Returns the async context manager for the shared
                browser host (BrowserHost in production).
            fetch_factory: Given the entered host, returns the per-region
                fetch coroutine function (normally SessionRunner.fetch_region).
        """
        self.host_factory = host_factory
        self.fetch_factory = fetch_factory
        self.concurrency_limit = max(1, concurrency_limit)
        self.batch_delay = batch_delay
        self._sleep = sleep

    async def _guarded(self, fetch: Fetch, region: Region) -> RawFetchOutcome:
        try:
            return await fetch(region)
        except Exception as e:
            logger.error(f"{region.display_name}: fetch raised {type(e).__name__}: {e}")
            return RawFetchOutcome(
                region=region,
                success=False,
                attempts=1,
                error_message=str(e) or type(e).__name__,
                fetched_at=datetime.datetime.now(datetime.timezone.utc),
            )

    async def run_batches(self, fetch: Fetch, regions: list[Region]) -> list[RawFetchOutcome]:
        outcomes: list[RawFetchOutcome] = []
        batches = batched(list(regions), self.concurrency_limit)

        for number, batch in enumerate(batches, start=1):
            logger.info(
                f"Batch {number}/{len(batches)}: "
                f"{', '.join(r.display_name for r in batch)}"
            )
            results = await asyncio.gather(*(self._guarded(fetch, r) for r in batch))
            outcomes.extend(results)

            ok = sum(1 for r in results if r.success)
            logger.info(f"Batch {number}/{len(batches)} done: {ok}/{len(results)} succeeded")

            if number < len(batches) and self.batch_delay > 0:
                await self._sleep(self.batch_delay)

        return outcomes

    async def run_all(self, regions: list[Region]) -> list[RawFetchOutcome]:
        if not regions:
            return []
        async with self.host_factory() as host:
            fetch = self.fetch_factory(host)
            return await self.run_batches(fetch, regions)
