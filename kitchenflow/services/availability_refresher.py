"""
Client-side availability cache with debounced recomputation.

Stock, batch and recipe changes arrive in bursts (a delivery books twenty
batches at once). The refresher recomputes at most once per interval and
always runs once more after the last change of a burst, so the final state is
never missed.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from kitchenflow.schemas.changes import ResourceKind

logger = logging.getLogger(__name__)

Compute = Callable[[], Awaitable[Dict[str, Any]]]


class AvailabilityRefresher:
    """
    Keeps ``latest`` in sync with the Availability Engine for one client.

        refresher = AvailabilityRefresher(compute, interval=settings.AVAILABILITY_REFRESH_INTERVAL_SECONDS)
        await refresher.attach(relay)
    """

    RESOURCES = (ResourceKind.INVENTORY_ITEMS, ResourceKind.BATCHES, ResourceKind.RECIPES)

    def __init__(
        self,
        compute: Compute,
        interval: float = 5.0,
        on_update: Optional[Callable[[Dict[str, Any]], Any]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._compute = compute
        self.interval = interval
        self._on_update = on_update
        self._clock = clock
        self._last_run: Optional[float] = None
        self._pending: Optional[asyncio.Task] = None
        self._dirty = False
        self._subscriptions: List[Any] = []
        self.latest: Dict[str, Any] = {}
        self.runs = 0

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    # ==================== LIFECYCLE ====================

    async def attach(self, relay) -> None:
        for resource in self.RESOURCES:
            self._subscriptions.append(await relay.subscribe(resource, self.on_change))

    async def detach(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for sub in subscriptions:
            await sub.cancel()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            await asyncio.gather(self._pending, return_exceptions=True)
        self._pending = None

    # ==================== REFRESH ====================

    async def on_change(self, event) -> None:
        self.request_refresh()

    def request_refresh(self) -> None:
        """Schedule a recomputation, coalescing with one already scheduled or running."""
        if self._pending is not None and not self._pending.done():
            self._dirty = True
            return
        delay = 0.0
        if self._last_run is not None:
            delay = max(0.0, self.interval - (self._now() - self._last_run))
        self._pending = asyncio.create_task(self._run_after(delay))

    async def wait_idle(self) -> None:
        """Wait for any scheduled recomputation (including trailing ones) to finish."""
        while self._pending is not None and not self._pending.done():
            await asyncio.gather(self._pending, return_exceptions=True)

    async def refresh_now(self) -> Dict[str, Any]:
        self.latest = await self._compute()
        self._last_run = self._now()
        self.runs += 1
        if self._on_update is not None:
            self._on_update(self.latest)
        return self.latest

    async def _run_after(self, delay: float) -> None:
        while True:
            if delay > 0:
                await asyncio.sleep(delay)
            # Changes that arrived while waiting are covered by this run
            self._dirty = False
            try:
                await self.refresh_now()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Availability recomputation failed")
            if not self._dirty:
                return
            delay = self.interval
