import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from feed_scraper.config import FlowConfig
from feed_scraper.errors import IdleAbortError, ScraperError
from feed_scraper.models import ExtractionResult, Item, Record, ResumableState
from feed_scraper.observer import LOGIN_MARKERS, RateLimitState, ResponseObserver
from feed_scraper.utils.accumulator import Accumulator
from feed_scraper.utils.control import CompletionGate, IdleAbort
from feed_scraper.utils.dates import DateWindow, RangeCounter
from feed_scraper.utils.stream import ScrollSample, scroll_until

log = logging.getLogger(__name__)


@dataclass
class Batch:
    """One chunk of raw nodes plus whatever pagination hints came with it."""
    nodes: List[Any] = field(default_factory=list)
    total: Optional[int] = None
    has_next: Optional[bool] = None


class Run:
    """All the state of one extraction call. Only the accumulator outlives it."""

    def __init__(self, flow: "ExtractionFlow", page, *, max_items: int, window: DateWindow,
                 state: ResumableState, options: Dict[str, Any]):
        self.flow = flow
        self.page = page
        self.url = page.url
        self.window = window
        self.state = state
        self.options = options
        self.max_items = max_items

        seed = [(key, flow.payload_type.from_dict(data)) for key, data in state.items]
        self.acc: Accumulator = Accumulator(max_items, seed=seed)
        self.total = state.total
        # a running count learned on an earlier attempt still caps this one
        self.acc.tighten(self.total)

        self.counter = RangeCounter(window, flow.config.over_range_threshold)
        self.gate = CompletionGate()
        self.control = IdleAbort(flow.config.idle_budget)
        self.observer: Optional[ResponseObserver] = None
        self.extra: Dict[str, Any] = {}     # flow-private counters

        self.started = time.monotonic()
        self._last_logged = len(self.acc)

    def persist(self):
        self.state.items = [(key, item.to_dict()) for key, item in self.acc.snapshot()]
        self.state.total = self.total

    def log_progress(self, **extra):
        if len(self.acc) != self._last_logged:
            self._last_logged = len(self.acc)
            log.info("Current %s %d/%d", self.flow.label, len(self.acc), self.acc.limit,
                     extra={"url": self.url, **extra})

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started


class ExtractionFlow:
    """
    Base class for the three extraction flows.

    A flow plugs page-specific bits into one shared engine: a scroll loop
    that keeps the page loading, a response observer that reads the data
    endpoint, a range counter, an accumulator and an idle deadline. Items
    can come from either side (`harvest` during scroll cycles or
    `parse_payload` from responses) and go through `accept_batch`.
    """

    name: str = "base"
    namespace: str = "extract"
    label: str = "items"
    payload_type = Record
    default_config: FlowConfig = FlowConfig()

    chronological: bool = True          # classify through the range counter
    postpone_on_batch: bool = False     # any non-empty batch counts as progress
    login_markers = LOGIN_MARKERS
    any_redirect_is_login: bool = False
    never_loaded_on = ("exhausted",)    # stop reasons that check the empty-batch heuristic

    def __init__(self, config: Optional[FlowConfig] = None, sleep=asyncio.sleep):
        self.config = config or self.default_config
        self.sleep = sleep

    # ------------------------------------------------------------------ hooks

    async def prepare(self, run: Run) -> bool:
        """Runs before the engine starts. Returning False skips the run entirely."""
        return True

    def matches(self, res) -> bool:
        """Is this response the data endpoint?"""
        return False

    def parse_payload(self, payload: Any, run: Run) -> Optional[Batch]:
        return None

    async def harvest(self, run: Run) -> Optional[List[Any]]:
        """Read nodes straight from the page during a scroll cycle."""
        return None

    def build_item(self, node: Any, run: Run) -> Optional[Item]:
        raise NotImplementedError

    async def on_accept(self, item: Item, run: Run):
        pass

    async def maybe_stop(self, sample: ScrollSample, run: Run) -> bool:
        return (
            run.gate.settled
            or run.acc.full
            or (self.chronological and run.counter.is_over())
            or sample.unchanged > self.config.exhausted_after
        )

    def finish(self, run: Run, outcome: str, reason: Optional[str]) -> ExtractionResult:
        return ExtractionResult(
            namespace=self.namespace,
            url=run.url,
            outcome=outcome,
            reason=reason,
            items=run.acc.values(),
            total=run.total or len(run.acc),
            stats=run.counter.stats(),
            elapsed=run.elapsed,
        )

    # ----------------------------------------------------------------- engine

    def stop(self, run: Run, reason: str):
        if run.gate.settled:
            return
        if reason in self.never_loaded_on and run.counter.failing:
            try:
                run.counter.check(self.namespace, run.url, f"Failed to load {self.label}")
            except ScraperError as e:
                run.gate.reject(e)
                return
        log.debug("[STOP] %s: %s", self.namespace, reason, extra={"size": len(run.acc), **run.counter.stats()})
        run.gate.resolve(reason)

    def check_done(self, run: Run, has_next: Optional[bool] = None):
        if run.acc.full:
            self.stop(run, "quota")
        elif has_next is False:
            self.stop(run, "no more pages")
        elif self.chronological and run.counter.is_over():
            self.stop(run, "over range")

    async def accept_batch(self, run: Run, nodes: List[Any], *, total: Optional[int] = None,
                           has_next: Optional[bool] = None) -> int:
        """Classify and store a batch. Returns how many items were new and accepted."""
        if total is not None:
            run.total = max(run.total, total)
            run.acc.tighten(total)

        run.counter.add(len(nodes))
        if nodes and self.postpone_on_batch:
            run.control.postpone()

        accepted = 0
        for node in nodes:
            if run.gate.settled or run.acc.full:
                break

            item = self.build_item(node, run)
            if item is None or item.key in run.acc:
                continue

            if not self.chronological:
                ok = True
            elif item.pinned:
                # pinned items sit out of order, keep them away from the streak
                ok = run.window.accepts(item.timestamp)
            else:
                ok = run.counter.time(item.timestamp)

            if not ok:
                continue

            run.acc.add(item.key, item.data)
            accepted += 1
            run.control.postpone()
            await self.on_accept(item, run)

        self.check_done(run, has_next)
        return accepted

    async def _on_payload(self, payload: Any, res, run: Run):
        batch = self.parse_payload(payload, run)
        if batch is None:
            return
        await self.accept_batch(run, batch.nodes, total=batch.total, has_next=batch.has_next)

    async def cycle(self, sample: ScrollSample, run: Run) -> bool:
        if run.page.is_closed() or run.gate.settled:
            return True

        try:
            nodes = await self.harvest(run)
            if nodes is not None:
                await self.accept_batch(run, nodes)
        except ScraperError as e:
            run.gate.reject(e)
            return True

        run.log_progress(count=sample.count, bodyChanged=sample.body_changed, scrollChanged=sample.scroll_changed)
        return await self.maybe_stop(sample, run)

    def _exit_reason(self, run: Run) -> str:
        if run.page.is_closed():
            return "closed"
        if run.acc.full:
            return "quota"
        if self.chronological and run.counter.is_over():
            return "over range"
        return "exhausted"

    async def _drive(self, run: Run):
        await scroll_until(
            run.page,
            lambda sample: self.cycle(sample, run),
            sleep=self.config.scroll_sleep,
            jitter=self.config.scroll_jitter,
            step_ratio=self.config.step_ratio,
            is_done=lambda: run.gate.settled,
        )
        self.stop(run, self._exit_reason(run))
        return await run.gate.wait()

    async def extract(
        self,
        page,
        *,
        max_items: Optional[int],
        window: Optional[DateWindow] = None,
        state: Optional[ResumableState] = None,
        **options: Any,
    ) -> ExtractionResult:
        """
        Run the flow on an already opened page.

        `state` is read at the start and always written back before returning
        or raising, so a retry with the same state picks up where this left off.

        Raises:
            ScraperError: SessionInvalidated, RateLimited, ContentNeverLoaded
                or ConsumerError. The state is persisted first.
        """
        state = state if state is not None else ResumableState()
        window = window or DateWindow()

        if not max_items:
            return ExtractionResult(namespace=self.namespace, url=page.url, outcome="completed",
                                    reason="nothing requested", total=state.total)

        run = Run(self, page, max_items=max_items, window=window, state=state, options=options)
        run.observer = ResponseObserver(
            page,
            run.gate,
            namespace=self.namespace,
            matches=self.matches,
            on_payload=lambda payload, res: self._on_payload(payload, res, run),
            rate=RateLimitState(self.config.rate_limit),
            login_markers=self.login_markers,
            any_redirect_is_login=self.any_redirect_is_login,
            sleep=self.sleep,
        )

        log.debug("[START] %s", self.namespace, extra={"url": run.url, "max": max_items, "seeded": len(run.acc)})

        outcome, reason = "completed", None
        run.observer.attach()
        try:
            if run.acc.full:
                # the seeded items already meet the quota, don't touch the page
                run.gate.resolve("quota")
                reason = "quota"
            elif await self.prepare(run) or run.gate.settled:
                run.observer.arm()
                run.control.start()
                reason = await run.control.run(run.gate.wait(), self._drive(run))
            else:
                reason = "not ready"
        except IdleAbortError:
            run.counter.check(self.namespace, run.url, f"Failed to load {self.label}")
            log.warning("[ABORT] Loading of %s aborted", self.label, extra={"url": run.url, **run.counter.stats()})
            outcome, reason = "aborted", "idle"
        finally:
            run.persist()
            run.gate.close()
            run.observer.detach()

        result = self.finish(run, outcome, reason)
        log.info("Got %d %s in %.1fs", len(result.items), self.label, run.elapsed, extra={"url": run.url})
        return result
