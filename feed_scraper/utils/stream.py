import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from playwright._impl._errors import TargetClosedError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScrollSample:
    count: int              # cycles so far, starting at 1
    body_changed: bool
    scroll_changed: bool
    unchanged: int          # consecutive cycles where neither changed


MaybeStop = Callable[[ScrollSample], Awaitable[bool]]

# Scroll one step and report what the page looks like afterwards
SCROLL_JS = """(ratio) => {
    const step = Math.max(200, Math.floor((window.innerHeight || 900) * ratio));
    window.scrollBy(0, step);
}"""

SAMPLE_JS = """() => ({
    length: document.body ? document.body.innerHTML.length : 0,
    height: document.body ? document.body.scrollHeight : 0,
    y: window.scrollY,
})"""


async def scroll_until(
    page,
    maybe_stop: MaybeStop,
    *,
    sleep: float = 1.0,
    jitter: float = 0.0,
    step_ratio: float = 0.6,
    is_done: Optional[Callable[[], bool]] = None,
    max_cycles: Optional[int] = None,
) -> int:
    """
    Scroll, wait, sample, ask `maybe_stop`. Repeat.

    The driver knows nothing about network traffic; it only pokes the page so
    the page loads more. Stops when `maybe_stop` says so, when `is_done()`
    turns true, or when the page goes away. A cycle that blows up is logged
    and the next one runs. Returns the number of cycles.
    """
    count = 0
    unchanged = 0
    last = None

    while max_cycles is None or count < max_cycles:
        if page.is_closed() or (is_done and is_done()):
            break

        try:
            # one step down, then give the feed time to fetch the next page
            await page.evaluate(SCROLL_JS, step_ratio)
            delay = sleep + random.uniform(0, jitter)
            await page.wait_for_timeout(delay * 1000)

            if page.is_closed() or (is_done and is_done()):
                break

            # growth of the body or a moved viewport both count as change
            current = await page.evaluate(SAMPLE_JS)
            body_changed = last is None or (current.get("length"), current.get("height")) != (last.get("length"), last.get("height"))
            scroll_changed = last is None or current.get("y") != last.get("y")
            last = current

            count += 1
            unchanged = 0 if (body_changed or scroll_changed) else unchanged + 1

            sample = ScrollSample(count, body_changed, scroll_changed, unchanged)
            log.debug("[SCROLL] %s", sample)

            if await maybe_stop(sample):
                break
        except TargetClosedError:
            break
        except Exception as e:
            log.debug("[ERR ] scroll cycle %d: %s", count, e)
            # the page may be half gone here, wait on the loop instead
            await asyncio.sleep(sleep)

    return count
