from typing import Any, Dict, List, Optional, Set, Type

from feed_scraper.adapters.base import ExtractionFlow
from feed_scraper.adapters.comments import CommentsFlow
from feed_scraper.adapters.posts import PostsFlow
from feed_scraper.adapters.reviews import ReviewsFlow
from feed_scraper.browser import close_page, open_page
from feed_scraper.config import BrowserConfig, FlowConfig
from feed_scraper.errors import NoFlowError
from feed_scraper.models import ExtractionResult, ResumableState
from feed_scraper.utils.dates import DateWindow


# Every flow registered by the name used on the command line
FLOWS: Dict[str, Type[ExtractionFlow]] = {
    PostsFlow.name: PostsFlow,
    CommentsFlow.name: CommentsFlow,
    ReviewsFlow.name: ReviewsFlow,
}


def pick_flow(name: str, config: Optional[FlowConfig] = None) -> ExtractionFlow:
    """
    Returns a ready extraction flow for the given name.
    Example:
        "comments" -> CommentsFlow()
    """
    try:
        flow_cls = FLOWS[name.lower()]
    except KeyError:
        raise NoFlowError(f"No flow registered for {name!r}, expected one of {sorted(FLOWS)}") from None
    return flow_cls(config)


class ListSink:
    """In-memory stand-in for the post request queue."""

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self._keys: Set[str] = set()

    def enqueue(self, key: str, payload: Dict[str, Any]) -> bool:
        if key in self._keys:
            return False
        self._keys.add(key)
        self.requests.append({"uniqueKey": key, **payload})
        return True


async def crawl(
    url: str,
    flow: str = "posts",
    *,
    max_items: int = 100,
    window: Optional[DateWindow] = None,
    state: Optional[ResumableState] = None,
    browser: Optional[BrowserConfig] = None,
    config: Optional[FlowConfig] = None,
    **options: Any,
) -> ExtractionResult:
    """
    High-level entry point.
    Steps:
        1. Pick the flow.
        2. Open a browser and page, navigate to `url`.
        3. Let the flow scroll and collect until it stops.
        4. Close the browser (always, even on error).
    `state` is updated in place either way, so persist it after this returns
    or raises.
    """
    extractor = pick_flow(flow, config)

    pw, chromium, context, page = await open_page(browser)
    try:
        await page.goto(url, wait_until="domcontentloaded")
        return await extractor.extract(page, max_items=max_items, window=window, state=state, **options)
    finally:
        await close_page(pw, chromium, context)
