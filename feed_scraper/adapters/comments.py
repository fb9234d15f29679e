import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import BaseModel, ConfigDict, ValidationError

from feed_scraper.adapters.base import Batch, ExtractionFlow, Run
from feed_scraper.config import COMMENTS_CONFIG
from feed_scraper.errors import ConsumerError
from feed_scraper.models import Comment, ExtractionResult, Item, ResumableState
from feed_scraper.utils.control import maybe_await
from feed_scraper.utils.dates import DateWindow, convert_date
from feed_scraper.utils.stream import ScrollSample

log = logging.getLogger(__name__)

COMMENT_MODES = ("RANKED_THREADED", "RANKED_UNFILTERED", "RECENT_ACTIVITY")

LOAD_COMMENTS = 'a[href*="/comment/replies"], [data-sigil*="feed-ufi-focus"], a[data-sigil*="expand"]'
COMMENTS_CONTAINER = '[data-sigil="comment"]'
COMMENT_ORDER = '[data-sigil*="comment-ordering"], a[href*="comment_order"]'
LOAD_MORE_COMMENTS = '[data-sigil*="replies-see-more"] a, a[data-sigil*="see-more-comments"], [id^="see_next_"] a'

# Clicking is brute force: keep trying until the comment list or the ordering toggle shows up
LOAD_COMMENTS_JS = """async ({ load, container, commentOrder }) => {
    let tries = 0;
    return new Promise((resolve) => {
        const tryLoad = () => {
            const loadComments = document.querySelector(load);
            if (document.querySelector(container) || document.querySelector(commentOrder)) {
                resolve(true);
                return;
            }
            tries++;
            if (loadComments) {
                loadComments.click();
            }
            if (tries < 30) {
                setTimeout(tryLoad, tries * 200);
            } else {
                resolve(false);
            }
        };
        setTimeout(tryLoad, 700);
    });
}"""

OPEN_ORDERING_JS = """(selector) => {
    const els = [...document.querySelectorAll(selector)];
    els.forEach((el) => el.click());
    return els.length > 0;
}"""

PICK_ORDERING_JS = """(mode) => {
    [...document.querySelectorAll('[role="menuitemcheckbox"]')]
        .map((el) => el.querySelector(`[data-ordering="${mode}"]`))
        .filter((el) => el)
        .forEach((el) => el.click());
}"""

LOAD_MORE_JS = """(selector) => {
    let clicks = 0;
    [...document.querySelectorAll(selector)]
        .filter((el) => !el.querySelector('i') && !el.closest('ul'))
        .forEach((el) => { el.click(); clicks++; });
    return clicks;
}"""

# rendered comments are already captured from the network, drop them to keep the DOM small
CLEANUP_JS = """() => {
    document.querySelectorAll('h6.accessible_elem ~ ul > li').forEach((el) => el.remove());
}"""


class _Uri(BaseModel):
    uri: Optional[str] = None


class CommentAuthor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    url: Optional[str] = None
    profile_picture_depth_0: Optional[_Uri] = None
    profile_picture_depth_1_legacy: Optional[_Uri] = None


class CommentBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: Optional[str] = None


class CommentNode(BaseModel):
    """One node under display_comments.edges."""
    model_config = ConfigDict(extra="ignore")

    id: str
    created_time: Union[int, float, str]
    author: Optional[CommentAuthor] = None
    body: Optional[CommentBody] = None
    url: Optional[str] = None


class PageInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    has_next_page: Optional[bool] = None


class DisplayComments(BaseModel):
    """data.feedback.display_comments from the GraphQL endpoint."""
    model_config = ConfigDict(extra="ignore")

    count: int = 0
    edges: List[Dict[str, Any]] = []
    page_info: Optional[PageInfo] = None


class CommentsFlow(ExtractionFlow):
    """
    Comment discovery on a single post.

    Comments are read from the GraphQL responses the page makes while we
    click "load more"; the DOM is only poked, never parsed.
    """

    name = "comments"
    namespace = "getPostComments"
    label = "comments"
    payload_type = Comment
    default_config = COMMENTS_CONFIG

    endpoint = "api/graphql/"

    def matches(self, res) -> bool:
        return self.endpoint in res.url

    def parse_payload(self, payload: Any, run: Run) -> Optional[Batch]:
        if not run.extra.get("can_add"):
            return None

        data = ((payload.get("data") or {}).get("feedback") or {}).get("display_comments") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            return None

        try:
            parsed = DisplayComments.model_validate(data)
        except ValidationError as e:
            log.debug("[SKIP] display_comments: %s", e)
            return None

        nodes = [edge["node"] for edge in parsed.edges if isinstance(edge, dict) and edge.get("node")]
        has_next = parsed.page_info.has_next_page if parsed.page_info else None
        return Batch(nodes=nodes, total=parsed.count or None, has_next=has_next)

    def build_item(self, node: Any, run: Run) -> Optional[Item]:
        try:
            parsed = CommentNode.model_validate(node)
        except ValidationError as e:
            log.debug("[SKIP] comment node: %s", e)
            return None

        author = parsed.author or CommentAuthor()
        picture = author.profile_picture_depth_0 or author.profile_picture_depth_1_legacy
        created = convert_date(parsed.created_time)

        comment = Comment(
            id=parsed.id,
            date=created,
            name=author.name,
            profile_url=author.url or None,
            profile_picture=picture.uri if picture else None,
            text=parsed.body.text if parsed.body else None,
            url=parsed.url,
        )
        return Item(key=parsed.id, timestamp=created, data=comment)

    async def on_accept(self, item: Item, run: Run):
        on_item = run.options.get("on_item")
        if on_item is None:
            return
        try:
            await maybe_await(on_item(item.data))
        except Exception as e:
            raise ConsumerError(f"Comment callback failed: {e}", namespace=self.namespace, url=run.url) from e

    async def _wait_for(self, page, selector: str, timeout: float, state: str = "visible"):
        try:
            await page.wait_for_selector(selector, timeout=timeout, state=state)
        except PlaywrightTimeoutError as e:
            log.debug("%s", e)

    async def prepare(self, run: Run) -> bool:
        page = run.page
        mode = run.options.get("mode") or "RANKED_THREADED"
        run.extra["click_tries"] = 0

        if mode in ("RANKED_UNFILTERED", "RANKED_THREADED"):
            run.extra["can_add"] = True

        log.debug("Trying to click load comments", extra={"url": run.url, "mode": mode})

        clicked = await page.evaluate(LOAD_COMMENTS_JS, {
            "load": LOAD_COMMENTS,
            "container": COMMENTS_CONTAINER,
            "commentOrder": COMMENT_ORDER,
        })
        if not clicked:
            log.debug("Load comment button not found", extra={"url": run.url})
            return False

        await self._wait_for(page, COMMENT_ORDER, 5000)

        if mode != "RANKED_THREADED":
            if await page.evaluate(OPEN_ORDERING_JS, COMMENT_ORDER):
                await self._wait_for(page, '[role="menuitemcheckbox"]', 15000)
                run.extra["can_add"] = True
                await page.evaluate(PICK_ORDERING_JS, mode)
                log.debug("Changed mode to %s", mode, extra={"url": run.url})
                await self._wait_for(page, LOAD_MORE_COMMENTS, 5000)
            else:
                log.warning('Comment ordering not found, using default "Most relevant"', extra={"url": run.url})

        run.extra["can_add"] = True
        return True

    async def maybe_stop(self, sample: ScrollSample, run: Run) -> bool:
        page = run.page
        if page.is_closed() or run.gate.settled:
            return True

        clicked = await page.evaluate(LOAD_MORE_JS, LOAD_MORE_COMMENTS)
        if not clicked:
            run.extra["click_tries"] += 1

        await asyncio.sleep(self.config.scroll_sleep)

        log.debug("Current clicks", extra={"url": run.url, "clicked": clicked, "clickTries": run.extra["click_tries"]})

        if page.is_closed() or run.gate.settled:
            return True
        if not sample.body_changed and run.extra["click_tries"] > self.config.exhausted_after:
            return True

        await page.evaluate(CLEANUP_JS)
        return run.acc.full or run.counter.is_over()

    async def extract(self, page, *, max_items: Optional[int], window: Optional[DateWindow] = None,
                      state: Optional[ResumableState] = None, mode: str = "RANKED_THREADED",
                      on_item: Optional[Callable[[Comment], Any]] = None) -> ExtractionResult:
        """
        Collect up to `max_items` comments, calling `on_item` for each new one.

        The upstream running count lowers `max_items` when the post has fewer
        comments. `result.total` is that running count.
        """
        if mode not in COMMENT_MODES:
            raise ValueError(f"Unknown comment mode {mode!r}, expected one of {COMMENT_MODES}")
        return await super().extract(page, max_items=max_items, window=window, state=state,
                                     mode=mode, on_item=on_item)
