import logging
from typing import Any, List, Optional, Protocol

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from feed_scraper.adapters.base import ExtractionFlow, Run
from feed_scraper.config import POSTS_CONFIG
from feed_scraper.errors import ContentNeverLoaded
from feed_scraper.models import ExtractionResult, Item, Post, ResumableState
from feed_scraper.observer import is_json_response
from feed_scraper.utils.control import maybe_await
from feed_scraper.utils.dates import DateWindow, convert_date
from feed_scraper.utils.links import DESKTOP_ADDRESS, is_alias_path, story_to_permalink
from feed_scraper.utils.stream import ScrollSample

log = logging.getLogger(__name__)

# Mobile page feed: every story carries its tracking data as JSON in data-ft
POSTS_JS = """() => [...document.querySelectorAll('article[data-ft], div[data-ft][data-sigil*="story"]')].map((el) => {
    let ft = null;
    try { ft = JSON.parse(el.dataset.ft); } catch (e) {}
    const link = el.querySelector('a[href*="story.php"], a[href*="/posts/"], a[href*="/photos/"], a[href*="/videos/"]');
    return {
        url: link ? link.href : null,
        ft,
        isPinned: !!el.querySelector('[data-sigil*="pinned"], [aria-label*="Pinned"]'),
    };
})"""

LOADING_SELECTOR = '#pages_msite_body_contents [data-sigil*="loading"]:not([style])'

# Cover and profile picture changes show up in the feed as posts
SKIP_POST_TYPES = ("EntCoverPhotoEdgeStory", "EntProfilePictureEdgeStory")


class PostSink(Protocol):
    def enqueue(self, key: str, payload: dict) -> Any: ...


class PostsFlow(ExtractionFlow):
    """Post discovery: scroll the page feed and queue every in-range post permalink."""

    name = "posts"
    namespace = "getPostUrls"
    label = "posts"
    payload_type = Post
    default_config = POSTS_CONFIG

    postpone_on_batch = True
    never_loaded_on = ("exhausted", "quota", "over range")

    def __init__(self, config=None, *, loading_selector: Optional[str] = LOADING_SELECTOR,
                 skip_post_types=SKIP_POST_TYPES, **kwargs):
        super().__init__(config, **kwargs)
        self.loading_selector = loading_selector
        self.skip_post_types = tuple(skip_post_types)

    def matches(self, res) -> bool:
        # only used for the rate-limit check, posts come from the DOM
        return is_json_response(res)

    async def harvest(self, run: Run) -> Optional[List[Any]]:
        return await run.page.evaluate(POSTS_JS)

    def build_item(self, node: Any, run: Run) -> Optional[Item]:
        if not isinstance(node, dict):
            return None

        ft = node.get("ft") or {}
        if ft.get("story_attachment_style") == "scheduled_live_video_post":
            return None

        post_id = ft.get("top_level_post_id")
        page_id = ft.get("page_id")
        insights = (ft.get("page_insights") or {}).get(str(page_id)) or {}
        psn = insights.get("psn")
        publish_time = (insights.get("post_context") or {}).get("publish_time")

        if not post_id or not page_id or not psn or not publish_time or psn in self.skip_post_types:
            return None

        username = run.options.get("username")
        url = story_to_permalink(node.get("url"), username=username, post_id=str(post_id))
        if not url:
            return None

        date = convert_date(publish_time)
        pinned = bool(node.get("isPinned"))
        canonical = f"{DESKTOP_ADDRESS}/{username}/posts/{post_id}" if username else url

        log.debug("Post info", extra={"postUrl": url, "pinned": pinned, "date": str(date)})

        post = Post(url=url, post_id=str(post_id), username=username, date=date, canonical=canonical, is_pinned=pinned)
        return Item(key=url, timestamp=date, data=post, pinned=pinned)

    async def on_accept(self, item: Item, run: Run):
        sink = run.options.get("sink")
        post: Post = item.data
        if sink is None or is_alias_path(post.url):
            return
        added = await maybe_await(sink.enqueue(f"post-{post.post_id}", {
            "url": post.url,
            "postId": post.post_id,
            "username": post.username,
            "canonical": post.canonical,
            "label": "POST",
        }))
        if added is False:
            log.debug("[DUPE] %s already queued", post.url)

    async def cycle(self, sample: ScrollSample, run: Run) -> bool:
        if self.loading_selector and not run.page.is_closed() and not run.gate.settled:
            try:
                await run.page.wait_for_selector(self.loading_selector, timeout=self.config.loading_timeout * 1000,
                                                 state="attached")
                run.extra["loading_misses"] = 0
            except PlaywrightTimeoutError:
                misses = run.extra["loading_misses"] = run.extra.get("loading_misses", 0) + 1
                if len(run.acc) == 0 and misses > self.config.max_loading_misses:
                    run.gate.reject(ContentNeverLoaded("Posts are not loading", namespace=self.namespace, url=run.url))
                    return True
                return await self.maybe_stop(sample, run)

        return await super().cycle(sample, run)

    async def extract(self, page, *, max_items: Optional[int], window: Optional[DateWindow] = None,
                      state: Optional[ResumableState] = None, username: Optional[str] = None,
                      sink: Optional[PostSink] = None) -> ExtractionResult:
        """
        Collect up to `max_items` post permalinks from a page feed.

        Each new in-range post that isn't a group or profile.php alias is
        handed to `sink.enqueue` for the post crawler.
        """
        return await super().extract(page, max_items=max_items, window=window, state=state,
                                     username=username, sink=sink)
