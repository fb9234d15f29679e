import logging
from dataclasses import replace
from typing import Any, List, Optional

from feed_scraper.adapters.base import ExtractionFlow, Run
from feed_scraper.config import REVIEWS_CONFIG
from feed_scraper.models import ExtractionResult, Item, Review
from feed_scraper.utils.dates import DateWindow, convert_date
from feed_scraper.utils.links import story_to_permalink

log = logging.getLogger(__name__)

REVIEWS_JS = """() => [...document.querySelectorAll('[data-sigil*="review"], #pages_msite_body_contents article')].map((el) => {
    const link = el.querySelector('a[href*="story_fbid"], a[href*="/posts/"], a[href*="/permalink"]');
    const time = el.querySelector('[data-utime]') || el.querySelector('abbr');
    const title = el.querySelector('header h3, strong');
    const text = el.querySelector('[data-sigil*="expose"], p');
    return {
        url: link ? link.href : null,
        date: time ? (time.dataset.utime || time.textContent) : null,
        title: title ? title.textContent.trim() : null,
        text: text ? text.innerText.trim() : null,
    };
})"""

LD_JS = """() => [...document.querySelectorAll('script[type="application/ld+json"]')].map((s) => {
    try { return JSON.parse(s.textContent); } catch (e) { return null; }
}).filter((s) => s)"""


class ReviewsFlow(ExtractionFlow):
    """
    Review discovery on a page's reviews tab.

    Reviews aren't listed newest first, so every review is kept while
    scrolling and the date window is applied once at the end.
    """

    name = "reviews"
    namespace = "getReviews"
    label = "reviews"
    payload_type = Review
    default_config = REVIEWS_CONFIG

    chronological = False
    any_redirect_is_login = True

    async def harvest(self, run: Run) -> Optional[List[Any]]:
        return await run.page.evaluate(REVIEWS_JS)

    def build_item(self, node: Any, run: Run) -> Optional[Item]:
        if not isinstance(node, dict) or not node.get("url"):
            return None
        date = convert_date(node.get("date"))
        review = Review(url=node["url"], date=date, title=node.get("title"), text=node.get("text"))
        return Item(key=review.url, timestamp=date, data=review)

    async def prepare(self, run: Run) -> bool:
        try:
            run.extra["ld"] = await run.page.evaluate(LD_JS) or []
        except Exception as e:
            log.debug("ld+json: %s", e)
            run.extra["ld"] = []
        nodes = await self.harvest(run)
        await self.accept_batch(run, nodes or [])
        return True

    def _in_window(self, review: Review, window: DateWindow) -> bool:
        if review.date is None:
            return window.min is None and window.max is None
        return window.accepts(review.date)

    def finish(self, run: Run, outcome: str, reason: Optional[str]) -> ExtractionResult:
        result = super().finish(run, outcome, reason)

        reviews = []
        for review in result.items:
            if not self._in_window(review, run.window):
                continue
            if "story_fbid" in review.url:
                review = replace(review, url=story_to_permalink(review.url) or review.url, canonical=review.url)
            reviews.append(review)

        rating = {}
        for ld in run.extra.get("ld") or []:
            if isinstance(ld, dict) and isinstance(ld.get("aggregateRating"), dict):
                rating = ld["aggregateRating"]
                break

        result.items = reviews
        result.total = len(reviews)
        result.extra = {
            "average": rating.get("ratingValue"),
            "count": rating.get("ratingCount"),
        }
        return result

