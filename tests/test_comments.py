import asyncio
from datetime import datetime

import pytest

from fakes import FakePage, FakeResponse, comment_node, comments_response

from feed_scraper.adapters.comments import CLEANUP_JS, LOAD_COMMENTS_JS, LOAD_MORE_JS, CommentsFlow
from feed_scraper.config import FlowConfig, RateLimitConfig
from feed_scraper.errors import ConsumerError, RateLimited, SessionInvalidated
from feed_scraper.models import Comment, ResumableState
from feed_scraper.utils.dates import DateWindow

POST_URL = "https://m.facebook.com/story.php?story_fbid=1&id=42"
LOGIN_REDIRECT = "https://m.facebook.com/login.php?next=https%3A%2F%2Fm.facebook.com%2Fstory.php"


def make_flow(**overrides):
    config = FlowConfig(
        idle_budget=2.0,
        scroll_sleep=0.01,
        exhausted_after=3,
        rate_limit=RateLimitConfig(backoff_step=0),
    )
    return CommentsFlow(config.with_overrides(**overrides))


def make_page(feed=None, *, load_more=1, loaded=True):
    return FakePage(POST_URL, feed=feed, scripts={
        LOAD_COMMENTS_JS: loaded,
        LOAD_MORE_JS: load_more,
        CLEANUP_JS: None,
    })


def seeded_state(*ids):
    items = []
    for i in ids:
        comment = make_flow().build_item(comment_node(i), None).data
        items.append((comment.id, comment.to_dict()))
    return ResumableState(items=items)


def extract(page, flow=None, **kwargs):
    flow = flow or make_flow()
    return asyncio.run(flow.extract(page, **kwargs))


def test_quota_stops_mid_batch():
    feed = [{"responses": [comments_response(range(n * 15, n * 15 + 15))]} for n in range(4)]
    page = make_page(feed)

    result = extract(page, max_items=50)

    assert result.outcome == "completed"
    assert result.reason == "quota"
    assert len(result.items) == 50
    assert [c.id for c in result.items[:3]] == ["c0", "c1", "c2"]
    assert isinstance(result.items[0], Comment)
    assert page.listener_count() == 0


def test_callback_sees_every_new_comment_once():
    seen = []
    feed = [
        {"responses": [comments_response([0, 1, 2])]},
        {"responses": [comments_response([1, 2, 3, 4])]},
    ]

    async def on_item(comment):
        seen.append(comment.id)

    result = extract(make_page(feed), max_items=5, on_item=on_item)

    assert seen == ["c0", "c1", "c2", "c3", "c4"]
    assert result.reason == "quota"


def test_running_count_lowers_quota():
    page = make_page([{"responses": [comments_response(range(5), count=5)]}])

    result = extract(page, max_items=50)

    assert result.reason == "quota"
    assert result.total == 5
    assert len(result.items) == 5


def test_no_next_page_ends_run():
    page = make_page([{"responses": [comments_response(range(3), has_next=False)]}])

    result = extract(page, max_items=50)

    assert result.reason == "no more pages"
    assert len(result.items) == 3


def test_rate_limit_is_fatal_and_keeps_state():
    errors = [FakeResponse(payload={"errors": [{"message": "Rate limit exceeded"}]}) for _ in range(21)]
    state = seeded_state(0, 1)

    with pytest.raises(RateLimited) as info:
        extract(make_page([{"responses": errors}]), max_items=50, state=state)

    assert info.value.namespace == "getPostComments"
    assert [key for key, _ in state.items] == ["c0", "c1"]


def test_twenty_errors_are_tolerated():
    errors = [FakeResponse(payload={"errors": [{"message": "Rate limit exceeded"}]}) for _ in range(20)]
    feed = [{"responses": errors}, {"responses": [comments_response(range(3))]}]

    result = extract(make_page(feed), max_items=3)

    assert result.reason == "quota"


def test_login_redirect_keeps_seeded_state():
    state = seeded_state(0, 1, 2)
    page = make_page([{"responses": [FakeResponse(LOGIN_REDIRECT, status=302)]}])

    with pytest.raises(SessionInvalidated):
        extract(page, max_items=50, state=state)

    assert [key for key, _ in state.items] == ["c0", "c1", "c2"]
    assert page.listener_count() == 0


def test_login_redirect_after_progress_persists_progress():
    state = seeded_state(0, 1)
    feed = [
        {"responses": [comments_response([2, 3, 4])]},
        {"responses": [FakeResponse(LOGIN_REDIRECT, status=302)]},
    ]

    with pytest.raises(SessionInvalidated):
        extract(make_page(feed), max_items=50, state=state)

    assert [key for key, _ in state.items] == ["c0", "c1", "c2", "c3", "c4"]


def test_retry_continues_from_state():
    state = seeded_state(0, 1)
    page = make_page([{"responses": [comments_response(range(5))]}])

    result = extract(page, max_items=5, state=state)

    assert result.reason == "quota"
    assert [c.id for c in result.items] == ["c0", "c1", "c2", "c3", "c4"]
    assert page.scrolls == 1
    assert len(state.items) == 5


def test_callback_failure_is_a_consumer_error():
    def on_item(comment):
        raise KeyError("storage full")

    with pytest.raises(ConsumerError):
        extract(make_page([{"responses": [comments_response([0])]}]), max_items=5, on_item=on_item)


def test_no_progress_aborts():
    page = make_page()

    result = extract(page, make_flow(idle_budget=0.2), max_items=5)

    assert result.aborted
    assert result.reason == "idle"
    assert result.items == []


def test_nothing_to_click_exhausts():
    page = make_page(load_more=0)

    result = extract(page, max_items=5)

    assert result.outcome == "completed"
    assert result.reason == "exhausted"


def test_load_comments_not_found():
    page = make_page(loaded=False)

    result = extract(page, max_items=5)

    assert result.reason == "not ready"
    assert page.scrolls == 0


def test_unknown_mode():
    with pytest.raises(ValueError):
        extract(make_page(), max_items=5, mode="OLDEST_FIRST")


def test_zero_quota_does_nothing():
    page = make_page()

    result = extract(page, max_items=0)

    assert result.reason == "nothing requested"
    assert page.evaluated == []


def test_retry_remembers_running_count():
    state = seeded_state(0, 1, 2)
    state.total = 5
    page = make_page([{"responses": [comments_response([3, 4], count=5)]}])

    result = extract(page, max_items=50, state=state)

    assert result.outcome == "completed"
    assert result.reason == "quota"
    assert len(result.items) == 5
    assert state.total == 5


def test_full_seed_never_touches_the_page():
    state = seeded_state(0, 1, 2, 3, 4)
    page = make_page([{"responses": [comments_response([5])]}])

    result = extract(page, max_items=5, state=state)

    assert result.reason == "quota"
    assert len(result.items) == 5
    assert page.scrolls == 0
    assert page.evaluated == []
    assert len(state.items) == 5
    assert page.listener_count() == 0


def test_naive_window_bounds():
    page = make_page([{"responses": [comments_response(range(3))]}])

    result = extract(page, max_items=3, window=DateWindow(min=datetime(2020, 1, 1)))

    assert result.reason == "quota"
    assert len(result.items) == 3


class EarlyResponsePage(FakePage):
    """Delivers a comments response while the load-comments click is still running."""

    async def evaluate(self, script, arg=None):
        if script == LOAD_COMMENTS_JS:
            self.evaluated.append(script)
            self.emit(comments_response([0]))
            await asyncio.sleep(0.01)
            return self.scripts[script]
        return await super().evaluate(script, arg)


@pytest.mark.parametrize("loaded", [True, False])
def test_callback_failure_during_prepare(loaded):
    def on_item(comment):
        raise KeyError("storage full")

    page = EarlyResponsePage(POST_URL, scripts={LOAD_COMMENTS_JS: loaded, LOAD_MORE_JS: 1, CLEANUP_JS: None})

    with pytest.raises(ConsumerError):
        extract(page, max_items=5, on_item=on_item)

    assert page.listener_count() == 0
