import asyncio
from typing import Any, Callable, Dict, List, Optional

from feed_scraper.utils.stream import SAMPLE_JS, SCROLL_JS

GRAPHQL_URL = "https://m.facebook.com/api/graphql/"


class FakeResponse:
    def __init__(self, url: str = GRAPHQL_URL, status: int = 200, payload: Any = None,
                 headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.status = status
        self._payload = payload
        self.headers = headers if headers is not None else {"content-type": "application/json"}

    async def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakePage:
    """
    Just enough of playwright's async Page for the engine.

    `feed[n]` is what the n-th scroll produces: responses to emit and DOM
    nodes to append. Responses are delivered as separate tasks, the way
    Playwright schedules async event handlers, so they land while the
    engine sleeps. The page only grows while the feed has steps left.
    """

    def __init__(self, url: str = "https://m.facebook.com/somepage", *, feed: Optional[List[Dict[str, Any]]] = None,
                 scripts: Optional[Dict[str, Any]] = None, dom_script: Optional[str] = None):
        self.url = url
        self.feed = list(feed or [])
        self.scripts = dict(scripts or {})
        self.dom: List[Any] = []
        self.listeners: Dict[str, List[Callable]] = {}
        self.closed = False
        self.scrolls = 0
        self.height = 1000
        self.y = 0
        self.tasks: List[asyncio.Task] = []
        self.evaluated: List[str] = []
        self.waits: List[float] = []
        if dom_script:
            self.scripts[dom_script] = lambda arg: list(self.dom)

    def on(self, event: str, handler: Callable):
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable):
        self.listeners[event].remove(handler)

    def listener_count(self, event: str = "response") -> int:
        return len(self.listeners.get(event, []))

    def is_closed(self) -> bool:
        return self.closed

    def emit(self, response: FakeResponse):
        for handler in list(self.listeners.get("response", [])):
            self.tasks.append(asyncio.ensure_future(handler(response)))

    async def goto(self, url: str, **kwargs):
        self.url = url

    async def wait_for_selector(self, selector: str, **kwargs):
        return None

    async def wait_for_timeout(self, timeout: float):
        self.waits.append(timeout)
        await asyncio.sleep(timeout / 1000)

    async def evaluate(self, script: str, arg: Any = None):
        self.evaluated.append(script)

        if script == SCROLL_JS:
            self.scrolls += 1
            if self.scrolls <= len(self.feed):
                step = self.feed[self.scrolls - 1]
                self.dom.extend(step.get("nodes", []))
                for response in step.get("responses", []):
                    self.emit(response)
                self.height += 500
                self.y += 500
            return None

        if script == SAMPLE_JS:
            return {"length": self.height, "height": self.height, "y": self.y}

        handler = self.scripts.get(script)
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(arg)
        return handler


BASE_TS = 1_700_000_000     # 2023-11-14T22:13:20Z


def comment_node(i: int, ts: Optional[int] = None) -> Dict[str, Any]:
    return {
        "id": f"c{i}",
        "created_time": BASE_TS - i * 60 if ts is None else ts,
        "author": {
            "name": f"User {i}",
            "url": f"https://www.facebook.com/user{i}",
            "profile_picture_depth_0": {"uri": f"https://scontent.example/u{i}.jpg"},
        },
        "body": {"text": f"comment number {i}"},
        "url": f"https://www.facebook.com/somepage/posts/1?comment_id=c{i}",
    }


def comments_payload(ids, *, count: Optional[int] = None, has_next: Optional[bool] = True) -> Dict[str, Any]:
    page_info = {} if has_next is None else {"has_next_page": has_next}
    return {"data": {"feedback": {"display_comments": {
        "count": count if count is not None else 0,
        "edges": [{"node": comment_node(i)} for i in ids],
        "page_info": page_info,
    }}}}


def comments_response(ids, **kwargs) -> FakeResponse:
    return FakeResponse(GRAPHQL_URL, payload=comments_payload(ids, **kwargs))


def post_node(i: int, ts: Optional[int] = None, *, pinned: bool = False, page_id: str = "42",
              psn: str = "EntStatusCreationStory", url: Optional[str] = None) -> Dict[str, Any]:
    return {
        "url": url or f"https://m.facebook.com/story.php?story_fbid={1000 + i}&id={page_id}",
        "isPinned": pinned,
        "ft": {
            "top_level_post_id": str(1000 + i),
            "page_id": page_id,
            "page_insights": {page_id: {
                "psn": psn,
                "post_context": {"publish_time": BASE_TS - i * 3600 if ts is None else ts},
            }},
        },
    }
