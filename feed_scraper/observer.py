import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from feed_scraper.config import RateLimitConfig
from feed_scraper.errors import ConsumerError, RateLimited, SessionInvalidated
from feed_scraper.utils.control import CompletionGate

log = logging.getLogger(__name__)

LOGIN_MARKERS = ("login", "next=")


def is_error_payload(payload: Any) -> bool:
    """Upstream throttling shows up as an error marker in an otherwise fine response."""
    if not isinstance(payload, dict):
        return False
    errors = payload.get("errors")
    if isinstance(errors, list) and errors:
        return True
    return bool(payload.get("error"))


def is_json_response(res) -> bool:
    return "json" in (res.headers or {}).get("content-type", "")


class RateLimitState:
    """Consecutive error-marked payloads. Linear backoff, fatal past the threshold."""

    def __init__(self, config: Optional[RateLimitConfig] = None):
        self.config = config or RateLimitConfig()
        self.consecutive_errors = 0

    def record_error(self, namespace: Optional[str] = None, url: Optional[str] = None) -> float:
        """
        Count one more error and return how long to back off.

        Raises:
            RateLimited: once the count goes past max_consecutive_errors
        """
        self.consecutive_errors += 1
        if self.consecutive_errors > self.config.max_consecutive_errors:
            raise RateLimited("Rate limited", namespace=namespace, url=url, errors=self.consecutive_errors)
        return self.consecutive_errors * self.config.backoff_step

    def reset(self):
        self.consecutive_errors = 0


class ResponseObserver:
    """
    Watches every response the page receives during one extraction call.

    Non 200/302 statuses end the run gracefully, login redirects end it
    fatally, and payloads from the data endpoint are handed to `on_payload`
    once they pass the rate-limit check. Errors are only surfaced after
    `arm()`; before that the page is still settling and they're dropped,
    except consumer callback failures, which are always fatal.
    """

    def __init__(
        self,
        page,
        gate: CompletionGate,
        *,
        namespace: str,
        matches: Callable[[Any], bool],
        on_payload: Callable[[Any, Any], Awaitable[None]],
        rate: Optional[RateLimitState] = None,
        login_markers: Iterable[str] = LOGIN_MARKERS,
        any_redirect_is_login: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.page = page
        self.gate = gate
        self.namespace = namespace
        self.matches = matches
        self.on_payload = on_payload
        self.rate = rate or RateLimitState()
        self.login_markers = tuple(login_markers)
        self.any_redirect_is_login = any_redirect_is_login
        self.sleep = sleep
        self.ready = False
        self.seen = 0

    def attach(self):
        self.page.on("response", self.on_response)

    def detach(self):
        self.page.remove_listener("response", self.on_response)

    def arm(self):
        self.ready = True

    def _is_login(self, res) -> bool:
        if self.any_redirect_is_login:
            return True
        target = f"{res.url} {(res.headers or {}).get('location', '')}"
        return any(marker in target for marker in self.login_markers)

    async def on_response(self, res):
        try:
            if self.gate.settled or self.page.is_closed():
                return

            self.seen += 1
            status = res.status

            if status not in (200, 302):
                log.debug("[STOP] response status %s %s", status, res.url)
                self.gate.resolve(f"status {status}")
                return

            if status == 302:
                if self._is_login(res):
                    raise SessionInvalidated("Redirected to login", namespace=self.namespace, url=res.url)
                return

            if not self.matches(res):
                return

            try:
                payload = await res.json()
            except Exception as e:
                log.debug("[SKIP] unreadable payload %s: %s", res.url, e)
                return

            if is_error_payload(payload):
                delay = self.rate.record_error(self.namespace, res.url)
                log.debug("[RATE] error payload #%d, sleeping %.2fs", self.rate.consecutive_errors, delay)
                await self.sleep(delay)
                return

            self.rate.reset()

            if self.gate.settled:
                return

            await self.on_payload(payload, res)
        except Exception as e:
            # a failed callback already had its item stored, it can't be dropped quietly
            if self.ready or isinstance(e, ConsumerError):
                self.gate.reject(e)
            else:
                log.debug("[SKIP] response before observer was ready: %s", e)
