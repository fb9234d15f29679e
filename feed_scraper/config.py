"""
Configuration dataclasses for the extraction flows.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional


@dataclass
class RateLimitConfig:
    """Payload-level throttling: how many error-marked payloads in a row we tolerate."""
    max_consecutive_errors: int = 20
    backoff_step: float = 0.03          # seconds, multiplied by the error count


@dataclass
class FlowConfig:
    """Tunables shared by the three extraction flows."""
    # Idle abort
    idle_budget: float = 60.0

    # Scroll driver
    scroll_sleep: float = 1.5
    scroll_jitter: float = 0.0          # random extra wait on top of scroll_sleep
    step_ratio: float = 0.6
    exhausted_after: int = 20           # changeless cycles (no-op clicks for comments)

    # Range counter
    over_range_threshold: int = 5

    # Loading indicator (posts only)
    loading_timeout: float = 1.0
    max_loading_misses: int = 15

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    def with_overrides(self, **changes) -> "FlowConfig":
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


POSTS_CONFIG = FlowConfig(idle_budget=60.0, scroll_sleep=1.5, scroll_jitter=0.5, exhausted_after=20)
COMMENTS_CONFIG = FlowConfig(idle_budget=60.0, scroll_sleep=0.5, scroll_jitter=0.2, exhausted_after=3)
REVIEWS_CONFIG = FlowConfig(idle_budget=30.0, scroll_sleep=0.5, scroll_jitter=0.2, exhausted_after=2)


@dataclass
class BrowserConfig:
    """Browser launch settings."""
    headless: bool = True
    storage_state: Optional[str] = None
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/133.0.0.0 Safari/537.36"
    )
    viewport: Dict[str, int] = field(default_factory=lambda: {"width": 1366, "height": 900})
