"""
Data models shared by the extraction flows.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from feed_scraper.utils.dates import convert_date


class Record:
    """JSON round-tripping for the payload dataclasses below."""

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        for k, v in out.items():
            if isinstance(v, datetime):
                out[k] = v.isoformat()
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        known = {f.name: f for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "date" in kwargs:
            kwargs["date"] = convert_date(kwargs["date"])
        return cls(**kwargs)


@dataclass
class Post(Record):
    url: str                            # desktop permalink, also the dedupe key
    post_id: str
    username: Optional[str]
    date: Optional[datetime]
    canonical: str
    is_pinned: bool = False


@dataclass
class Comment(Record):
    id: str
    date: Optional[datetime]
    name: Optional[str]
    profile_url: Optional[str]
    profile_picture: Optional[str]
    text: Optional[str]
    url: Optional[str]


@dataclass
class Review(Record):
    url: str
    date: Optional[datetime]
    title: Optional[str] = None
    text: Optional[str] = None
    canonical: Optional[str] = None


@dataclass
class Item:
    """What the engine sees: a key, a timestamp and the flow's payload."""
    key: str
    timestamp: Optional[datetime]
    data: Any
    pinned: bool = False


@dataclass
class ExtractionResult:
    """Result of one extraction call."""
    namespace: str
    url: str
    outcome: str                        # "completed" or "aborted"
    reason: Optional[str]
    items: List[Any] = field(default_factory=list)
    total: int = 0
    stats: Dict[str, int] = field(default_factory=dict)
    elapsed: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def aborted(self) -> bool:
        return self.outcome == "aborted"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "url": self.url,
            "outcome": self.outcome,
            "reason": self.reason,
            "total": self.total,
            "stats": self.stats,
            "elapsed": round(self.elapsed, 3),
            "items": [i.to_dict() if isinstance(i, Record) else i for i in self.items],
            **self.extra,
        }


class ResumableState(BaseModel):
    """
    Per-visit progress that survives retries.

    Owned by the caller: read once when an extraction starts and written back
    on every way out of it, so a retry continues instead of starting over.
    """

    model_config = ConfigDict(extra="ignore")

    schema_version: str = "1"
    items: List[Tuple[str, Dict[str, Any]]] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    @classmethod
    def from_json(cls, text: str) -> "ResumableState":
        return cls.model_validate_json(text)

    @classmethod
    def load(cls, path: str) -> "ResumableState":
        p = Path(path)
        if not p.exists():
            return cls()
        return cls.from_json(p.read_text(encoding="utf-8"))

    def save(self, path: str):
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(self.to_json(), encoding="utf-8")
