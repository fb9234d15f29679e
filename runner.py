import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from feed_scraper.config import BrowserConfig
from feed_scraper.dispatcher import FLOWS, ListSink, crawl, pick_flow
from feed_scraper.errors import ScraperError
from feed_scraper.models import ResumableState
from feed_scraper.utils.dates import DateWindow

log = logging.getLogger("runner")


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Infinite-scroll feed extractor (posts, comments, reviews)")
    p.add_argument("--url", required=True, help="Page, post or reviews URL")
    p.add_argument("--flow", choices=sorted(FLOWS), default="posts", help="What to extract")
    p.add_argument("--max-items", type=int, default=100, help="Max items to pull")
    p.add_argument("--min-date", default=None, help="Oldest date to accept (ISO, unix time or '3 days')")
    p.add_argument("--max-date", default=None, help="Newest date to accept")
    p.add_argument("--username", default=None, help="Page username, used to build post permalinks")
    p.add_argument("--comments-mode", default="RANKED_THREADED",
                   help="RANKED_THREADED, RANKED_UNFILTERED or RECENT_ACTIVITY")
    p.add_argument("--idle-budget", type=float, default=None, help="Seconds without progress before giving up")
    p.add_argument("--headless", action="store_true", help="Run headless browser")
    p.add_argument("--storage-state", type=str, default=None,
                   help="Playwright storage_state json (see save_session.py)")
    p.add_argument("--state-file", type=str, default=None,
                   help="Resumable state; read before and written after every run so retries continue")
    p.add_argument("--out-json", type=str, default="items.json", help="Output JSON path")
    p.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING...")
    return p.parse_args(argv)


def setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    logging.getLogger("playwright").setLevel(logging.ERROR)


async def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    state = ResumableState.load(args.state_file) if args.state_file else ResumableState()
    window = DateWindow.from_strings(args.min_date, args.max_date)
    config = pick_flow(args.flow).config.with_overrides(idle_budget=args.idle_budget)

    options = {}
    sink = None
    if args.flow == "posts":
        sink = ListSink()
        options = {"username": args.username, "sink": sink}
    elif args.flow == "comments":
        options = {"mode": args.comments_mode}

    try:
        result = await crawl(
            args.url,
            args.flow,
            max_items=args.max_items,
            window=window,
            state=state,
            browser=BrowserConfig(headless=args.headless, storage_state=args.storage_state),
            config=config,
            **options,
        )
    except ScraperError as e:
        log.error("[FAIL] %s", e)
        print(json.dumps(e.to_dict(), ensure_ascii=False), file=sys.stderr)
        return 1
    finally:
        if args.state_file:
            state.save(args.state_file)

    out = result.to_dict()
    if sink is not None:
        out["requests"] = sink.requests

    Path(args.out_json).parent.mkdir(parents=True, exist_ok=True)
    with open(args.out_json, "w", encoding="utf-8") as f:
        json.dump(out, f, ensure_ascii=False, indent=2)

    print(f"[OK] {result.outcome}: {len(result.items)} {args.flow} -> {args.out_json}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
