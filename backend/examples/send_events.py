"""Example client that tracks a short browsing session and prints dashboard metrics."""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

import requests

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.analytics.session import JsonFileStorage, SessionStore  # noqa: E402
from backend.analytics.sink import HttpSink  # noqa: E402
from backend.analytics.tracker import BrowsingContext, Tracker  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send a sample browsing session")
    parser.add_argument(
        "--api-url",
        default=os.environ.get("ANALYTICS_API_URL", "http://127.0.0.1:8000"),
        help="Analytics API base URL (default: %(default)s or ANALYTICS_API_URL)",
    )
    parser.add_argument(
        "--state-file",
        default=str(Path.home() / ".nightlife_session.json"),
        help="File holding the anonymous session state (default: %(default)s)",
    )
    parser.add_argument("--range", default="7days", choices=["today", "7days", "30days"])
    return parser.parse_args()


async def browse(tracker: Tracker) -> None:
    tracker.track_session_start()
    tracker.track_page_view("/")
    tracker.track_map_loaded(42)
    tracker.track_genre_filter("techno", 12)
    tracker.track_event_view("evt-1", "Warehouse Rave", "Digital", "map")
    tracker.track_ticket_click(
        "evt-1",
        "Warehouse Rave",
        "Digital",
        "ven-1",
        "techno",
        "Techno",
        "pro-1",
        "Sounded Out",
        "2026-10-24T22:00:00Z",
        15.0,
        "https://tickets.example.com/evt-1",
        "detail_card",
    )
    await tracker.drain()


def main() -> None:
    args = parse_args()
    failures = []
    tracker = Tracker(
        HttpSink(args.api_url),
        SessionStore(JsonFileStorage(Path(args.state_file))),
        context=BrowsingContext(
            user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile/15E148",
            referrer="https://www.instagram.com/",
            page_url=f"{args.api_url}/",
        ),
        diagnostics=failures.append,
    )
    asyncio.run(browse(tracker))
    for failure in failures:
        print(f"Tracking {failure.kind} failed: {failure.error}")

    response = requests.get(f"{args.api_url}/dashboard/metrics", params={"range": args.range}, timeout=10)
    response.raise_for_status()
    print(json.dumps(response.json()["metrics"], indent=2))


if __name__ == "__main__":
    main()
