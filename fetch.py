"""CLI entrypoint: page through archive search results and print works as JSON lines."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from typing import TextIO

import requests
from dotenv import load_dotenv

from ao3_feed import DEFAULT_FANDOM, PageParseError, fetch_page, page_url, search_page_to_works

LOGGER = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """A page could not be retrieved or parsed; the run stops there."""

    def __init__(self, page: int, last_completed_page: int, cause: Exception) -> None:
        super().__init__(
            f"Failed fetching page {page} (last completed page: {last_completed_page}): {cause}"
        )
        self.page = page
        self.last_completed_page = last_completed_page


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Fetch work metadata from Archive of Our Own search pages")
    parser.add_argument("--start", type=int, default=1, help="Page to start fetching from (resume point)")
    parser.add_argument("--count", type=int, default=20, help="Number of works to emit at most")
    parser.add_argument(
        "--interval",
        type=float,
        default=float(os.getenv("FETCH_INTERVAL_SECONDS", "0")),
        help="Seconds to wait between page requests, to stay under the archive's rate limit",
    )
    parser.add_argument(
        "-n",
        "--threads",
        type=int,
        default=1,
        help="Pages fetched back-to-back before the interval is honored",
    )
    parser.add_argument("--fandom", default=os.getenv("AO3_FANDOM", DEFAULT_FANDOM), help="Fandom to search")
    parser.add_argument("--creators", default="", help="Restrict the search to these creators")
    args = parser.parse_args(argv)

    if args.start < 1:
        parser.error("--start must be at least 1")
    if args.threads < 1:
        parser.error("-n must be at least 1")
    if args.interval < 0:
        parser.error("--interval must not be negative")
    return args


def fetch_works(
    output: TextIO,
    count: int,
    start: int = 1,
    interval: float = 0.0,
    threads: int = 1,
    fandom: str = DEFAULT_FANDOM,
    creators: str = "",
    session: requests.Session | None = None,
) -> int:
    """Write up to `count` works to `output`, one JSON object per line, in page order.

    Pages are requested one at a time starting at `start`. After every `threads`
    pages the loop sleeps for `interval` seconds. The run ends once `count` works
    were written or a page lists no works.

    Returns the number of works written. Raises FetchError on the first page that
    cannot be fetched or parsed; lines written before that stay valid.
    """
    emitted = 0
    page = start
    last_completed = start - 1
    pages_since_pause = 0

    while emitted < count:
        LOGGER.info("Processing page %s", page)
        try:
            html = fetch_page(page_url(page, fandom=fandom, creators=creators), session=session)
            works = search_page_to_works(html)
        except (requests.RequestException, PageParseError) as exc:
            raise FetchError(page, last_completed, exc) from exc

        if not works:
            LOGGER.info("Received no works on page %s, stopping", page)
            break

        for work in works[: count - emitted]:
            output.write(json.dumps(work.to_dict(), ensure_ascii=False))
            output.write("\n")
            emitted += 1
        output.flush()

        LOGGER.info("Page %s done: listed=%s emitted_total=%s", page, len(works), emitted)
        last_completed = page
        page += 1
        pages_since_pause += 1

        if emitted < count and interval > 0 and pages_since_pause >= threads:
            time.sleep(interval)
            pages_since_pause = 0

    return emitted


def main(argv: list[str] | None = None) -> int:
    """Initialize config and run one fetch."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args(argv)

    try:
        with requests.Session() as session:
            emitted = fetch_works(
                sys.stdout,
                count=args.count,
                start=args.start,
                interval=args.interval,
                threads=args.threads,
                fandom=args.fandom,
                creators=args.creators,
                session=session,
            )
    except FetchError as exc:
        logging.error("%s", exc)
        logging.error("Resume with --start %s", exc.page)
        return 1

    logging.info("Fetch complete. emitted=%s", emitted)
    return 0


if __name__ == "__main__":
    sys.exit(main())
