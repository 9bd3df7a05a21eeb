"""Archive of Our Own search-page retrieval and parsing helpers."""

from __future__ import annotations

import logging
import os
from datetime import date, datetime
from urllib.parse import urlencode

import requests
from bs4 import BeautifulSoup, Tag

from models import Work

DEFAULT_ENDPOINT = "https://archiveofourown.org"
DEFAULT_FANDOM = "Avatar: The Last Airbender"
REQUEST_TIMEOUT_SECONDS = 30
_DATE_FORMAT = "%d %b %Y"

LOGGER = logging.getLogger(__name__)

# Every search field is sent, empty or not, matching what the archive's own
# search form submits. Results are sorted oldest-first so page numbers stay
# stable while new works are posted.
_SEARCH_FIELDS = (
    "bookmarks_count",
    "character_names",
    "comments_count",
    "complete",
    "creators",
    "crossover",
    "fandom_names",
    "freeform_names",
    "hits",
    "kudos_count",
    "language_id",
    "query",
    "rating_ids",
    "relationship_names",
    "revised_at",
    "single_chapter",
    "sort_column",
    "sort_direction",
    "title",
    "word_count",
)


class PageParseError(ValueError):
    """Raised when a search page does not have the expected listing markup."""


def page_url(
    number: int,
    fandom: str = DEFAULT_FANDOM,
    creators: str = "",
    endpoint: str | None = None,
) -> str:
    """Build the URL of one search results page, counting pages from 1.

    The endpoint defaults to AO3_ENDPOINT from the environment, read per call.
    """
    endpoint = endpoint or os.getenv("AO3_ENDPOINT", DEFAULT_ENDPOINT)
    values = {name: "" for name in _SEARCH_FIELDS}
    values.update(
        {
            "creators": creators,
            "fandom_names": fandom,
            "single_chapter": "0",
            "sort_column": "created_at",
            "sort_direction": "asc",
        }
    )
    params = [("commit", "Search"), ("page", str(number)), ("utf8", "✓")]
    params.extend((f"work_search[{name}]", value) for name, value in values.items())
    return f"{endpoint.rstrip('/')}/works/search?{urlencode(params)}"


def fetch_page(url: str, session: requests.Session | None = None) -> str:
    """GET one search page and return its HTML body.

    Raises requests.RequestException on transport errors and non-2xx statuses,
    including the archive's 429 rate-limit response.
    """
    getter = session.get if session is not None else requests.get
    response = getter(url, timeout=REQUEST_TIMEOUT_SECONDS)
    response.raise_for_status()
    return response.text


def search_page_to_works(html: str) -> list[Work]:
    """Parse every `li.work` blurb on a search page into a Work."""
    soup = BeautifulSoup(html, "html.parser")
    return [_parse_work(element) for element in soup.select("li.work")]


def _parse_work(element: Tag) -> Work:
    element_id = element.get("id") or ""
    if not isinstance(element_id, str) or not element_id.startswith("work_"):
        raise PageParseError(f"Work blurb has unexpected id: {element_id!r}")
    work_id = element_id.removeprefix("work_")

    heading_links = element.select("h4.heading > a")
    if not heading_links:
        raise PageParseError(f"Work {work_id} has no title")
    title = heading_links[0].get_text(strip=True)
    # Anonymous and orphaned works list no author link.
    author = heading_links[1].get_text(strip=True) if len(heading_links) > 1 else None

    date_element = element.select_one("p.datetime")
    if date_element is None:
        raise PageParseError(f"Work {work_id} has no date")

    return Work(
        id=work_id,
        title=title,
        author=author,
        relationships=_tag_texts(element, "relationships"),
        characters=_tag_texts(element, "characters"),
        freeforms=_tag_texts(element, "freeforms"),
        date=_parse_date(date_element.get_text(strip=True), work_id),
        language=_stat_text(element, "language"),
        words=_stat_number(element, "words"),
        kudos=_stat_number(element, "kudos"),
        hits=_stat_number(element, "hits"),
    )


def _tag_texts(element: Tag, kind: str) -> list[str]:
    return [tag.get_text(strip=True) for tag in element.select(f"li.{kind} > a.tag")]


def _stat_text(element: Tag, name: str) -> str:
    stat = element.select_one(f"dl.stats > dd.{name}")
    return stat.get_text(strip=True) if stat is not None else ""


def _stat_number(element: Tag, name: str) -> int:
    text = _stat_text(element, name).replace(",", "")
    try:
        return int(text)
    except ValueError:
        return 0


def _parse_date(raw: str, work_id: str) -> date:
    try:
        return datetime.strptime(raw, _DATE_FORMAT).date()
    except ValueError as exc:
        raise PageParseError(f"Work {work_id} has unexpected date {raw!r}") from exc
