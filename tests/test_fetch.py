"""Tests for the paginated fetch loop (fetch.fetch_works) and its CLI."""

from __future__ import annotations

import io
import json
from urllib.parse import parse_qs, urlparse
from unittest.mock import patch

import pytest
import requests

import fetch
from fetch import FetchError, fetch_works


def _blurb(work_id: int) -> str:
    return (
        f'<li id="work_{work_id}" class="work blurb group">'
        f'<h4 class="heading"><a href="/works/{work_id}">Work {work_id}</a> by '
        f'<a rel="author" href="/users/a">author{work_id}</a></h4>'
        '<p class="datetime">05 Dec 2020</p>'
        '<ul class="tags"><li class="relationships"><a class="tag">Katara/Zuko (Avatar)</a></li></ul>'
        '<dl class="stats"><dd class="language">English</dd><dd class="words">1,000</dd></dl>'
        "</li>"
    )


def _fake_archive(pages: int, per_page: int = 3, fail_on: int | None = None):
    """Return a fetch_page stand-in serving `pages` full pages, then empty ones."""
    requested: list[int] = []

    def fake_fetch_page(url: str, session=None) -> str:
        number = int(parse_qs(urlparse(url).query)["page"][0])
        requested.append(number)
        if number == fail_on:
            raise requests.ConnectionError("connection reset")
        if number > pages:
            return "<ol></ol>"
        first = (number - 1) * per_page + 1
        return "<ol>" + "".join(_blurb(i) for i in range(first, first + per_page)) + "</ol>"

    return fake_fetch_page, requested


def _ids(output: io.StringIO) -> list[str]:
    return [json.loads(line)["id"] for line in output.getvalue().splitlines()]


def test_fetch_works_emits_json_lines_in_page_order() -> None:
    fake, requested = _fake_archive(pages=2)
    output = io.StringIO()

    with patch("fetch.fetch_page", side_effect=fake), patch("fetch.time.sleep"):
        emitted = fetch_works(output, count=6)

    assert emitted == 6
    assert _ids(output) == ["1", "2", "3", "4", "5", "6"]
    assert requested == [1, 2]
    first = json.loads(output.getvalue().splitlines()[0])
    assert first["relationships"] == ["Katara/Zuko (Avatar)"]
    assert first["date"] == "2020-12-05"
    assert first["words"] == 1000


def test_fetch_works_never_exceeds_count() -> None:
    fake, requested = _fake_archive(pages=5)
    output = io.StringIO()

    with patch("fetch.fetch_page", side_effect=fake), patch("fetch.time.sleep"):
        emitted = fetch_works(output, count=4)

    assert emitted == 4
    assert _ids(output) == ["1", "2", "3", "4"]
    assert requested == [1, 2]


def test_fetch_works_stops_on_empty_page() -> None:
    fake, requested = _fake_archive(pages=2)
    output = io.StringIO()

    with patch("fetch.fetch_page", side_effect=fake), patch("fetch.time.sleep"):
        emitted = fetch_works(output, count=100)

    assert emitted == 6
    assert requested == [1, 2, 3]


def test_fetch_works_zero_count_makes_no_requests() -> None:
    fake, requested = _fake_archive(pages=2)

    with patch("fetch.fetch_page", side_effect=fake):
        assert fetch_works(io.StringIO(), count=0) == 0

    assert requested == []


def test_fetch_works_sleeps_between_pages_but_not_after_last() -> None:
    fake, _ = _fake_archive(pages=10)

    with patch("fetch.fetch_page", side_effect=fake), patch("fetch.time.sleep") as mock_sleep:
        fetch_works(io.StringIO(), count=9, interval=2.5)

    # Three pages fill the count; pauses follow pages 1 and 2 only.
    assert mock_sleep.call_count == 2
    mock_sleep.assert_called_with(2.5)


def test_fetch_works_threads_bounds_pages_between_pauses() -> None:
    fake, _ = _fake_archive(pages=10, per_page=1)

    with patch("fetch.fetch_page", side_effect=fake), patch("fetch.time.sleep") as mock_sleep:
        fetch_works(io.StringIO(), count=7, interval=1.0, threads=3)

    # Pages 1-3, pause, 4-6, pause, 7 completes the count.
    assert mock_sleep.call_count == 2


def test_fetch_works_zero_interval_never_sleeps() -> None:
    fake, _ = _fake_archive(pages=3)

    with patch("fetch.fetch_page", side_effect=fake), patch("fetch.time.sleep") as mock_sleep:
        fetch_works(io.StringIO(), count=9, interval=0)

    mock_sleep.assert_not_called()


def test_fetch_works_failure_reports_last_completed_page_and_keeps_output() -> None:
    fake, requested = _fake_archive(pages=5, fail_on=3)
    output = io.StringIO()

    with patch("fetch.fetch_page", side_effect=fake), patch("fetch.time.sleep"):
        with pytest.raises(FetchError) as excinfo:
            fetch_works(output, count=100, start=1)

    assert excinfo.value.page == 3
    assert excinfo.value.last_completed_page == 2
    assert requested == [1, 2, 3]
    assert _ids(output) == ["1", "2", "3", "4", "5", "6"]


def test_fetch_works_failure_on_first_page_reports_page_before_start() -> None:
    fake, _ = _fake_archive(pages=5, fail_on=4)

    with patch("fetch.fetch_page", side_effect=fake):
        with pytest.raises(FetchError) as excinfo:
            fetch_works(io.StringIO(), count=10, start=4)

    assert excinfo.value.last_completed_page == 3


def test_fetch_works_unparseable_page_aborts() -> None:
    broken = '<ol><li id="work_1" class="work"><p class="datetime">05 Dec 2020</p></li></ol>'

    with patch("fetch.fetch_page", return_value=broken):
        with pytest.raises(FetchError) as excinfo:
            fetch_works(io.StringIO(), count=10, start=2)

    assert excinfo.value.page == 2
    assert excinfo.value.last_completed_page == 1


def test_resume_after_abort_matches_full_run() -> None:
    fake_full, _ = _fake_archive(pages=4)
    full = io.StringIO()
    with patch("fetch.fetch_page", side_effect=fake_full), patch("fetch.time.sleep"):
        fetch_works(full, count=12)

    fake_failing, _ = _fake_archive(pages=4, fail_on=3)
    partial = io.StringIO()
    with patch("fetch.fetch_page", side_effect=fake_failing), patch("fetch.time.sleep"):
        with pytest.raises(FetchError) as excinfo:
            fetch_works(partial, count=12)

    fake_resume, _ = _fake_archive(pages=4)
    resumed = io.StringIO()
    already = len(partial.getvalue().splitlines())
    with patch("fetch.fetch_page", side_effect=fake_resume), patch("fetch.time.sleep"):
        fetch_works(resumed, count=12 - already, start=excinfo.value.last_completed_page + 1)

    assert partial.getvalue() + resumed.getvalue() == full.getvalue()


def test_main_returns_error_status_and_resume_hint(caplog: pytest.LogCaptureFixture) -> None:
    fake, _ = _fake_archive(pages=5, fail_on=2)

    with patch("fetch.fetch_page", side_effect=fake), patch("fetch.time.sleep"), \
         patch("fetch.load_dotenv"):
        status = fetch.main(["--count", "10", "--interval", "0"])

    assert status == 1
    assert "Resume with --start 2" in caplog.text


def test_main_writes_works_to_stdout(capsys: pytest.CaptureFixture[str]) -> None:
    fake, _ = _fake_archive(pages=1)

    with patch("fetch.fetch_page", side_effect=fake), patch("fetch.load_dotenv"):
        status = fetch.main(["--count", "2", "-n", "2"])

    assert status == 0
    lines = capsys.readouterr().out.splitlines()
    assert [json.loads(line)["id"] for line in lines] == ["1", "2"]


def test_parse_args_rejects_zero_threads() -> None:
    with pytest.raises(SystemExit):
        fetch.parse_args(["-n", "0"])
