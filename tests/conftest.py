"""
Pytest configuration and shared fixtures.
"""

from typing import Dict, List, Optional, Union

import pytest

from notifications.models import PushResult, PushStatus
from notifications.subscriptions import SubscriptionStore
from storage.kv import MemoryKeyValueStore
from timetable.errors import FetchError
from timetable.fetcher import ScheduleFetcher
from utilities.services import build_services


def lesson_cell(subject: str, number: str = "", room: str = "R101", teacher: str = "MÜL",
                highlighted: bool = False, rowspan: int = 2) -> str:
    """One lesson slot of the timetable grid with its four fields."""
    colour = "#FF0000" if highlighted else "#000000"
    fields = "".join(
        f'<TD width="25%" nowrap="1"><font size="2" face="Arial" color="{colour}">{text}</font></TD>'
        for text in (subject, number, room, teacher)
    )
    return (
        f'<TD colspan=12 rowspan={rowspan} align="center" nowrap="1">'
        f'<TABLE><TR>{fields}</TR></TABLE></TD>'
    )


def timetable_page(cells: List[str], stand: str = "03.11.2025 07:45",
                   period: str = "Periode3   1.9.2025 (1) Zwischenplan",
                   summary_rows: Optional[List[str]] = None) -> str:
    """A complete weekly schedule page around the given lesson cells."""
    summary = ""
    if summary_rows:
        rows = "".join(f"<TR><TD>{row}</TD></TR>" for row in summary_rows)
        summary = f'<TABLE bgcolor="#E7E7E7">{rows}</TABLE>'
    return f"""<html>
<head>
<meta name="GENERATOR" content="Untis 2024">
<title>Untis 2024 {stand}</title>
</head>
<body>
<CENTER><font size="3" face="Arial">{period}</font>
<TABLE border="3" rules="all" cellpadding="1" cellspacing="1">
<TR>{''.join(cells)}</TR>
</TABLE>
{summary}
<font size="2" face="Arial">Stand: {stand}</font>
</CENTER>
</body>
</html>"""


class FakePushClient:
    """Push transport that records calls and answers from a per-token table."""

    def __init__(self, results: Optional[Dict[str, Union[PushResult, Exception]]] = None):
        self.results = results or {}
        self.sent: List[tuple] = []
        self.probed: List[str] = []
        self.closed = False

    def _answer(self, device_token: str) -> PushResult:
        outcome = self.results.get(device_token, PushResult(status=PushStatus.SUCCESS, status_code=200))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def send(self, device_token: str, payload: dict, **kwargs) -> PushResult:
        self.sent.append((device_token, payload))
        return self._answer(device_token)

    async def check_token(self, device_token: str) -> PushResult:
        self.probed.append(device_token)
        return self._answer(device_token)

    async def close(self) -> None:
        self.closed = True


class FakeFetcher:
    """Schedule source serving canned pages per slug."""

    resolve_slug = staticmethod(ScheduleFetcher.resolve_slug)
    schedule_url = staticmethod(ScheduleFetcher.schedule_url)

    def __init__(self, mapping: Optional[Dict[str, str]] = None,
                 pages: Optional[Dict[str, Union[str, Exception]]] = None):
        self.mapping = mapping if mapping is not None else {}
        self.pages = pages if pages is not None else {}
        self.mapping_error: Optional[Exception] = None
        self.fetched: List[tuple] = []

    async def fetch_mapping(self) -> Dict[str, str]:
        if self.mapping_error is not None:
            raise self.mapping_error
        return dict(self.mapping)

    async def fetch_schedule(self, slug: str, week: int) -> str:
        self.fetched.append((slug, week))
        page = self.pages.get(slug)
        if page is None:
            raise FetchError(f"HTTP 404 for {slug}", url=self.schedule_url(slug, week), status_code=404)
        if isinstance(page, Exception):
            raise page
        return page

    async def close(self) -> None:
        pass


@pytest.fixture
def make_lesson():
    """Builder for lesson cells."""
    return lesson_cell


@pytest.fixture
def make_page():
    """Builder for schedule pages."""
    return timetable_page


@pytest.fixture
def kv():
    """Empty in-memory key-value store."""
    return MemoryKeyValueStore()


@pytest.fixture
def subscriptions(kv):
    return SubscriptionStore(kv)


@pytest.fixture
def push_client():
    return FakePushClient()


@pytest.fixture
def fetcher():
    return FakeFetcher(mapping={"5a": "c00001", "7b": "c00002", "10c": "c00003"})


@pytest.fixture
def services(kv, push_client, fetcher):
    """Service graph on the in-memory store with fake push and schedule source."""
    return build_services(kv=kv, push_client=push_client, fetcher=fetcher)


@pytest.fixture
def sample_page():
    """Schedule page with one substitution and one cancellation."""
    return timetable_page([
        lesson_cell("MA", "1)", highlighted=True),
        lesson_cell("---", "2)", highlighted=True),
        lesson_cell("DE"),
        lesson_cell("EN"),
    ])


@pytest.fixture
def plain_page():
    """Schedule page without any highlighted slot."""
    return timetable_page([lesson_cell("MA"), lesson_cell("DE"), lesson_cell("EN")])
