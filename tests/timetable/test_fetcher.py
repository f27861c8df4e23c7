"""
Tests for the schedule fetcher.
"""

import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from timetable.errors import FetchError, MappingError, MappingFetchError
from timetable.fetcher import ScheduleFetcher
from utilities.config import config


def make_fetcher(handler) -> ScheduleFetcher:
    return ScheduleFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestScheduleUrl:
    """Test cases for URL building and slug lookup."""

    def test_week_is_zero_padded(self):
        """Test that single-digit weeks are padded to two digits."""
        url = ScheduleFetcher.schedule_url("c00042", 5)
        assert url == f"{config.schedule_base_url}/schueler/05/c/c00042"

    def test_two_digit_week(self):
        """Test a two-digit week number."""
        assert ScheduleFetcher.schedule_url("c00042", 45).endswith("/schueler/45/c/c00042")

    def test_resolve_slug(self):
        """Test slug lookup for a known class."""
        assert ScheduleFetcher.resolve_slug({"5a": "c00001"}, "5a") == "c00001"

    def test_resolve_slug_missing(self):
        """Test that an unknown class raises MappingError."""
        with pytest.raises(MappingError) as exc_info:
            ScheduleFetcher.resolve_slug({"5a": "c00001"}, "9z")
        assert exc_info.value.class_name == "9z"
        assert str(exc_info.value) == "No slug found for 9z"


class TestFetchSchedule:
    """Test cases for fetching schedule pages."""

    @pytest.mark.asyncio
    async def test_sends_basic_auth(self):
        """Test that schedule requests carry the fixed credentials."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, text="<html>plan</html>")

        fetcher = make_fetcher(handler)
        body = await fetcher.fetch_schedule("c00001", 7)

        credentials = f"{config.schedule_username}:{config.schedule_password}".encode()
        assert body == "<html>plan</html>"
        assert seen["url"].endswith("/schueler/07/c/c00001")
        assert seen["auth"] == "Basic " + base64.b64encode(credentials).decode()

    @pytest.mark.asyncio
    async def test_latin1_without_charset(self):
        """Test that pages without a charset are decoded as Latin-1."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                content="Ausfälle".encode("iso-8859-1"),
                headers={"content-type": "text/html"},
            )

        fetcher = make_fetcher(handler)
        assert await fetcher.fetch_schedule("c00001", 7) == "Ausfälle"

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        """Test that a 404 fails immediately with its status code."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        fetcher = make_fetcher(handler)
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_schedule("c00001", 7)

        assert exc_info.value.status_code == 404
        assert not exc_info.value.is_transient
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        """Test that 5xx answers are retried with backoff and finally raised."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        fetcher = make_fetcher(handler)
        with patch("timetable.fetcher.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch_schedule("c00001", 7)

        assert exc_info.value.status_code == 503
        assert len(calls) == config.retry_attempts + 1
        assert sleep.await_count == config.retry_attempts
        assert sleep.await_args_list[0].args[0] == config.retry_delay

    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(self):
        """Test that a retry succeeding returns the page."""
        answers = [httpx.Response(500), httpx.Response(200, text="ok")]

        def handler(request: httpx.Request) -> httpx.Response:
            return answers.pop(0)

        fetcher = make_fetcher(handler)
        with patch("timetable.fetcher.asyncio.sleep", new_callable=AsyncMock):
            assert await fetcher.fetch_schedule("c00001", 7) == "ok"

    @pytest.mark.asyncio
    async def test_network_error_has_no_status(self):
        """Test that connection failures become FetchError without status."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = make_fetcher(handler)
        with patch("timetable.fetcher.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch_schedule("c00001", 7)

        assert exc_info.value.status_code is None
        assert exc_info.value.is_transient


class TestFetchMapping:
    """Test cases for loading the class mapping."""

    @pytest.mark.asyncio
    async def test_loads_mapping_without_credentials(self):
        """Test that the mapping is parsed and fetched without auth."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"5a": "c00001", "7b": 2})

        fetcher = make_fetcher(handler)
        mapping = await fetcher.fetch_mapping()

        assert mapping == {"5a": "c00001", "7b": "2"}
        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_unreachable_mapping(self):
        """Test that a failed mapping request raises MappingFetchError."""
        fetcher = make_fetcher(lambda request: httpx.Response(404))
        with pytest.raises(MappingFetchError):
            await fetcher.fetch_mapping()

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        """Test that a non-JSON mapping raises MappingFetchError."""
        fetcher = make_fetcher(lambda request: httpx.Response(200, text="not json"))
        with pytest.raises(MappingFetchError):
            await fetcher.fetch_mapping()

    @pytest.mark.asyncio
    async def test_not_an_object(self):
        """Test that a JSON array is rejected."""
        fetcher = make_fetcher(lambda request: httpx.Response(200, json=["5a"]))
        with pytest.raises(MappingFetchError):
            await fetcher.fetch_mapping()
