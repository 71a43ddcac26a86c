"""Tests for the Whoop client — parallel fetch, pagination and failure isolation."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from src.errors import AuthError, TransientFetchError
from src.services.oauth import OAuthSession
from src.wearables.adapters.whoop import WhoopClient, sport_name
from src.wearables.base import CATEGORIES, WhoopDataset

NOW = datetime(2026, 2, 23, 8, 0, 0, tzinfo=timezone.utc)


def make_whoop(http_client, **kwargs) -> WhoopClient:
    return WhoopClient(
        client_id="test_client_id",
        client_secret="test_client_secret",
        api_base="https://api.whoop.test",
        http_client=http_client,
        **kwargs,
    )


def route(responses: dict[str, httpx.Response]):
    """Answer by URL suffix; unknown endpoints return an empty page."""

    def handler(method, url, **kwargs):
        for suffix, response in responses.items():
            if url.endswith(suffix):
                return response
        return httpx.Response(200, json={"records": [], "next_token": None})

    return handler


class TestFetchAll:
    @pytest.mark.asyncio
    async def test_fetches_every_category(self, make_http_client) -> None:
        client = make_http_client(
            route(
                {
                    "/user/profile/basic": httpx.Response(200, json={"first_name": "Sam"}),
                    "/activity/sleep": httpx.Response(200, json={"records": [{"id": 1}]}),
                    "/user/measurement/body": httpx.Response(200, json={"height_meter": 1.8}),
                }
            )
        )
        results, _ = await make_whoop(client).fetch_all(OAuthSession("at", "rt"), 7, now=NOW)

        assert set(results) == set(CATEGORIES)
        assert all(r.ok for r in results.values())
        assert results["profile"].value == {"first_name": "Sam"}
        assert results["sleep"].value == [{"id": 1}]
        # body measurement is a bare object, wrapped as one record
        assert results["body_measurements"].value == [{"height_meter": 1.8}]

    @pytest.mark.asyncio
    async def test_window_parameters(self, make_http_client) -> None:
        client = make_http_client(route({}))
        await make_whoop(client).fetch_all(OAuthSession("at", "rt"), 7, now=NOW)

        calls = {c.args[1]: c.kwargs for c in client.request.call_args_list}
        sleep_params = calls["https://api.whoop.test/developer/v1/activity/sleep"]["params"]
        assert sleep_params == {
            "start": "2026-02-16T08:00:00.000Z",
            "end": "2026-02-23T08:00:00.000Z",
            "limit": 25,
        }
        assert calls["https://api.whoop.test/developer/v1/user/profile/basic"]["params"] is None

    @pytest.mark.asyncio
    async def test_one_failing_category_does_not_block_others(self, make_http_client) -> None:
        client = make_http_client(
            route(
                {
                    "/cycle": httpx.Response(500, text="internal error"),
                    "/recovery": httpx.Response(200, json={"records": [{"cycle_id": 7}]}),
                }
            )
        )
        results, _ = await make_whoop(client).fetch_all(OAuthSession("at", "rt"), 7, now=NOW)

        assert not results["cycles"].ok
        assert isinstance(results["cycles"].error, TransientFetchError)
        assert results["cycles"].error.category == "cycles"
        assert results["recovery"].value == [{"cycle_id": 7}]

        dataset = WhoopDataset.from_results(results)
        assert dataset.cycles == []
        assert dataset.recovery == [{"cycle_id": 7}]
        assert len(dataset.errors) == 1

    @pytest.mark.asyncio
    async def test_malformed_body_is_a_category_failure(self, make_http_client) -> None:
        client = make_http_client(
            route({"/activity/workout": httpx.Response(200, content=b"<html>oops</html>")})
        )
        results, _ = await make_whoop(client).fetch_all(OAuthSession("at", "rt"), 7, now=NOW)
        assert not results["workouts"].ok
        assert results["sleep"].ok

    @pytest.mark.asyncio
    async def test_expired_session_refreshed_before_fetching(self, make_http_client) -> None:
        client = make_http_client(route({}))
        _, session = await make_whoop(client).fetch_all(OAuthSession("", "rt"), 7, now=NOW)

        assert client.post.await_count == 1
        assert session.access_token == "new-access"
        for call in client.request.call_args_list:
            assert call.kwargs["headers"]["Authorization"] == "Bearer new-access"

    @pytest.mark.asyncio
    async def test_auth_failure_fails_the_fetch(self, make_http_client) -> None:
        client = make_http_client(
            lambda *a, **kw: httpx.Response(401, text="unauthorized"),
            token=httpx.Response(400, json={"error": "invalid_grant"}),
        )
        with pytest.raises(AuthError):
            await make_whoop(client).fetch_all(OAuthSession("at", "rt"), 7, now=NOW)


class TestPagination:
    @pytest.mark.asyncio
    async def test_follows_next_token(self, make_http_client) -> None:
        def handler(method, url, **kwargs):
            params = kwargs.get("params") or {}
            if not url.endswith("/activity/sleep"):
                return httpx.Response(200, json={"records": []})
            if params.get("nextToken") == "page-2":
                return httpx.Response(200, json={"records": [{"id": 2}], "next_token": None})
            return httpx.Response(200, json={"records": [{"id": 1}], "next_token": "page-2"})

        client = make_http_client(handler)
        results, _ = await make_whoop(client).fetch_all(OAuthSession("at", "rt"), 7, now=NOW)
        assert results["sleep"].value == [{"id": 1}, {"id": 2}]

    @pytest.mark.asyncio
    async def test_stops_at_max_pages(self, make_http_client) -> None:
        def handler(method, url, **kwargs):
            return httpx.Response(200, json={"records": [{"id": 1}], "next_token": "more"})

        client = make_http_client(handler)
        whoop = make_whoop(client, max_pages=3)
        records, _ = await whoop._get_records(
            "https://api.whoop.test/developer/v1/cycle", {}, OAuthSession("at", "rt")
        )
        assert len(records) == 3


class TestSportName:
    def test_explicit_name_wins(self) -> None:
        assert sport_name({"sport_id": 0, "sport_name": "trail run"}) == "trail run"

    def test_known_sport_id(self) -> None:
        assert sport_name({"sport_id": 45}) == "Weightlifting"

    def test_unknown_sport_id(self) -> None:
        assert sport_name({"sport_id": 9999}) == "Workout"
