"""Unit tests for the caching, rate-limited GitHub client"""

import asyncio
import sys
import os
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cca_workflows.config import Config
from cca_workflows.exceptions import ApiError, RateLimitError
from cca_workflows.github_client import GitHubClient, classify_error
from cca_workflows.models import ApiErrorKind
from cca_workflows.rate_limiter import RateBudget
from cca_workflows.retry import RetryPolicy


TOKEN = "ghp_" + "t" * 36


def mock_response(status=200, payload=None, headers=None, text=""):
    """An aiohttp response usable as `async with session.get(...) as resp`"""
    resp = MagicMock()
    resp.status = status
    resp.headers = headers or {}
    resp.json = AsyncMock(return_value=payload)
    resp.text = AsyncMock(return_value=text)
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=resp)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


@pytest.fixture
def config(tmp_path):
    return Config(cache_dir=str(tmp_path / "cache"), github_token=TOKEN)


@pytest.fixture
def client(config):
    budget = RateBudget(60, sleep=AsyncMock())
    policy = RetryPolicy(max_attempts=3, base_delay=0.01, jitter=0, sleep=AsyncMock())
    return GitHubClient(config, budget=budget, retry_policy=policy)


@pytest.fixture
def session():
    return MagicMock()


class TestCall:
    """Cache-first GET requests"""

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, client, session):
        session.get.return_value = mock_response(payload={"id": 1})

        first = await client.call(session, "repos/o/r")
        second = await client.call(session, "repos/o/r")

        assert first.from_cache is False
        assert second.from_cache is True
        assert second.payload == {"id": 1}
        assert session.get.call_count == 1
        metrics = client.get_metrics()
        assert metrics["api_calls_total"] == 2
        assert metrics["cache_hits"] == 1
        assert metrics["cache_hit_rate_percent"] == 50
        assert metrics["network_calls"] == 1

    @pytest.mark.asyncio
    async def test_parameter_order_hits_same_entry(self, client, session):
        session.get.return_value = mock_response(payload={"workflow_runs": []})

        await client.call(session, "repos/o/r/actions/runs", {"per_page": 50, "status": "completed"})
        response = await client.call(session, "repos/o/r/actions/runs", {"status": "completed", "per_page": 50})

        assert response.from_cache is True
        assert session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_cache_hit_uses_no_budget(self, client, session):
        session.get.return_value = mock_response(payload=[])
        await client.call(session, "rate_limited/thing")
        used = client.budget.used_in_window

        await client.call(session, "rate_limited/thing")

        assert client.budget.used_in_window == used

    @pytest.mark.asyncio
    async def test_request_headers(self, client, session, config):
        session.get.return_value = mock_response(payload={})

        await client.call(session, "/repos/o/r", {"per_page": 10, "draft": False})

        args, kwargs = session.get.call_args
        assert args[0] == "https://api.github.com/repos/o/r"
        assert kwargs["headers"]["Authorization"] == f"Bearer {TOKEN}"
        assert kwargs["headers"]["Accept"] == "application/vnd.github+json"
        assert kwargs["params"] == {"per_page": "10", "draft": "false"}
        assert kwargs["timeout"].total == config.request_timeout

    @pytest.mark.asyncio
    async def test_rate_limit_headers_update_budget(self, client, session):
        session.get.return_value = mock_response(payload={}, headers={
            "X-RateLimit-Remaining": "4990", "X-RateLimit-Limit": "5000",
        })

        await client.call(session, "repos/o/r")

        assert client.budget.remote_remaining == 4990

    @pytest.mark.asyncio
    async def test_disabled_cache_always_fetches(self, tmp_path, session):
        config = Config(cache_dir=str(tmp_path / "cache"), enable_cache=False)
        client = GitHubClient(config, budget=RateBudget(60, sleep=AsyncMock()))
        session.get.side_effect = lambda *a, **kw: mock_response(payload={"n": 1})

        await client.call(session, "repos/o/r")
        response = await client.call(session, "repos/o/r")

        assert response.from_cache is False
        assert session.get.call_count == 2


class TestErrors:
    """Classification and retry of failures"""

    @pytest.mark.asyncio
    async def test_unauthorized_is_fatal(self, client, session):
        session.get.return_value = mock_response(401, text='{"message": "Bad credentials"}')

        with pytest.raises(ApiError) as exc_info:
            await client.call(session, "user")

        assert exc_info.value.kind == ApiErrorKind.AUTH
        assert exc_info.value.status == 401
        assert session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self, client, session):
        session.get.side_effect = [
            mock_response(502, text="Bad Gateway"),
            mock_response(200, payload={"ok": True}),
        ]

        response = await client.call(session, "repos/o/r")

        assert response.payload == {"ok": True}
        assert client.get_metrics()["retries"] == 1

    @pytest.mark.asyncio
    async def test_retry_after_rate_limit(self, client, session):
        session.get.side_effect = [
            mock_response(429, headers={"Retry-After": "2"}, text='{"message": "slow down"}'),
            mock_response(200, payload=[1]),
        ]

        response = await client.call(session, "repos/o/r")

        assert response.payload == [1]
        client.retry_policy.sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_retries(self, client, session):
        session.get.side_effect = lambda *a, **kw: mock_response(
            403, headers={"Retry-After": "1"}, text='{"message": "secondary rate limit"}'
        )

        with pytest.raises(RateLimitError) as exc_info:
            await client.call(session, "repos/o/r")

        assert exc_info.value.attempts == 3
        assert session.get.call_count == 3

    @pytest.mark.asyncio
    async def test_network_error_is_retried_then_raised(self, client, session):
        session.get.side_effect = aiohttp.ClientConnectionError("connection refused")

        with pytest.raises(ApiError) as exc_info:
            await client.call(session, "repos/o/r")

        assert exc_info.value.kind == ApiErrorKind.NETWORK
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_timeout(self, client, session):
        ctx = MagicMock()
        ctx.__aenter__ = AsyncMock(side_effect=asyncio.TimeoutError())
        ctx.__aexit__ = AsyncMock(return_value=False)
        session.get.return_value = ctx

        with pytest.raises(ApiError) as exc_info:
            await client.call(session, "repos/o/r")

        assert exc_info.value.kind == ApiErrorKind.TIMEOUT

    def test_classification(self):
        assert classify_error(403, {}, '{"message": "nope"}', "x").kind == ApiErrorKind.FORBIDDEN
        assert classify_error(404, {}, "", "x").kind == ApiErrorKind.NOT_FOUND
        assert classify_error(422, {}, "", "x").kind == ApiErrorKind.REQUEST
        assert classify_error(503, {}, "", "x").kind == ApiErrorKind.SERVER

        limited = classify_error(
            403, {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1030"}, "", "x", now=1000
        )
        assert isinstance(limited, RateLimitError)
        assert limited.retry_after == 30

    @pytest.mark.asyncio
    async def test_token_never_leaks(self, client, session):
        session.get.return_value = mock_response(422, text=f"invalid header Authorization: Bearer {TOKEN}")

        with pytest.raises(ApiError) as exc_info:
            await client.call(session, "repos/o/r")

        assert TOKEN not in str(exc_info.value)
        assert TOKEN not in repr(client)


class TestOtherEndpoints:
    """GraphQL, rate limit and workflow runs"""

    @pytest.mark.asyncio
    async def test_graphql_is_cached(self, client, session):
        session.post.return_value = mock_response(payload={"data": {"viewer": {"login": "octo"}}})

        first = await client.graphql(session, "query { viewer { login } }")
        second = await client.graphql(session, "query { viewer { login } }")

        assert first.payload["data"]["viewer"]["login"] == "octo"
        assert second.from_cache is True
        assert session.post.call_count == 1
        args, kwargs = session.post.call_args
        assert args[0] == "https://api.github.com/graphql"
        assert kwargs["json"] == {"query": "query { viewer { login } }", "variables": {}}

    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self, client, session):
        session.post.return_value = mock_response(payload={"errors": [{"message": "Field 'x' doesn't exist"}]})

        with pytest.raises(ApiError) as exc_info:
            await client.graphql(session, "query { x }")

        assert exc_info.value.kind == ApiErrorKind.REQUEST
        assert "doesn't exist" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_refresh_rate_limit_is_uncached_and_unbudgeted(self, client, session):
        payload = {"resources": {"core": {"limit": 5000, "remaining": 4000, "reset": 1700000000, "used": 1000}}}
        session.get.side_effect = lambda *a, **kw: mock_response(payload=payload)

        await client.refresh_rate_limit(session)
        usage = await client.get_api_usage(session)

        assert session.get.call_count == 2
        assert client.budget.used_in_window == 0
        assert client.budget.remote_remaining == 4000
        assert usage.used == 1000
        assert usage.usage_percent == 20
        assert usage.level == "healthy"

    @pytest.mark.asyncio
    async def test_list_workflow_runs_paginates(self, client, session):
        page1 = {"workflow_runs": [{"id": i, "name": "CI"} for i in range(100)]}
        page2 = {"workflow_runs": [{"id": i, "name": "CI"} for i in range(100, 150)]}
        session.get.side_effect = [mock_response(payload=page1), mock_response(payload=page2)]

        runs = await client.list_workflow_runs(session, "o/r", limit=150)

        assert len(runs) == 150
        assert runs[0]["repository_name"] == "o/r"
        first_params = session.get.call_args_list[0][1]["params"]
        assert first_params == {"per_page": "100", "page": "1"}

    @pytest.mark.asyncio
    async def test_list_workflow_runs_honours_limit(self, client, session):
        session.get.return_value = mock_response(
            payload={"workflow_runs": [{"id": i, "name": "CI"} for i in range(10)]}
        )

        runs = await client.list_workflow_runs(session, "o/r", limit=5, status="completed")

        assert len(runs) == 5
        params = session.get.call_args[1]["params"]
        assert params["status"] == "completed"
        assert params["per_page"] == "5"

    def test_reset_metrics(self, client):
        client.api_calls_total = 5
        client.reset_metrics()
        assert client.get_metrics()["api_calls_total"] == 0
