#!/usr/bin/env python3
"""
GitHub API client for the Claude Code Auto Workflows toolkit.

Every read goes through the response cache first. Cache misses are admitted
by the shared RateBudget, sent over the caller's aiohttp session, classified
into ApiError/RateLimitError on failure and retried through RetryPolicy when
the failure is transient.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from .cache_store import CacheStore, make_cache_key, normalize_param
from .exceptions import ApiError, RateLimitError, register_secret
from .models import ApiErrorKind, ApiResponse, ApiUsage
from .rate_limiter import RateBudget, header_value, int_or_none
from .retry import RetryPolicy


MAX_PER_PAGE = 100


def _is_retryable(error: Exception) -> bool:
    return bool(getattr(error, "retryable", False))


def _error_message(text: str) -> str:
    """Pull GitHub's `message` field out of an error body, if any"""
    try:
        body = json.loads(text)
    except ValueError:
        return text.strip()[:200] or "no response body"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return text.strip()[:200]


def classify_error(
    status: int,
    headers: Mapping[str, str],
    text: str,
    endpoint: str,
    now: Optional[float] = None
) -> Exception:
    """Map an HTTP error response onto the toolkit's error taxonomy"""
    message = _error_message(text)
    remaining = header_value(headers, "X-RateLimit-Remaining")
    retry_after = header_value(headers, "Retry-After")

    if status == 429 or (status == 403 and (remaining == "0" or retry_after)):
        wait: Optional[float] = None
        if retry_after is not None:
            wait = int_or_none(retry_after)
        elif remaining == "0":
            reset = int_or_none(header_value(headers, "X-RateLimit-Reset"))
            if reset is not None:
                wait = max(0.0, reset - (now if now is not None else time.time()))
        return RateLimitError(message, endpoint=endpoint, retry_after=wait)

    if status == 401:
        kind = ApiErrorKind.AUTH
    elif status == 403:
        kind = ApiErrorKind.FORBIDDEN
    elif status == 404:
        kind = ApiErrorKind.NOT_FOUND
    elif status >= 500:
        kind = ApiErrorKind.SERVER
    else:
        kind = ApiErrorKind.REQUEST
    return ApiError(kind, message, endpoint=endpoint, status=status)


class GitHubClient:
    """Caching, rate-limited GitHub REST and GraphQL client"""

    def __init__(
        self,
        config,
        cache: Optional[CacheStore] = None,
        budget: Optional[RateBudget] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.config = config
        self.base_url = config.github_api_url.rstrip("/")
        self._token = config.github_token
        register_secret(self._token)
        self.headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            self.headers["Authorization"] = f"Bearer {self._token}"

        self.cache = cache if cache is not None else CacheStore.from_config(config)
        self.budget = budget if budget is not None else RateBudget.from_config(config)
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy.from_config(config)
        self.timeout = aiohttp.ClientTimeout(total=config.request_timeout)
        self.reset_metrics()

    def __repr__(self) -> str:
        return f"GitHubClient(base_url={self.base_url!r}, authenticated={bool(self._token)})"

    def reset_metrics(self):
        self.api_calls_total = 0
        self.cache_hits = 0
        self.network_calls = 0
        self.retries = 0

    def get_metrics(self) -> Dict[str, int]:
        """Counters for this client since the last reset"""
        hit_rate = self.cache_hits * 100 // self.api_calls_total if self.api_calls_total else 0
        return {
            "api_calls_total": self.api_calls_total,
            "cache_hits": self.cache_hits,
            "cache_hit_rate_percent": hit_rate,
            "network_calls": self.network_calls,
            "retries": self.retries,
            "rate_limit_warnings": self.budget.warnings,
        }

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def _cached(self, key: str, endpoint: str) -> Optional[ApiResponse]:
        entry = await self.cache.get(key)
        if entry is None:
            return None
        self.cache_hits += 1
        logging.debug(f"Cache hit for {endpoint}")
        return ApiResponse(status=200, payload=entry.payload, from_cache=True)

    async def _send(
        self,
        session: aiohttp.ClientSession,
        endpoint: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        budgeted: bool = True
    ) -> ApiResponse:
        """One HTTP attempt: admit, send, classify"""
        if budgeted:
            await self.budget.acquire(endpoint)

        self.network_calls += 1
        url = self._url(endpoint)
        try:
            if json_body is not None:
                request = session.post(url, headers=self.headers, json=json_body, timeout=self.timeout)
            else:
                request = session.get(url, headers=self.headers, params=params, timeout=self.timeout)
            async with request as resp:
                headers = dict(resp.headers)
                self.budget.update_from_headers(headers)
                if resp.status >= 400:
                    raise classify_error(resp.status, headers, await resp.text(), endpoint)
                payload = await resp.json(content_type=None)
                return ApiResponse(status=resp.status, payload=payload, headers=headers)
        except asyncio.TimeoutError as e:
            raise ApiError(
                ApiErrorKind.TIMEOUT,
                f"no response within {self.config.request_timeout}s",
                endpoint=endpoint,
            ) from e
        except aiohttp.ClientError as e:
            raise ApiError(ApiErrorKind.NETWORK, str(e) or type(e).__name__, endpoint=endpoint) from e
        except ValueError as e:
            raise ApiError(ApiErrorKind.SERVER, f"invalid JSON in response: {e}", endpoint=endpoint) from e

    async def _send_with_retry(self, session: aiohttp.ClientSession, endpoint: str, **kwargs) -> ApiResponse:
        def count_retry(attempt: int, error: Exception):
            self.retries += 1

        return await self.retry_policy.run(
            lambda: self._send(session, endpoint, **kwargs),
            is_retryable=_is_retryable,
            describe=f"GitHub API call {endpoint}",
            on_retry=count_retry,
        )

    async def call(
        self,
        session: aiohttp.ClientSession,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None
    ) -> ApiResponse:
        """GET an endpoint, served from cache when a fresh entry exists.

        Raises:
            ApiError: on a fatal failure or once transient retries are exhausted
            RateLimitError: if the quota stays exhausted across all retries
        """
        self.api_calls_total += 1
        params = dict(params or {})
        key = make_cache_key(endpoint, params)

        cached = await self._cached(key, endpoint)
        if cached is not None:
            return cached

        query = {k: normalize_param(v) for k, v in params.items()}
        response = await self._send_with_retry(session, endpoint, params=query or None)
        await self.cache.put(key, response.payload, self.config.cache_ttl)
        return response

    async def graphql(
        self,
        session: aiohttp.ClientSession,
        query: str,
        variables: Optional[Dict[str, Any]] = None
    ) -> ApiResponse:
        """POST a GraphQL query; responses are cached like REST reads"""
        self.api_calls_total += 1
        body = {"query": query, "variables": variables or {}}
        key = make_cache_key("graphql", body)

        cached = await self._cached(key, "graphql")
        if cached is not None:
            return cached

        response = await self._send_with_retry(session, "graphql", json_body=body)
        payload = response.payload
        if isinstance(payload, dict) and payload.get("errors"):
            messages = "; ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err)
                for err in payload["errors"]
            )
            raise ApiError(ApiErrorKind.REQUEST, messages, endpoint="graphql", status=response.status)

        await self.cache.put(key, payload, self.config.cache_ttl)
        return response

    async def refresh_rate_limit(self, session: aiohttp.ClientSession) -> Dict[str, Any]:
        """Fetch /rate_limit (never cached, not charged to the budget)"""
        self.api_calls_total += 1
        response = await self._send_with_retry(session, "rate_limit", budgeted=False)
        payload = response.payload if isinstance(response.payload, dict) else {}
        self.budget.update_from_payload(payload)
        return payload

    async def get_api_usage(self, session: aiohttp.ClientSession) -> Optional[ApiUsage]:
        """Current core quota as an ApiUsage snapshot"""
        payload = await self.refresh_rate_limit(session)
        core = (payload.get("resources") or {}).get("core") or payload.get("rate")
        if not isinstance(core, dict):
            return None
        limit = int_or_none(core.get("limit")) or 0
        remaining = int_or_none(core.get("remaining")) or 0
        used = int_or_none(core.get("used"))
        return ApiUsage(
            used=used if used is not None else max(0, limit - remaining),
            limit=limit,
            remaining=remaining,
            reset_at=int_or_none(core.get("reset")),
        )

    async def list_workflow_runs(
        self,
        session: aiohttp.ClientSession,
        repo: str,
        limit: int,
        status: Optional[str] = None
    ) -> List[Dict]:
        """Most recent workflow runs for a repository, newest first"""
        runs: List[Dict] = []
        page = 1
        while len(runs) < limit:
            params: Dict[str, Any] = {"per_page": min(limit, MAX_PER_PAGE), "page": page}
            if status:
                params["status"] = status
            response = await self.call(session, f"repos/{repo}/actions/runs", params)
            batch = response.payload.get("workflow_runs", []) if isinstance(response.payload, dict) else []
            for run in batch:
                run.setdefault("repository_name", repo)
            runs.extend(batch)
            if len(batch) < params["per_page"]:
                break
            page += 1

        logging.debug(f"Fetched {len(runs[:limit])} workflow run(s) for {repo}")
        return runs[:limit]
