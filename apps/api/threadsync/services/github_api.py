"""GitHub REST client authenticated as the GitHub App.

App-level calls use a short-lived RS256 JWT; repository calls exchange it
for a per-installation access token first.
"""

from __future__ import annotations

from typing import Any

import httpx

from threadsync.core.config import settings
from threadsync.core.security import create_github_app_jwt

HTTPX_TIMEOUT = httpx.Timeout(15.0, connect=5.0)
PER_PAGE = 100
MAX_PAGES = 10


class GitHubApiError(Exception):
    """GitHub REST call failed."""

    def __init__(self, status_code: int | None, message: str):
        self.status_code = status_code
        super().__init__(f"GitHub API {status_code or 'error'}: {message}")


def _headers(token: str) -> dict[str, str]:
    return {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": settings.GITHUB_API_VERSION,
    }


def _url(path: str) -> str:
    return f"{settings.GITHUB_API_BASE_URL.rstrip('/')}{path}"


async def _request(
    method: str,
    path: str,
    token: str,
    params: dict[str, Any] | None = None,
    json: dict[str, Any] | None = None,
) -> Any:
    try:
        async with httpx.AsyncClient(timeout=HTTPX_TIMEOUT) as client:
            resp = await client.request(
                method, _url(path), headers=_headers(token), params=params, json=json
            )
    except httpx.TimeoutException as exc:
        raise GitHubApiError(None, "timeout") from exc
    except httpx.HTTPError as exc:
        raise GitHubApiError(None, type(exc).__name__) from exc

    if resp.status_code >= 400:
        raise GitHubApiError(resp.status_code, resp.text[:300])
    try:
        return resp.json()
    except ValueError as exc:
        raise GitHubApiError(resp.status_code, "invalid_json") from exc


async def get_installation_token(installation_id: int) -> str:
    data = await _request(
        "POST",
        f"/app/installations/{installation_id}/access_tokens",
        create_github_app_jwt(),
    )
    return data["token"]


async def list_installation_repositories(installation_id: int) -> list[dict[str, Any]]:
    """All repositories granted to the installation."""
    token = await get_installation_token(installation_id)
    repos: list[dict[str, Any]] = []
    for page in range(1, MAX_PAGES + 1):
        data = await _request(
            "GET",
            "/installation/repositories",
            token,
            params={"per_page": PER_PAGE, "page": page},
        )
        batch = data.get("repositories") or []
        repos.extend(batch)
        if len(batch) < PER_PAGE:
            break
    return repos


async def list_issues(
    installation_id: int, owner: str, repo: str, state: str = "open"
) -> list[dict[str, Any]]:
    """Issues only: the issues endpoint also returns pull requests, which are dropped."""
    token = await get_installation_token(installation_id)
    data = await _request(
        "GET",
        f"/repos/{owner}/{repo}/issues",
        token,
        params={"state": state, "per_page": PER_PAGE},
    )
    return [item for item in data if "pull_request" not in item]


async def list_pull_requests(
    installation_id: int, owner: str, repo: str, state: str = "open"
) -> list[dict[str, Any]]:
    token = await get_installation_token(installation_id)
    return await _request(
        "GET",
        f"/repos/{owner}/{repo}/pulls",
        token,
        params={"state": state, "per_page": PER_PAGE},
    )


async def create_issue(
    installation_id: int, owner: str, repo: str, title: str, body: str
) -> dict[str, Any]:
    token = await get_installation_token(installation_id)
    return await _request(
        "POST",
        f"/repos/{owner}/{repo}/issues",
        token,
        json={"title": title, "body": body},
    )
