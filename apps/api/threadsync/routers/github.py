"""GitHub proxy endpoints.

Issues and pull requests of connected repositories, as the portal shows
them, plus "create issue from thread". Called by the portal backend with
X-Internal-Secret.
"""
import logging
from typing import NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from threadsync.core.deps import get_db, verify_internal_secret
from threadsync.db.models import User
from threadsync.schemas.thread import ExternalIssue, ExternalIssueList, GitHubIssueCreate
from threadsync.services import github_api, integration_service, thread_service
from threadsync.services.integration_service import IntegrationError, IntegrationErrorCode

router = APIRouter(tags=["GitHub"], dependencies=[Depends(verify_internal_secret)])
logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {
    IntegrationErrorCode.INTEGRATION_NOT_FOUND,
    IntegrationErrorCode.THREAD_NOT_FOUND,
}


class RepoIssueCreate(BaseModel):
    owner: str
    repo: str
    title: str = Field(min_length=1, max_length=256)
    body: str | None = None


def _raise_http(e: Exception) -> NoReturn:
    if isinstance(e, IntegrationError):
        status_code = 404 if e.code in NOT_FOUND_CODES else 400
        raise HTTPException(status_code=status_code, detail=e.code.value) from e
    if isinstance(e, github_api.GitHubApiError):
        logger.warning("GitHub API error %s: %s", e.status_code, e)
        raise HTTPException(status_code=502, detail="GitHub request failed") from e
    raise e


@router.get("/github/issues", response_model=ExternalIssueList)
async def list_repo_issues(
    organization_id: UUID = Query(...),
    owner: str = Query(...),
    repo: str = Query(...),
    state: str = Query("open", pattern="^(open|closed|all)$"),
    db: Session = Depends(get_db),
):
    try:
        config, target = integration_service.require_github_repo(db, organization_id, owner, repo)
        items = await github_api.list_issues(config.installation_id, owner, repo, state=state)
    except (IntegrationError, github_api.GitHubApiError) as e:
        _raise_http(e)
    return ExternalIssueList(
        items=[thread_service.external_issue(i, owner, repo, target.full_name) for i in items]
    )


@router.get("/github/pulls", response_model=ExternalIssueList)
async def list_repo_pull_requests(
    organization_id: UUID = Query(...),
    owner: str = Query(...),
    repo: str = Query(...),
    state: str = Query("open", pattern="^(open|closed|all)$"),
    db: Session = Depends(get_db),
):
    try:
        config, target = integration_service.require_github_repo(db, organization_id, owner, repo)
        items = await github_api.list_pull_requests(
            config.installation_id, owner, repo, state=state
        )
    except (IntegrationError, github_api.GitHubApiError) as e:
        _raise_http(e)
    return ExternalIssueList(
        items=[thread_service.external_issue(i, owner, repo, target.full_name) for i in items]
    )


@router.post("/github/issues", response_model=ExternalIssue, status_code=201)
async def create_repo_issue(
    data: RepoIssueCreate,
    organization_id: UUID = Query(...),
    db: Session = Depends(get_db),
):
    try:
        config, target = integration_service.require_github_repo(
            db, organization_id, data.owner, data.repo
        )
        issue = await github_api.create_issue(
            config.installation_id, data.owner, data.repo, data.title, data.body or ""
        )
    except (IntegrationError, github_api.GitHubApiError) as e:
        _raise_http(e)
    return thread_service.external_issue(issue, data.owner, data.repo, target.full_name)


@router.post("/threads/{thread_id}/github-issue", response_model=ExternalIssue, status_code=201)
async def create_thread_issue(
    thread_id: UUID,
    data: GitHubIssueCreate,
    organization_id: UUID = Query(...),
    db: Session = Depends(get_db),
):
    """Create a GitHub issue for a thread and link it (github_issue_created update)."""
    actor = None
    if data.user_id:
        actor = db.get(User, data.user_id)
        if actor is None or actor.organization_id != organization_id:
            raise HTTPException(status_code=404, detail="User not found")

    try:
        return await thread_service.create_github_issue_for_thread(
            db,
            organization_id,
            thread_id,
            title=data.title,
            owner=data.owner,
            repo=data.repo,
            body=data.body,
            actor=actor,
        )
    except (IntegrationError, github_api.GitHubApiError) as e:
        _raise_http(e)
