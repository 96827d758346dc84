"""Pydantic schemas for thread operations exposed over HTTP."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ThreadRead(BaseModel):
    """Thread response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    name: str
    status: int
    priority: int
    external_id: str | None
    external_origin: str | None
    external_issue_id: str | None
    external_pr_id: str | None


class GitHubIssueCreate(BaseModel):
    """Create a GitHub issue for a thread."""
    title: str = Field(min_length=1, max_length=256)
    body: str | None = None
    owner: str
    repo: str
    user_id: UUID | None = None


class ExternalRepository(BaseModel):
    owner: str
    name: str
    full_name: str


class ExternalIssue(BaseModel):
    """Issue or pull request as shown in the portal (id is github:owner/repo#id)."""
    id: str
    number: int
    title: str
    body: str | None = None
    state: str
    url: str
    repository: ExternalRepository


class ExternalIssueList(BaseModel):
    items: list[ExternalIssue]


class RelayRunResult(BaseModel):
    messages_sent: int
    updates_sent: int
    failures: int
