"""Typed Update.metadata payloads, one model per update type."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from threadsync.db.enums import UpdateType


class _MetadataModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    user_name: str | None = Field(default=None, alias="userName")
    source: str | None = None


class StatusChangedMetadata(_MetadataModel):
    old_status: int | None = Field(default=None, alias="oldStatus")
    new_status: int = Field(alias="newStatus")
    old_status_label: str | None = Field(default=None, alias="oldStatusLabel")
    new_status_label: str | None = Field(default=None, alias="newStatusLabel")
    # GitHub-originated transitions
    issue_number: int | None = Field(default=None, alias="issueNumber")
    pr_number: int | None = Field(default=None, alias="prNumber")
    repo_full_name: str | None = Field(default=None, alias="repoFullName")
    merged: bool | None = None


class PriorityChangedMetadata(_MetadataModel):
    old_priority: int | None = Field(default=None, alias="oldPriority")
    new_priority: int = Field(alias="newPriority")
    old_priority_label: str | None = Field(default=None, alias="oldPriorityLabel")
    new_priority_label: str | None = Field(default=None, alias="newPriorityLabel")


class AssignedChangedMetadata(_MetadataModel):
    old_assigned_user_id: str | None = Field(default=None, alias="oldAssignedUserId")
    new_assigned_user_id: str | None = Field(default=None, alias="newAssignedUserId")
    old_assigned_user_name: str | None = Field(default=None, alias="oldAssignedUserName")
    new_assigned_user_name: str | None = Field(default=None, alias="newAssignedUserName")


class MarkedDuplicateMetadata(_MetadataModel):
    duplicate_of_thread_id: str = Field(alias="duplicateOfThreadId")
    duplicate_of_thread_name: str | None = Field(default=None, alias="duplicateOfThreadName")
    old_status: int | None = Field(default=None, alias="oldStatus")


class GitHubIssueMetadata(_MetadataModel):
    """github_issue_created / github_issue_linked."""

    issue_id: str = Field(alias="issueId")
    issue_number: int | None = Field(default=None, alias="issueNumber")
    issue_label: str | None = Field(default=None, alias="issueLabel")
    issue_url: str | None = Field(default=None, alias="issueUrl")


class GitHubPullRequestMetadata(_MetadataModel):
    pr_id: str = Field(alias="prId")
    pr_number: int | None = Field(default=None, alias="prNumber")
    pr_label: str | None = Field(default=None, alias="prLabel")
    pr_url: str | None = Field(default=None, alias="prUrl")


UPDATE_METADATA_MODELS: dict[str, type[_MetadataModel]] = {
    UpdateType.STATUS_CHANGED.value: StatusChangedMetadata,
    UpdateType.PRIORITY_CHANGED.value: PriorityChangedMetadata,
    UpdateType.ASSIGNED_CHANGED.value: AssignedChangedMetadata,
    UpdateType.MARKED_DUPLICATE.value: MarkedDuplicateMetadata,
    UpdateType.GITHUB_ISSUE_CREATED.value: GitHubIssueMetadata,
    UpdateType.GITHUB_ISSUE_LINKED.value: GitHubIssueMetadata,
    UpdateType.GITHUB_PR_LINKED.value: GitHubPullRequestMetadata,
}


def parse_update_metadata(update_type: str, raw: dict | None) -> _MetadataModel | None:
    """Validate stored metadata. Returns None for unknown types or malformed blobs."""
    model = UPDATE_METADATA_MODELS.get(update_type)
    if model is None:
        return None
    try:
        return model.model_validate(raw or {})
    except ValidationError:
        return None


def dump_update_metadata(metadata: _MetadataModel) -> dict[str, Any]:
    return metadata.model_dump(by_alias=True, exclude_none=True, mode="json")
