"""Typed integration config blobs and Slack installation objects.

Integration.config is persisted as camelCase JSON. Each platform has its own
model, validated whenever config is read and dumped back with aliases so
unknown keys written by other tools survive the round-trip.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from threadsync.db.enums import Platform


class IntegrationConfigError(ValueError):
    """Raised when a stored config blob does not match its platform model."""


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class BackfillProgress(_ConfigModel):
    processed: int = 0
    total: int = 0


# =============================================================================
# Slack installation (installation-store contract)
# =============================================================================

class SlackTeamRef(_ConfigModel):
    id: str
    name: str | None = None


class SlackBotCredentials(_ConfigModel):
    token: str
    id: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    scopes: list[str] = Field(default_factory=list)


class SlackInstallation(_ConfigModel):
    """App installation issued by Slack OAuth, stored under config.installation."""

    team: SlackTeamRef | None = None
    enterprise: SlackTeamRef | None = None
    is_enterprise_install: bool = Field(default=False, alias="isEnterpriseInstall")
    app_id: str | None = Field(default=None, alias="appId")
    bot: SlackBotCredentials | None = None

    @property
    def team_key(self) -> str | None:
        """Id the installation is stored under (enterprise id for org-wide installs)."""
        if self.is_enterprise_install:
            return self.enterprise.id if self.enterprise else None
        return self.team.id if self.team else None

    @property
    def bot_token(self) -> str | None:
        return self.bot.token if self.bot else None

    @classmethod
    def from_oauth_response(cls, data: dict[str, Any]) -> "SlackInstallation":
        """Build from an oauth.v2.access response body."""
        scopes = [s for s in (data.get("scope") or "").split(",") if s]
        bot = None
        if data.get("access_token"):
            bot = SlackBotCredentials(
                token=data["access_token"],
                id=data.get("bot_id"),
                user_id=data.get("bot_user_id"),
                scopes=scopes,
            )
        return cls(
            team=data.get("team") or None,
            enterprise=data.get("enterprise") or None,
            is_enterprise_install=bool(data.get("is_enterprise_install")),
            app_id=data.get("app_id"),
            bot=bot,
        )


# =============================================================================
# Per-platform config
# =============================================================================

class SlackIntegrationConfig(_ConfigModel):
    team_id: str | None = Field(default=None, alias="teamId")
    csrf_token: str | None = Field(default=None, alias="csrfToken")
    selected_channels: list[str] = Field(default_factory=list, alias="selectedChannels")
    access_token: str | None = Field(default=None, alias="accessToken")
    installation: SlackInstallation | None = None
    show_portal_message: bool = Field(default=True, alias="showPortalMessage")
    backfill: BackfillProgress | None = None


class GitHubRepo(_ConfigModel):
    full_name: str = Field(alias="fullName")
    owner: str
    name: str


class GitHubIntegrationConfig(_ConfigModel):
    csrf_token: str | None = Field(default=None, alias="csrfToken")
    installation_id: int | None = Field(default=None, alias="installationId")
    repos: list[GitHubRepo] = Field(default_factory=list)
    pending_repos: list[GitHubRepo] | None = Field(default=None, alias="pendingRepos")
    selected_events: list[str] = Field(
        default_factory=lambda: ["issues", "pull_request"], alias="selectedEvents"
    )

    def find_repo(self, owner: str, name: str) -> GitHubRepo | None:
        for repo in self.repos:
            if repo.owner == owner and repo.name == name:
                return repo
        return None


class DiscordWebhook(_ConfigModel):
    """Channel webhook the relay posts through."""

    id: str
    token: str


class DiscordIntegrationConfig(_ConfigModel):
    guild_id: str | None = Field(default=None, alias="guildId")
    csrf_token: str | None = Field(default=None, alias="csrfToken")
    selected_channels: list[str] = Field(default_factory=list, alias="selectedChannels")
    show_portal_message: bool = Field(default=True, alias="showPortalMessage")
    backfill: BackfillProgress | None = None
    # Parent channel id -> webhook
    webhooks: dict[str, DiscordWebhook] | None = None

    def accepts_channel(self, channel_id: str | None, channel_name: str | None) -> bool:
        """Selected channels may be stored by id or by name."""
        selected = set(self.selected_channels)
        return bool(selected) and (channel_id in selected or channel_name in selected)


IntegrationConfig = SlackIntegrationConfig | GitHubIntegrationConfig | DiscordIntegrationConfig

CONFIG_MODELS: dict[str, type[_ConfigModel]] = {
    Platform.SLACK.value: SlackIntegrationConfig,
    Platform.GITHUB.value: GitHubIntegrationConfig,
    Platform.DISCORD.value: DiscordIntegrationConfig,
}


def parse_integration_config(integration_type: str, raw: dict | None):
    """Validate a stored config blob. Raises IntegrationConfigError."""
    model = CONFIG_MODELS.get(integration_type)
    if model is None:
        raise IntegrationConfigError(f"Unknown integration type: {integration_type}")
    try:
        return model.model_validate(raw or {})
    except ValidationError as exc:
        raise IntegrationConfigError(
            f"Invalid {integration_type} config: {exc.error_count()} error(s)"
        ) from exc


def dump_integration_config(config: _ConfigModel) -> dict[str, Any]:
    """Serialize back to the persisted camelCase shape."""
    return config.model_dump(by_alias=True, exclude_none=True, mode="json")
