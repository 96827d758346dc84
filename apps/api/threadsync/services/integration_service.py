"""Integration config store.

Per-organization, per-platform rows whose JSON config carries the platform
link (teamId / installationId), the install CSRF token, selected channels and
backfill progress. Config is always read through the typed models in
threadsync.schemas.integration and written back as a fresh dict.
"""

from __future__ import annotations

import logging
from enum import Enum
from urllib.parse import urlencode
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from threadsync.core.config import settings
from threadsync.core.security import (
    build_install_state,
    csrf_tokens_match,
    generate_csrf_token,
    parse_install_state,
)
from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import Platform
from threadsync.db.models import Integration
from threadsync.schemas.integration import (
    BackfillProgress,
    GitHubIntegrationConfig,
    GitHubRepo,
    IntegrationConfigError,
    SlackIntegrationConfig,
    dump_integration_config,
    parse_integration_config,
)

logger = logging.getLogger(__name__)

SLACK_AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"


class IntegrationErrorCode(str, Enum):
    INTEGRATION_NOT_FOUND = "INTEGRATION_NOT_FOUND"
    INTEGRATION_CONFIG_NOT_FOUND = "INTEGRATION_CONFIG_NOT_FOUND"
    CSRF_TOKEN_MISMATCH = "CSRF_TOKEN_MISMATCH"
    INVALID_STATE = "INVALID_STATE"
    INSTALLATION_NOT_CONFIGURED = "INSTALLATION_NOT_CONFIGURED"
    REPOSITORIES_NOT_CONFIGURED = "REPOSITORIES_NOT_CONFIGURED"
    REPOSITORY_NOT_CONNECTED = "REPOSITORY_NOT_CONNECTED"
    THREAD_NOT_FOUND = "THREAD_NOT_FOUND"


class IntegrationError(Exception):
    """Configuration error surfaced to the calling flow, never retried."""

    def __init__(self, code: IntegrationErrorCode, message: str | None = None):
        self.code = code
        super().__init__(message or code.value)


# =============================================================================
# Lookup
# =============================================================================

def get_integration(db: Session, org_id: UUID, integration_type: str) -> Integration | None:
    return db.scalars(
        select(Integration).where(
            Integration.organization_id == org_id,
            Integration.type == integration_type,
        )
    ).first()


def get_enabled_integration(
    db: Session, org_id: UUID, integration_type: str
) -> Integration | None:
    return db.scalars(
        select(Integration).where(
            Integration.organization_id == org_id,
            Integration.type == integration_type,
            Integration.enabled.is_(True),
        )
    ).first()


def read_config(integration: Integration):
    """Typed config for the row. Raises IntegrationConfigError when malformed."""
    return parse_integration_config(integration.type, integration.config)


def safe_read_config(integration: Integration):
    """Typed config, or None (logged) when the stored blob is malformed."""
    try:
        return read_config(integration)
    except IntegrationConfigError as exc:
        logger.warning(
            "Skipping integration %s with malformed config: %s",
            integration.id,
            exc,
            extra=build_log_context(
                org_id=str(integration.organization_id), platform=integration.type
            ),
        )
        return None


def write_config(integration: Integration, config) -> None:
    integration.config = dump_integration_config(config)


def find_slack_integration_by_team_id(
    db: Session, team_id: str, enabled_only: bool = True
) -> Integration | None:
    """
    Scan Slack integrations for the one whose config.teamId matches.

    Routing is by the config value, not the row id: the row exists (holding
    only a CSRF token) before Slack tells us which team it belongs to.
    """
    if not team_id:
        return None
    stmt = select(Integration).where(Integration.type == Platform.SLACK.value)
    if enabled_only:
        stmt = stmt.where(Integration.enabled.is_(True))
    for integration in db.scalars(stmt):
        config = safe_read_config(integration)
        if config is not None and config.team_id == team_id:
            return integration
    return None


def find_discord_integration_by_guild_id(db: Session, guild_id: str | None) -> Integration | None:
    """Enabled Discord integration whose config.guildId matches."""
    if not guild_id:
        return None
    stmt = select(Integration).where(
        Integration.type == Platform.DISCORD.value,
        Integration.enabled.is_(True),
    )
    for integration in db.scalars(stmt):
        config = safe_read_config(integration)
        if config is not None and config.guild_id == str(guild_id):
            return integration
    return None


def find_github_integrations_by_installation(
    db: Session, installation_id: int
) -> list[Integration]:
    stmt = select(Integration).where(
        Integration.type == Platform.GITHUB.value,
        Integration.enabled.is_(True),
    )
    matches: list[Integration] = []
    for integration in db.scalars(stmt):
        config = safe_read_config(integration)
        if config is not None and config.installation_id == installation_id:
            matches.append(integration)
    return matches


# =============================================================================
# Connect / install callback
# =============================================================================

def install_url(integration_type: str, state: str) -> str:
    if integration_type == Platform.SLACK.value:
        params = {
            "client_id": settings.SLACK_CLIENT_ID,
            "scope": settings.SLACK_SCOPES,
            "redirect_uri": settings.SLACK_REDIRECT_URI,
            "state": state,
        }
        return f"{SLACK_AUTHORIZE_URL}?{urlencode(params)}"
    if integration_type == Platform.GITHUB.value:
        return (
            f"https://github.com/apps/{settings.GITHUB_APP_SLUG}/installations/new?"
            f"{urlencode({'state': state})}"
        )
    raise ValueError(f"Unsupported integration type: {integration_type}")


def start_connect(db: Session, org_id: UUID, integration_type: str) -> tuple[Integration, str]:
    """
    Begin a platform install round-trip.

    Creates the Integration row (disabled) on first connect, or refreshes the
    CSRF token on an existing row. Returns the row and the state parameter.
    """
    integration = get_integration(db, org_id, integration_type)
    if integration is None:
        integration = Integration(
            organization_id=org_id,
            type=integration_type,
            enabled=False,
            config={},
        )
        db.add(integration)
        config = parse_integration_config(integration_type, {})
    else:
        config = read_config(integration)

    csrf_token = generate_csrf_token()
    config.csrf_token = csrf_token
    write_config(integration, config)
    db.commit()
    db.refresh(integration)

    logger.info(
        "Integration connect started",
        extra=build_log_context(org_id=str(org_id), platform=integration_type),
    )
    return integration, build_install_state(org_id, csrf_token)


def validate_install_state(db: Session, state: str | None, integration_type: str) -> Integration:
    """Resolve the pending Integration for an install callback, checking its CSRF token."""
    parsed = parse_install_state(state)
    if parsed is None:
        raise IntegrationError(IntegrationErrorCode.INVALID_STATE)
    org_id, csrf_token = parsed

    integration = get_integration(db, org_id, integration_type)
    if integration is None:
        raise IntegrationError(IntegrationErrorCode.INTEGRATION_NOT_FOUND)
    if not integration.config:
        raise IntegrationError(IntegrationErrorCode.INTEGRATION_CONFIG_NOT_FOUND)

    try:
        config = read_config(integration)
    except IntegrationConfigError as exc:
        raise IntegrationError(IntegrationErrorCode.INTEGRATION_CONFIG_NOT_FOUND) from exc

    if not csrf_tokens_match(config.csrf_token, csrf_token):
        raise IntegrationError(IntegrationErrorCode.CSRF_TOKEN_MISMATCH)
    return integration


def complete_github_setup(
    db: Session,
    integration: Integration,
    installation_id: int,
    repos: list[dict],
) -> Integration:
    """Store the installation and its repositories, clear the CSRF token and enable."""
    config: GitHubIntegrationConfig = read_config(integration)
    config.csrf_token = None
    config.installation_id = installation_id
    config.repos = [
        GitHubRepo(
            full_name=repo["full_name"],
            owner=repo["owner"]["login"],
            name=repo["name"],
        )
        for repo in repos
    ]
    config.pending_repos = None
    write_config(integration, config)
    integration.enabled = True
    db.commit()
    db.refresh(integration)

    logger.info(
        "GitHub integration enabled with %d repositories",
        len(config.repos),
        extra=build_log_context(
            org_id=str(integration.organization_id), platform=Platform.GITHUB.value
        ),
    )
    return integration


def set_slack_team(db: Session, integration: Integration, team_id: str) -> Integration:
    """Record the team id so the installation store can address this row."""
    config: SlackIntegrationConfig = read_config(integration)
    config.team_id = team_id
    write_config(integration, config)
    db.commit()
    db.refresh(integration)
    return integration


def finish_slack_install(db: Session, integration: Integration) -> Integration:
    """Clear the CSRF token and enable once the installation is stored."""
    config: SlackIntegrationConfig = read_config(integration)
    config.csrf_token = None
    write_config(integration, config)
    integration.enabled = True
    db.commit()
    db.refresh(integration)

    logger.info(
        "Slack integration enabled",
        extra=build_log_context(
            org_id=str(integration.organization_id), platform=Platform.SLACK.value
        ),
    )
    return integration


# =============================================================================
# Channels and backfill progress
# =============================================================================

def set_selected_channels(
    db: Session, integration: Integration, channels: list[str]
) -> list[str]:
    """Replace selectedChannels. Returns the channels that were newly added."""
    config = read_config(integration)
    previous = set(config.selected_channels)
    deduped = list(dict.fromkeys(c for c in channels if c))
    config.selected_channels = deduped
    write_config(integration, config)
    db.commit()
    db.refresh(integration)
    return [c for c in deduped if c not in previous]


def update_backfill_progress(
    db: Session,
    integration_id: UUID,
    processed: int = 0,
    total: int = 0,
) -> BackfillProgress | None:
    """Add to backfill {processed, total}. The row is locked on PostgreSQL."""
    integration = db.scalars(
        select(Integration).where(Integration.id == integration_id).with_for_update()
    ).first()
    if integration is None:
        return None
    config = read_config(integration)
    progress = config.backfill or BackfillProgress()
    progress = BackfillProgress(
        processed=progress.processed + processed,
        total=progress.total + total,
    )
    config.backfill = progress
    write_config(integration, config)
    db.commit()
    return progress


# =============================================================================
# GitHub repository access
# =============================================================================

def require_github_repo(
    db: Session, org_id: UUID, owner: str, repo: str
) -> tuple[GitHubIntegrationConfig, GitHubRepo]:
    """Enabled GitHub config and the connected repository, or IntegrationError."""
    integration = get_enabled_integration(db, org_id, Platform.GITHUB.value)
    if integration is None or not integration.config:
        raise IntegrationError(IntegrationErrorCode.INTEGRATION_NOT_FOUND)
    try:
        config: GitHubIntegrationConfig = read_config(integration)
    except IntegrationConfigError as exc:
        raise IntegrationError(IntegrationErrorCode.INTEGRATION_CONFIG_NOT_FOUND) from exc
    if not config.repos:
        raise IntegrationError(IntegrationErrorCode.REPOSITORIES_NOT_CONFIGURED)
    if not config.installation_id:
        raise IntegrationError(IntegrationErrorCode.INSTALLATION_NOT_CONFIGURED)
    target = config.find_repo(owner, repo)
    if target is None:
        raise IntegrationError(IntegrationErrorCode.REPOSITORY_NOT_CONNECTED)
    return config, target
