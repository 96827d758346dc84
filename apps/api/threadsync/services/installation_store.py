"""Slack installation store backed by Integration.config.

Implements the installation-store contract (store / fetch / delete) keyed
exclusively by the teamId inside the config JSON. Enterprise-wide installs
are keyed by the enterprise id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import Platform
from threadsync.schemas.integration import SlackInstallation, SlackIntegrationConfig
from threadsync.services import integration_service

logger = logging.getLogger(__name__)


class InstallationNotFoundError(LookupError):
    """No integration or no installation stored for the requested team."""


@dataclass(frozen=True)
class InstallationQuery:
    team_id: str | None = None
    enterprise_id: str | None = None
    is_enterprise_install: bool = False

    @property
    def key(self) -> str | None:
        if self.is_enterprise_install:
            return self.enterprise_id
        return self.team_id


class IntegrationInstallationStore:
    """Installation store for one database session."""

    def __init__(self, db: Session):
        self.db = db

    def _find(self, team_key: str | None):
        # Pending (disabled) rows are addressable: the install callback
        # stores the installation before the row is enabled.
        return integration_service.find_slack_integration_by_team_id(
            self.db, team_key or "", enabled_only=False
        )

    def store(self, installation: SlackInstallation) -> None:
        team_key = installation.team_key
        integration = self._find(team_key)
        if integration is None:
            raise InstallationNotFoundError("Integration not found")

        config: SlackIntegrationConfig = integration_service.read_config(integration)
        config.team_id = team_key
        config.installation = installation
        integration_service.write_config(integration, config)
        self.db.commit()

        logger.info(
            "Slack installation stored",
            extra=build_log_context(
                org_id=str(integration.organization_id), platform=Platform.SLACK.value
            ),
        )

    def fetch(self, query: InstallationQuery) -> SlackInstallation:
        integration = self._find(query.key)
        if integration is None:
            raise InstallationNotFoundError("Integration not found")

        config: SlackIntegrationConfig = integration_service.read_config(integration)
        if config.installation is None:
            raise InstallationNotFoundError("Installation not found")
        return config.installation

    def delete(self, query: InstallationQuery) -> None:
        integration = self._find(query.key)
        if integration is None:
            return

        config: SlackIntegrationConfig = integration_service.read_config(integration)
        if config.installation is None:
            return
        config.installation = None
        integration_service.write_config(integration, config)
        self.db.commit()

        logger.info(
            "Slack installation deleted",
            extra=build_log_context(
                org_id=str(integration.organization_id), platform=Platform.SLACK.value
            ),
        )
