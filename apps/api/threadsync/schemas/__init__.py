"""Pydantic schemas for config blobs, update metadata and API models."""

from threadsync.schemas.integration import (
    DiscordIntegrationConfig,
    DiscordWebhook,
    GitHubIntegrationConfig,
    GitHubRepo,
    IntegrationConfigError,
    SlackInstallation,
    SlackIntegrationConfig,
    dump_integration_config,
    parse_integration_config,
)
from threadsync.schemas.update import dump_update_metadata, parse_update_metadata

__all__ = [
    "DiscordIntegrationConfig",
    "DiscordWebhook",
    "GitHubIntegrationConfig",
    "GitHubRepo",
    "IntegrationConfigError",
    "SlackInstallation",
    "SlackIntegrationConfig",
    "dump_integration_config",
    "dump_update_metadata",
    "parse_integration_config",
    "parse_update_metadata",
]
