"""Platform integrations router.

Connect flows for Slack and GitHub. The connect endpoints are called by the
portal backend (X-Internal-Secret); the callbacks are hit by the platforms'
install redirects and always answer with a redirect to the settings page.
"""
import logging
from urllib.parse import urlencode
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from threadsync.core.config import settings
from threadsync.core.deps import get_db, verify_internal_secret
from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import Platform
from threadsync.schemas.integration import SlackInstallation
from threadsync.services import github_api, integration_service, slack_api, slack_backfill_service
from threadsync.services.installation_store import IntegrationInstallationStore
from threadsync.services.integration_service import IntegrationError

router = APIRouter(prefix="/integrations", tags=["Integrations"])
logger = logging.getLogger(__name__)

CONNECTABLE_TYPES = {Platform.SLACK.value, Platform.GITHUB.value}


# ============================================================================
# Models
# ============================================================================

class ConnectRequest(BaseModel):
    organization_id: UUID


class ConnectResponse(BaseModel):
    integration_id: UUID
    state: str
    install_url: str


class SlackChannelsRequest(BaseModel):
    organization_id: UUID
    channels: list[str] = Field(default_factory=list)
    backfill: bool = True


class SlackChannelsResponse(BaseModel):
    selected_channels: list[str]
    backfill_scheduled: list[str]


def _settings_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(
        f"{settings.FRONTEND_URL}/settings/integrations?{urlencode(params)}",
        status_code=302,
    )


def _error_redirect(code: str) -> RedirectResponse:
    return _settings_redirect(error=code)


# ============================================================================
# Connect
# ============================================================================

@router.post(
    "/{integration_type}/connect",
    response_model=ConnectResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def connect_integration(
    integration_type: str,
    data: ConnectRequest,
    db: Session = Depends(get_db),
):
    """Create (or refresh) the pending integration and return the install URL."""
    if integration_type not in CONNECTABLE_TYPES:
        raise HTTPException(status_code=404, detail="Unknown integration type")

    integration, state = integration_service.start_connect(
        db, data.organization_id, integration_type
    )
    return ConnectResponse(
        integration_id=integration.id,
        state=state,
        install_url=integration_service.install_url(integration_type, state),
    )


# ============================================================================
# GitHub App setup callback
# ============================================================================

@router.get("/github/setup")
async def github_setup_callback(
    installation_id: str | None = None,
    state: str | None = None,
    db: Session = Depends(get_db),
) -> RedirectResponse:
    """Handle the GitHub App post-install redirect."""
    if not installation_id or not state:
        return _error_redirect("missing_params")
    try:
        parsed_installation_id = int(installation_id)
    except ValueError:
        return _error_redirect("invalid_installation_id")

    try:
        integration = integration_service.validate_install_state(
            db, state, Platform.GITHUB.value
        )
    except IntegrationError as e:
        logger.warning("GitHub setup rejected: %s", e.code.value)
        return _error_redirect(e.code.value.lower())

    try:
        repos = await github_api.list_installation_repositories(parsed_installation_id)
        integration_service.complete_github_setup(
            db, integration, parsed_installation_id, repos
        )
    except Exception:
        db.rollback()
        logger.exception(
            "GitHub setup callback failed",
            extra=build_log_context(
                org_id=str(integration.organization_id), platform=Platform.GITHUB.value
            ),
        )
        return _error_redirect("callback_error")

    return _settings_redirect(success=Platform.GITHUB.value)


# ============================================================================
# Slack OAuth callback
# ============================================================================

@router.get("/slack/oauth/callback")
async def slack_oauth_callback(
    code: str | None = None,
    state: str | None = None,
    db: Session = Depends(get_db),
) -> RedirectResponse:
    """Handle the Slack OAuth v2 redirect."""
    if not code or not state:
        return _error_redirect("missing_params")

    try:
        integration = integration_service.validate_install_state(
            db, state, Platform.SLACK.value
        )
    except IntegrationError as e:
        logger.warning("Slack OAuth callback rejected: %s", e.code.value)
        return _error_redirect(e.code.value.lower())

    try:
        response = await slack_api.oauth_v2_access(code)
        installation = SlackInstallation.from_oauth_response(response)
        if not installation.team_key or not installation.bot_token:
            raise ValueError("OAuth response has no team or bot token")

        # teamId first so the installation store can address the row
        integration_service.set_slack_team(db, integration, installation.team_key)
        IntegrationInstallationStore(db).store(installation)
        integration_service.finish_slack_install(db, integration)
    except Exception:
        db.rollback()
        logger.exception(
            "Slack OAuth callback failed",
            extra=build_log_context(
                org_id=str(integration.organization_id), platform=Platform.SLACK.value
            ),
        )
        return _error_redirect("callback_error")

    return _settings_redirect(success=Platform.SLACK.value)


# ============================================================================
# Slack channel selection
# ============================================================================

@router.put(
    "/slack/channels",
    response_model=SlackChannelsResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def set_slack_channels(
    data: SlackChannelsRequest,
    db: Session = Depends(get_db),
):
    """Replace the synced channel list, backfilling newly added channels."""
    integration = integration_service.get_enabled_integration(
        db, data.organization_id, Platform.SLACK.value
    )
    if integration is None:
        raise HTTPException(status_code=404, detail="Slack integration not connected")

    added = integration_service.set_selected_channels(db, integration, data.channels)
    scheduled: list[str] = []
    if data.backfill:
        for channel_id in added:
            if slack_backfill_service.schedule_channel_backfill(db, integration, channel_id):
                scheduled.append(channel_id)

    config = integration_service.read_config(integration)
    return SlackChannelsResponse(
        selected_channels=config.selected_channels,
        backfill_scheduled=scheduled,
    )
