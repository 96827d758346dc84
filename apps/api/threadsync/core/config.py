"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Frontend (for safe redirects after install callbacks)
    FRONTEND_URL: str = "http://localhost:3000"

    # Customer portal, threads are linked as https://<org slug>.<domain>/threads/<id>
    PORTAL_BASE_DOMAIN: str = "localhost:3000"
    PORTAL_SCHEME: str = "http"

    # Internal operator endpoints (connect flows, proxies, manual relay runs)
    INTERNAL_SECRET: str = ""

    # Slack app
    SLACK_SIGNING_SECRET: str = ""
    SLACK_CLIENT_ID: str = ""
    SLACK_CLIENT_SECRET: str = ""
    SLACK_REDIRECT_URI: str = "http://localhost:8000/integrations/slack/oauth/callback"
    SLACK_SCOPES: str = (
        "channels:history,channels:read,chat:write,chat:write.customize,"
        "groups:history,groups:read,users:read"
    )
    SLACK_REQUEST_MAX_AGE_SECONDS: int = 300  # replay window for signed requests
    SLACK_API_BASE_URL: str = "https://slack.com/api"

    # GitHub app
    GITHUB_APP_ID: str = ""
    GITHUB_APP_SLUG: str = ""
    GITHUB_PRIVATE_KEY: str = ""  # PEM, literal "\n" sequences are accepted
    GITHUB_WEBHOOK_SECRET: str = ""
    GITHUB_API_BASE_URL: str = "https://api.github.com"
    GITHUB_API_VERSION: str = "2022-11-28"

    # Discord bot (a gateway bridge forwards MESSAGE_CREATE to /internal/discord/events)
    DISCORD_BOT_TOKEN: str = ""
    DISCORD_API_BASE_URL: str = "https://discord.com/api/v10"
    DISCORD_WEBHOOK_NAME: str = "Support Portal"

    # Webhooks
    WEBHOOK_MAX_PAYLOAD_BYTES: int = 1_000_000  # 1MB limit

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # GCP monitoring (Cloud Logging + Error Reporting)
    GCP_MONITORING_ENABLED: bool = False
    GCP_PROJECT_ID: str = ""
    GCP_SERVICE_NAME: str = "threadsync-api"
    GCP_ERROR_REPORTING_SAMPLE_RATE: float = 1.0

    # Rate Limiting (requests per minute)
    RATE_LIMIT_WEBHOOK: int = 300
    RATE_LIMIT_API: int = 60
    REDIS_URL: str = "redis://localhost:6379/0"

    # Outbound relay
    RELAY_BATCH_SIZE: int = 25
    RELAY_MAX_ATTEMPTS: int = 8
    RELAY_BACKOFF_BASE_SECONDS: int = 5
    RELAY_BACKOFF_MAX_SECONDS: int = 900
    RELAY_LEASE_SECONDS: int = 120  # claim held on a row while it is being posted

    # Worker
    WORKER_POLL_INTERVAL: int = 5
    WORKER_BATCH_SIZE: int = 10

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def github_private_key(self) -> str:
        """PEM key with escaped newlines restored."""
        return self.GITHUB_PRIVATE_KEY.replace("\\n", "\n")

    @property
    def slack_scopes_list(self) -> list[str]:
        return [s.strip() for s in self.SLACK_SCOPES.split(",") if s.strip()]

    @property
    def gcp_project_id(self) -> str:
        return self.GCP_PROJECT_ID


settings = Settings()
