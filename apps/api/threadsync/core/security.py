"""Signature verification, install-state tokens and GitHub App JWTs."""

import hashlib
import hmac
import secrets
import time
import uuid

import jwt

from threadsync.core.config import settings


# =============================================================================
# Webhook signatures
# =============================================================================

def verify_github_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify X-Hub-Signature-256 header.

    GitHub sends: sha256=<hex hmac of raw body>
    """
    if not signature or not secret:
        return False
    if not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(f"sha256={expected}", signature)


def verify_slack_signature(
    body: bytes,
    signature: str,
    timestamp: str,
    secret: str,
    max_age_seconds: int = 300,
    now: float | None = None,
) -> bool:
    """
    Verify X-Slack-Signature header.

    Slack sends: v0=<hex hmac of "v0:<timestamp>:<body>">
    Requests older than max_age_seconds are rejected to block replays.
    """
    if not signature or not timestamp or not secret:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    current = time.time() if now is None else now
    if abs(current - ts) > max_age_seconds:
        return False

    message = b"v0:" + timestamp.encode("utf-8") + b":" + body
    expected = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return hmac.compare_digest(f"v0={expected}", signature)


# =============================================================================
# Install state (<organizationId>_<csrfToken>)
# =============================================================================

def generate_csrf_token() -> str:
    """Generate a random CSRF token for an install round-trip."""
    return secrets.token_hex(16)


def build_install_state(org_id: uuid.UUID | str, csrf_token: str) -> str:
    return f"{org_id}_{csrf_token}"


def parse_install_state(state: str | None) -> tuple[uuid.UUID, str] | None:
    """Split state into (org_id, csrf_token). Returns None when malformed."""
    if not state:
        return None
    org_part, sep, csrf_token = state.partition("_")
    if not sep or not org_part or not csrf_token:
        return None
    try:
        return uuid.UUID(org_part), csrf_token
    except ValueError:
        return None


def csrf_tokens_match(expected: str | None, received: str) -> bool:
    if not expected:
        return False
    # Bytes: compare_digest rejects non-ASCII str input
    return secrets.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


# =============================================================================
# GitHub App authentication
# =============================================================================

GITHUB_APP_JWT_TTL_SECONDS = 540  # GitHub caps app JWTs at 10 minutes


def create_github_app_jwt(now: int | None = None) -> str:
    """Create a short-lived RS256 JWT identifying the GitHub App."""
    issued_at = int(time.time()) if now is None else now
    payload = {
        # Backdated to absorb clock drift
        "iat": issued_at - 60,
        "exp": issued_at + GITHUB_APP_JWT_TTL_SECONDS,
        "iss": settings.GITHUB_APP_ID,
    }
    return jwt.encode(payload, settings.github_private_key, algorithm="RS256")
