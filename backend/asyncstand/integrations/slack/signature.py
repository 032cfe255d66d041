from __future__ import annotations

import hashlib
import hmac
import time
from typing import Optional

import structlog
from fastapi import Request, status

from asyncstand.core.config import settings
from asyncstand.core.errors import INVALID_SIGNATURE, api_error

logger = structlog.get_logger(__name__)

SIGNATURE_VERSION = "v0"


def compute_slack_signature(secret: str, timestamp: str, body: bytes | str) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    basestring = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + body
    digest = hmac.new(secret.encode("utf-8"), basestring, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"



def verify_slack_signature(
    body: bytes | str,
    timestamp: Optional[str],
    signature: Optional[str],
    secret: Optional[str],
    *,
    now: Optional[float] = None,
    max_age_seconds: int = 300,
) -> bool:
    """
    Verify an incoming Slack request (X-Slack-Request-Timestamp / X-Slack-Signature).

    Without a configured signing secret verification is skipped, which keeps
    local development against ngrok tunnels workable.
    """
    if not secret:
        logger.warning("slack_signing_secret_missing", detail="skipping signature verification")
        return True

    if not timestamp or not signature:
        logger.warning("slack_signature_headers_missing")
        return False

    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        logger.warning("slack_signature_bad_timestamp", timestamp=timestamp)
        return False

    current = time.time() if now is None else now
    if abs(current - ts) > max_age_seconds:
        logger.warning("slack_signature_stale", age_seconds=int(current - ts))
        return False

    expected = compute_slack_signature(secret, timestamp, body)
    # headers arrive latin-1 decoded and may hold non-ASCII text
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8", "surrogateescape")):
        logger.warning("slack_signature_mismatch")
        return False

    return True


async def require_slack_signature(request: Request) -> bytes:
    """
    FastAPI dependency: verifies the raw body and hands it back to the endpoint.
    The body is cached on the request, so form parsing afterwards still works.
    """
    body = await request.body()
    ok = verify_slack_signature(
        body,
        request.headers.get("X-Slack-Request-Timestamp"),
        request.headers.get("X-Slack-Signature"),
        settings.SLACK_SIGNING_SECRET,
        max_age_seconds=settings.SLACK_SIGNATURE_MAX_AGE_SECONDS,
    )
    if not ok:
        raise api_error(status.HTTP_401_UNAUTHORIZED, INVALID_SIGNATURE, "Invalid Slack signature")
    return body
