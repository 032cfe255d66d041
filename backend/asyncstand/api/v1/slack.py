from __future__ import annotations

import json
from typing import Any
from urllib.parse import parse_qs

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.db.session import get_db
from asyncstand.integrations.slack.handlers import (
    handle_event_callback,
    handle_interactive,
    handle_slash_command,
)
from asyncstand.integrations.slack.signature import require_slack_signature

router = APIRouter(prefix="/slack", tags=["slack"])
logger = structlog.get_logger(__name__)


def _form(body: bytes) -> dict[str, Any]:
    """Slack posts application/x-www-form-urlencoded; keep the first value of each field."""
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid form body")
    parsed = parse_qs(text, keep_blank_values=True)
    return {k: v[0] for k, v in parsed.items()}


def _json_body(body: bytes) -> dict[str, Any]:
    try:
        data = json.loads(body or b"{}")
    except ValueError:
        # UnicodeDecodeError included
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    if not isinstance(data, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    return data


@router.post("/events")
async def slack_events(
    body: bytes = Depends(require_slack_signature),
    db: AsyncSession = Depends(get_db),
):
    payload = _json_body(body)
    kind = payload.get("type")

    if kind == "url_verification":
        return {"challenge": payload.get("challenge")}

    if kind == "event_callback":
        await handle_event_callback(db, payload)
    else:
        logger.info("slack_event_ignored", type=kind)

    return {"ok": True}


@router.post("/interactive")
async def slack_interactive(
    body: bytes = Depends(require_slack_signature),
    db: AsyncSession = Depends(get_db),
):
    raw = _form(body).get("payload")
    if not raw:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing payload")
    result = await handle_interactive(db, _json_body(raw.encode("utf-8")))
    if result is None:
        return Response(status_code=status.HTTP_200_OK)
    return result


@router.post("/commands")
async def slack_commands(
    body: bytes = Depends(require_slack_signature),
    db: AsyncSession = Depends(get_db),
):
    return await handle_slash_command(db, _form(body))
