from __future__ import annotations

from typing import Any, Optional

import structlog
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

logger = structlog.get_logger(__name__)


class SlackMessenger:
    """
    Thin wrapper around AsyncWebClient for one workspace bot token.

    Send failures are logged and reported as None; a Slack outage must not fail
    the request or job that triggered the message.
    """

    def __init__(self, token: str, client: AsyncWebClient | None = None):
        self._client = client or AsyncWebClient(token=token)

    async def post_message(
        self,
        channel: str,
        text: str,
        *,
        blocks: Optional[list[dict[str, Any]]] = None,
        thread_ts: Optional[str] = None,
    ) -> Optional[str]:
        try:
            response = await self._client.chat_postMessage(
                channel=channel,
                text=text,
                blocks=blocks,
                thread_ts=thread_ts,
            )
        except SlackApiError as e:
            logger.warning("slack_post_message_failed", channel=channel, error=e.response.get("error"))
            return None
        return response.get("ts")

    async def send_direct_message(
        self,
        platform_user_id: str,
        text: str,
        *,
        blocks: Optional[list[dict[str, Any]]] = None,
    ) -> Optional[str]:
        try:
            opened = await self._client.conversations_open(users=platform_user_id)
        except SlackApiError as e:
            logger.warning("slack_open_dm_failed", user=platform_user_id, error=e.response.get("error"))
            return None

        channel_id = (opened.get("channel") or {}).get("id")
        if not channel_id:
            logger.warning("slack_open_dm_no_channel", user=platform_user_id)
            return None
        return await self.post_message(channel_id, text, blocks=blocks)

    async def open_modal(self, trigger_id: str, view: dict[str, Any]) -> Optional[str]:
        try:
            response = await self._client.views_open(trigger_id=trigger_id, view=view)
        except SlackApiError as e:
            logger.warning("slack_open_modal_failed", error=e.response.get("error"))
            return None
        return (response.get("view") or {}).get("id")

    async def update_message(
        self,
        channel: str,
        ts: str,
        text: str,
        *,
        blocks: Optional[list[dict[str, Any]]] = None,
    ) -> Optional[str]:
        try:
            response = await self._client.chat_update(channel=channel, ts=ts, text=text, blocks=blocks)
        except SlackApiError as e:
            logger.warning("slack_update_message_failed", channel=channel, error=e.response.get("error"))
            return None
        return response.get("ts")


def get_messenger(integration) -> SlackMessenger:
    """Messenger for an Integration row."""
    return SlackMessenger(token=integration.bot_token)
