"""GroupMe bot channel: webhook in, bot post API out."""

import asyncio
from typing import Any

import httpx
from fastapi import FastAPI, Request, Response
from uvicorn import Config, Server

from ..utils.config import get_settings
from ..utils.logging import get_logger
from .base import BaseChannel, ChannelKind, InboundMessage

logger = get_logger(__name__)

GROUPME_API_URL = "https://api.groupme.com/v3/bots/post"


def parse_payload(payload: dict[str, Any]) -> InboundMessage | None:
    """Convert a GroupMe callback payload; None if it carries nothing usable."""
    text = (payload.get("text") or "").strip()
    image_refs: list[str] = []
    mentions: list[str] = []
    for attachment in payload.get("attachments") or []:
        kind = attachment.get("type")
        if kind == "image" and attachment.get("url"):
            image_refs.append(attachment["url"])
        elif kind == "mentions":
            mentions.extend(str(uid) for uid in attachment.get("user_ids") or [])

    if not text and not image_refs:
        return None

    return InboundMessage(
        sender_id=str(payload.get("sender_id") or payload.get("user_id") or ""),
        sender_name=payload.get("name") or "someone",
        text=text,
        channel_kind=ChannelKind.GROUP,
        conversation_id=str(payload.get("group_id") or ""),
        image_refs=image_refs,
        mentions=mentions,
        is_self=payload.get("sender_type") == "bot",
        is_system=bool(payload.get("system")),
        raw=payload,
    )


class GroupMeChannel(BaseChannel):
    """
    GroupMe group chat via a bot.

    GroupMe posts every group message (including the bot's own) to the
    callback URL. The webhook always answers 200 right away so GroupMe
    never retries, and processing continues in the background.
    """

    plain_text = True

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        settings = get_settings()
        config = settings.channels.groupme
        super().__init__("groupme", allowed_senders=config.allowed_senders)

        self.bot_id = config.bot_id or settings.groupme_bot_id
        if not self.bot_id:
            raise ValueError("GROUPME_BOT_ID is required for the GroupMe channel")
        self.host = config.host
        self.port = config.port
        self.max_message_length = config.max_message_length
        self.ack_text = config.ack_text

        self._http = http_client
        self._server: Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        app = FastAPI(title="HouseBot GroupMe webhook", docs_url=None, redoc_url=None)

        @app.get("/health")
        async def health() -> dict[str, str]:
            return {"status": "ok"}

        @app.post("/")
        @app.post("/groupme")
        async def webhook(request: Request) -> Response:
            try:
                payload = await request.json()
            except ValueError:
                logger.debug("Received webhook with invalid JSON")
                return Response(status_code=200)

            message = parse_payload(payload) if isinstance(payload, dict) else None
            if message is not None:
                task = asyncio.create_task(self._dispatch_message(message))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
            return Response(status_code=200)

        return app

    async def start(self) -> None:
        if self._connected:
            return
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=30)
        self._server = Server(Config(app=self.app, host=self.host, port=self.port, log_level="info"))
        self._serve_task = asyncio.create_task(self._server.serve())
        self._connected = True
        logger.info("GroupMe channel started", host=self.host, port=self.port)

    async def stop(self) -> None:
        if not self._connected:
            return
        if self._server:
            self._server.should_exit = True
        if self._serve_task:
            await asyncio.gather(self._serve_task, return_exceptions=True)
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        if self._http:
            await self._http.aclose()
            self._http = None
        self._connected = False
        logger.info("GroupMe channel stopped")

    async def send_message(self, conversation_id: str, content: str) -> None:
        """Post as the bot. A bot is bound to one group, so the id is only logged."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=30)
        response = await self._http.post(GROUPME_API_URL, json={"bot_id": self.bot_id, "text": content})
        if response.status_code >= 400:
            raise RuntimeError(f"GroupMe API error: {response.status_code} {response.reason_phrase}")
        logger.debug("GroupMe message sent", group_id=conversation_id, chars=len(content))
