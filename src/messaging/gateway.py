"""Operator message channel.

The orchestrator depends only on ``BaseGateway``; ``TelegramGateway`` is the
production implementation (python-telegram-bot ``Bot`` in long-poll mode).
Tests substitute an in-memory fake.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger
from telegram import Bot
from telegram.constants import ChatAction, MessageLimit
from telegram.error import TelegramError

#: Extra read timeout on top of the long-poll window so the HTTP call outlives it
_READ_TIMEOUT_SLACK = 10.0


class GatewayError(Exception):
    """Raised when the message transport fails."""
    pass


@dataclass(frozen=True)
class InboundMessage:
    id: int
    channel: str
    text: str
    sent_at: datetime


class BaseGateway(ABC):
    """Long-poll inbound messages and send replies to a channel."""

    async def start(self) -> None:
        """Open transport resources. Default: nothing to open."""

    async def close(self) -> None:
        """Release transport resources. Default: nothing to release."""

    async def __aenter__(self) -> "BaseGateway":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @abstractmethod
    async def poll_messages(self, timeout_seconds: int) -> List[InboundMessage]:
        """Wait up to ``timeout_seconds`` for new messages.

        Safe to call repeatedly; a message is returned at most once.

        Raises:
            GatewayError: On transport failure.
        """

    @abstractmethod
    async def send_message(self, channel: str, text: str) -> None:
        """Send ``text`` to ``channel``, split into chunks the channel accepts.

        Raises:
            GatewayError: On transport failure.
        """

    @abstractmethod
    async def send_typing(self, channel: str) -> None:
        """Best-effort typing indicator; never raises."""


def chunk_text(text: str, limit: int) -> List[str]:
    """Split ``text`` into consecutive pieces of at most ``limit`` characters."""
    if len(text) <= limit:
        return [text]
    return [text[i:i + limit] for i in range(0, len(text), limit)]


class TelegramGateway(BaseGateway):
    """Telegram Bot API gateway restricted to a single allowed chat.

    Updates from any other chat are consumed (the offset still advances) but
    never returned.
    """

    max_message_length: int = MessageLimit.MAX_TEXT_LENGTH

    def __init__(self, token: str, allowed_chat_id: str, bot: Optional[Bot] = None) -> None:
        self.allowed_chat_id = str(allowed_chat_id).strip()
        self.bot = bot if bot is not None else Bot(token=token)
        self._offset = 0

    @property
    def offset(self) -> int:
        return self._offset

    async def start(self) -> None:
        try:
            await self.bot.initialize()
        except TelegramError as e:
            raise GatewayError(f"Telegram init failed: {e}") from e
        logger.info(f"✅ Telegram gateway ready (chat {self.allowed_chat_id})")

    async def close(self) -> None:
        try:
            await self.bot.shutdown()
        except TelegramError as e:
            logger.warning(f"Telegram shutdown error: {e}")

    async def poll_messages(self, timeout_seconds: int) -> List[InboundMessage]:
        try:
            updates = await self.bot.get_updates(
                offset=self._offset,
                timeout=timeout_seconds,
                allowed_updates=["message"],
                read_timeout=timeout_seconds + _READ_TIMEOUT_SLACK,
            )
        except TelegramError as e:
            raise GatewayError(f"getUpdates failed: {e}") from e

        messages: List[InboundMessage] = []
        for update in updates:
            self._offset = max(self._offset, update.update_id + 1)
            message = update.message
            if message is None:
                continue
            chat_id = str(message.chat_id)
            if chat_id != self.allowed_chat_id:
                logger.warning(f"Ignoring message from unauthorized chat {chat_id}")
                continue
            sent_at = message.date or datetime.now(timezone.utc)
            messages.append(InboundMessage(update.update_id, chat_id, message.text or "", sent_at))
        return messages

    async def send_message(self, channel: str, text: str) -> None:
        for chunk in chunk_text(text, self.max_message_length):
            try:
                await self.bot.send_message(chat_id=channel, text=chunk)
            except TelegramError as e:
                raise GatewayError(f"sendMessage failed: {e}") from e

    async def send_typing(self, channel: str) -> None:
        try:
            await self.bot.send_chat_action(chat_id=channel, action=ChatAction.TYPING)
        except TelegramError as e:
            logger.debug(f"Typing indicator failed: {e}")
