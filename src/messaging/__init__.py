"""Operator message channel (Telegram)."""

from messaging.gateway import BaseGateway, GatewayError, InboundMessage, TelegramGateway

__all__ = ["BaseGateway", "GatewayError", "InboundMessage", "TelegramGateway"]
