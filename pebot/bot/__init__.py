"""Slack bot handlers."""

from .handlers import SlackMessageHandler, setup_handlers

__all__ = ["SlackMessageHandler", "setup_handlers"]
