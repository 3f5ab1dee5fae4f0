"""Exceptions raised by the giveaway and mercy features.

Every ``BotError`` carries the message shown to the member who triggered it.
"""

from __future__ import annotations

from typing import Optional


class BotError(RuntimeError):
    """Base class for failures that are reported back to the invoking user."""

    default_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class AlreadyEnded(BotError):
    default_message = "This giveaway has ended!"


class DuplicateEntry(BotError):
    default_message = "You are already entered in this giveaway!"


class NoRoleConfigured(BotError):
    default_message = "No mercy role has been set! Use /mercyrole first."


class RoleNotAssignable(BotError):
    default_message = (
        "I can't assign that role because it is at or above my highest role."
    )


class RoleNotFound(BotError):
    default_message = "Mercy role not found!"


class InvalidMercyMessage(BotError):
    default_message = "That mercy speech can't be used."


class ChannelNotWritable(BotError):
    default_message = (
        "I need permission to send messages in this channel to post the giveaway."
    )


class GuildOnly(BotError):
    default_message = "This can only be used inside a guild."


class UnknownCommand(BotError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown command: {name}")
        self.name = name


class PersistenceFailure(BotError):
    default_message = "Failed to persist bot state."
