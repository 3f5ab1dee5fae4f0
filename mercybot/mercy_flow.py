from __future__ import annotations

import enum
import logging
from typing import Tuple

import discord

from .errors import InvalidMercyMessage, NoRoleConfigured, RoleNotAssignable, RoleNotFound
from .models import BotState
from .storage import StateStorage
from .views import MercyView

log = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


class GrantOutcome(enum.Enum):
    GRANTED = "granted"
    ALREADY_GRANTED = "already_granted"
    FAILED = "failed"


class MercyFlow:
    """Configurable mercy message whose Accept button hands out a role."""

    def __init__(self, storage: StateStorage, state: BotState) -> None:
        self.storage = storage
        self.state = state

    async def set_message(self, text: str) -> str:
        if not text or not text.strip():
            raise InvalidMercyMessage("The mercy speech can't be empty.")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise InvalidMercyMessage(
                f"The mercy speech must be at most {MAX_MESSAGE_LENGTH} characters."
            )
        self.state.mercy_message = text
        await self.storage.save(self.state)
        log.info("Mercy message updated (%d chars).", len(text))
        return text

    async def set_role(self, role: discord.Role, bot_top_role: discord.Role) -> discord.Role:
        # Discord refuses role grants at or above the bot's own highest role.
        if role.position >= bot_top_role.position:
            raise RoleNotAssignable()
        self.state.mercy_role_id = role.id
        await self.storage.save(self.state)
        log.info("Mercy role set to %s (%s).", role.name, role.id)
        return role

    def announce(self) -> Tuple[discord.Embed, MercyView]:
        if self.state.mercy_role_id is None:
            raise NoRoleConfigured()
        embed = discord.Embed(
            title="Mercy",
            description=self.state.mercy_message,
            color=discord.Color.green(),
        )
        return embed, MercyView()

    async def accept(
        self, guild: discord.Guild, member: discord.Member
    ) -> Tuple[GrantOutcome, discord.Role]:
        role_id = self.state.mercy_role_id
        if role_id is None:
            raise NoRoleConfigured("No mercy role configured!")

        role = guild.get_role(role_id)
        if role is None:
            raise RoleNotFound()

        if any(held.id == role_id for held in member.roles):
            return GrantOutcome.ALREADY_GRANTED, role

        try:
            await member.add_roles(role, reason="Accepted the mercy speech")
        except discord.HTTPException as exc:
            log.warning("Failed to give mercy role %s to %s: %s", role_id, member.id, exc)
            return GrantOutcome.FAILED, role

        log.info("Granted mercy role %s to %s.", role_id, member.id)
        return GrantOutcome.GRANTED, role
