"""Single entry point for slash commands and button clicks."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

import discord
from discord import app_commands

from .errors import BotError, GuildOnly, UnknownCommand
from .giveaway_manager import GiveawayManager
from .mercy_flow import GrantOutcome, MercyFlow
from .views import GIVEAWAY_ENTRY_PREFIX, MERCY_ACCEPT_ID

log = logging.getLogger(__name__)

GENERIC_FAILURE = "Something went wrong while handling that. Please try again later."

# leaves room for the reply wrapper inside Discord's 2000 character message limit
SPEECH_PREVIEW_LENGTH = 1900

CommandHandler = Callable[..., Awaitable[None]]


class InteractionRouter:
    """Dispatches interactions to the giveaway and mercy features.

    Feature errors (``BotError``) become an ephemeral reply with their own
    message. Anything else is logged and answered with a generic failure so a
    single bad interaction never takes the bot down.
    """

    def __init__(self, giveaways: GiveawayManager, mercy: MercyFlow) -> None:
        self.giveaways = giveaways
        self.mercy = mercy
        self._commands: Dict[str, CommandHandler] = {
            "giveaway": self._handle_giveaway,
            "mercyspeech": self._handle_mercy_speech,
            "mercy": self._handle_mercy,
            "mercyrole": self._handle_mercy_role,
        }

    @property
    def command_names(self) -> tuple[str, ...]:
        return tuple(self._commands)

    async def run_command(
        self, interaction: discord.Interaction, name: str, **options
    ) -> None:
        handler = self._commands.get(name)

        async def call() -> None:
            if handler is None:
                raise UnknownCommand(name)
            await handler(interaction, **options)

        await self._guarded(interaction, f"command /{name}", call)

    async def dispatch_component(self, interaction: discord.Interaction) -> bool:
        """Route a button click by custom id; returns False for ids we don't own."""
        data = interaction.data if isinstance(interaction.data, dict) else {}
        custom_id = str(data.get("custom_id", ""))

        if custom_id.startswith(GIVEAWAY_ENTRY_PREFIX):
            giveaway_id = custom_id[len(GIVEAWAY_ENTRY_PREFIX):]
            await self._guarded(
                interaction,
                f"giveaway entry {giveaway_id}",
                lambda: self._handle_entry(interaction, giveaway_id),
            )
            return True
        if custom_id == MERCY_ACCEPT_ID:
            await self._guarded(
                interaction, "mercy accept", lambda: self._handle_mercy_accept(interaction)
            )
            return True
        return False

    async def handle_tree_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CommandNotFound):
            await self._reply(interaction, str(UnknownCommand(error.name)))
            return
        if isinstance(error, app_commands.CheckFailure):
            await self._reply(interaction, "You are not allowed to use this command here.")
            return
        log.error("Unhandled command tree error", exc_info=error)
        await self._reply(interaction, GENERIC_FAILURE)

    # --- Command handlers -------------------------------------------------

    async def _handle_giveaway(
        self,
        interaction: discord.Interaction,
        *,
        prize: str,
        duration: int,
        winner: Optional[str] = None,
    ) -> None:
        channel = interaction.channel
        if interaction.guild is None or channel is None:
            raise GuildOnly("Giveaways can only be started inside a guild channel.")

        await interaction.response.defer(ephemeral=True)
        record = await self.giveaways.start(
            channel, prize=prize, duration_minutes=duration, rigged_winner=winner
        )
        await interaction.followup.send(
            f"Giveaway `{record.id}` for **{record.prize}** started. "
            f"It ends {discord.utils.format_dt(record.end_time, 'R')}.",
            ephemeral=True,
        )

    async def _handle_mercy_speech(
        self, interaction: discord.Interaction, *, message: str
    ) -> None:
        await self.mercy.set_message(message)
        preview = message
        if len(preview) > SPEECH_PREVIEW_LENGTH:
            preview = preview[:SPEECH_PREVIEW_LENGTH] + "…"
        await interaction.response.send_message(
            f'Mercy speech updated to: "{preview}"', ephemeral=True
        )

    async def _handle_mercy(self, interaction: discord.Interaction) -> None:
        embed, view = self.mercy.announce()
        await interaction.response.send_message(embed=embed, view=view)

    async def _handle_mercy_role(
        self, interaction: discord.Interaction, *, role: discord.Role
    ) -> None:
        guild = interaction.guild
        if guild is None:
            raise GuildOnly()
        await self.mercy.set_role(role, guild.me.top_role)
        await interaction.response.send_message(
            f"Mercy role set to: {role.name}", ephemeral=True
        )

    # --- Button handlers --------------------------------------------------

    async def _handle_entry(self, interaction: discord.Interaction, giveaway_id: str) -> None:
        await self.giveaways.enter(giveaway_id, interaction.user.id)
        await interaction.response.send_message(
            "You have entered the giveaway! Good luck! 🍀", ephemeral=True
        )

    async def _handle_mercy_accept(self, interaction: discord.Interaction) -> None:
        guild = interaction.guild
        if guild is None:
            raise GuildOnly()
        outcome, role = await self.mercy.accept(guild, interaction.user)
        if outcome is GrantOutcome.GRANTED:
            content = f"You have been granted the {role.name} role!"
        elif outcome is GrantOutcome.ALREADY_GRANTED:
            content = "You already have the mercy role!"
        else:
            content = "Failed to give you the role. Check bot permissions."
        await interaction.response.send_message(content, ephemeral=True)

    # --- Internal helpers -------------------------------------------------

    async def _guarded(
        self,
        interaction: discord.Interaction,
        label: str,
        call: Callable[[], Awaitable[None]],
    ) -> None:
        user_id = getattr(interaction.user, "id", "unknown")
        try:
            await call()
        except BotError as exc:
            log.info("Rejected %s for user %s: %s", label, user_id, exc)
            await self._reply(interaction, str(exc))
        except Exception:
            log.exception("Unhandled error in %s for user %s", label, user_id)
            await self._reply(interaction, GENERIC_FAILURE)

    async def _reply(self, interaction: discord.Interaction, content: str) -> None:
        try:
            if interaction.response.is_done():
                await interaction.followup.send(content, ephemeral=True)
            else:
                await interaction.response.send_message(content, ephemeral=True)
        except discord.HTTPException as exc:
            log.warning("Failed to reply to interaction %s: %s", interaction.id, exc)
