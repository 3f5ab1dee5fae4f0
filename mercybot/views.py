from __future__ import annotations

import discord

GIVEAWAY_ENTRY_PREFIX = "giveaway_"
MERCY_ACCEPT_ID = "mercy_accept"


def giveaway_custom_id(giveaway_id: str) -> str:
    return f"{GIVEAWAY_ENTRY_PREFIX}{giveaway_id}"


class GiveawayEntryView(discord.ui.View):
    """Entry button under a giveaway announcement.

    Clicks are routed by custom id in ``InteractionRouter``, so the button
    carries no callback of its own.
    """

    def __init__(self, giveaway_id: str, *, ended: bool = False) -> None:
        super().__init__(timeout=None)
        self.giveaway_id = giveaway_id

        entry_button = discord.ui.Button(
            label="Giveaway Ended" if ended else "Enter Giveaway",
            emoji="🎉",
            style=discord.ButtonStyle.secondary if ended else discord.ButtonStyle.primary,
            custom_id=giveaway_custom_id(giveaway_id),
            disabled=ended,
        )
        self.add_item(entry_button)


class MercyView(discord.ui.View):
    def __init__(self) -> None:
        super().__init__(timeout=None)
        accept_button = discord.ui.Button(
            label="Accept",
            emoji="✅",
            style=discord.ButtonStyle.success,
            custom_id=MERCY_ACCEPT_ID,
        )
        self.add_item(accept_button)
