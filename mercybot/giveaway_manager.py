from __future__ import annotations

import asyncio
import logging
import random
import secrets
from datetime import UTC, datetime, timedelta
from typing import Dict, Optional

import discord

from .errors import AlreadyEnded, ChannelNotWritable, DuplicateEntry
from .models import BotState, GiveawayRecord
from .storage import StateStorage
from .views import GiveawayEntryView

log = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 10080

ACTIVE_COLOR = discord.Color.gold()
ENDED_COLOR = discord.Color.red()


class GiveawayManager:
    """Coordinates giveaway lifecycle, persistence, and Discord interactions."""

    def __init__(
        self,
        bot: discord.Client,
        storage: StateStorage,
        state: BotState,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.bot = bot
        self.storage = storage
        self.state = state
        self._rng = rng or secrets.SystemRandom()
        self._close_tasks: Dict[str, asyncio.Task] = {}
        self._state_lock = asyncio.Lock()

    async def save_state(self) -> None:
        await self.storage.save(self.state)

    async def restore(self) -> int:
        """Re-arm close timers for every giveaway still open after a restart."""
        async with self._state_lock:
            open_records = self.state.list_open()
        for record in open_records:
            self._schedule_close(record)
        if open_records:
            log.info("Re-armed %d open giveaway(s) after load.", len(open_records))
        return len(open_records)

    async def shutdown(self) -> None:
        """Cancel pending close tasks and wait until they have unwound."""
        tasks = list(self._close_tasks.values())
        self._close_tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def start(
        self,
        channel: discord.abc.Messageable,
        *,
        prize: str,
        duration_minutes: int,
        rigged_winner: Optional[str] = None,
    ) -> GiveawayRecord:
        if not MIN_DURATION_MINUTES <= duration_minutes <= MAX_DURATION_MINUTES:
            raise ValueError(
                f"duration must be between {MIN_DURATION_MINUTES} and "
                f"{MAX_DURATION_MINUTES} minutes"
            )

        created_at = datetime.now(tz=UTC)
        end_time = created_at + timedelta(minutes=duration_minutes)
        giveaway_id = self._generate_giveaway_id(created_at)

        try:
            message = await channel.send(
                embed=self._build_active_embed(prize, duration_minutes, end_time),
                view=GiveawayEntryView(giveaway_id),
            )
        except discord.Forbidden as exc:
            log.warning("Cannot post giveaway in channel %s: %s", channel.id, exc)
            raise ChannelNotWritable() from exc

        guild = getattr(channel, "guild", None)
        record = GiveawayRecord(
            id=giveaway_id,
            message_id=message.id,
            channel_id=channel.id,
            guild_id=guild.id if guild is not None else None,
            prize=prize,
            duration_minutes=duration_minutes,
            end_time=end_time,
            created_at=created_at,
            rigged_winner_id=(rigged_winner or "").strip() or None,
        )

        async with self._state_lock:
            self.state.giveaways[record.id] = record
            await self.save_state()

        self._schedule_close(record)
        log.info(
            "Giveaway %s for %r started in channel %s, ends at %s.",
            record.id,
            record.prize,
            record.channel_id,
            record.end_time.isoformat(),
        )
        return record

    async def enter(self, giveaway_id: str, user_id: int) -> GiveawayRecord:
        async with self._state_lock:
            record = self.state.get_giveaway(giveaway_id)
            if record is None or record.ended:
                raise AlreadyEnded()
            if not record.add_participant(user_id):
                raise DuplicateEntry()
            await self.save_state()
        log.debug("User %s entered giveaway %s.", user_id, giveaway_id)
        return record

    async def close(self, giveaway_id: str) -> Optional[GiveawayRecord]:
        """End a giveaway and announce the result; later calls are no-ops."""
        async with self._state_lock:
            record = self.state.get_giveaway(giveaway_id)
            if record is None or record.ended:
                return None
            record.ended = True
            record.winner_id = record.pick_winner(self._rng)
            await self.save_state()

        task = self._close_tasks.pop(giveaway_id, None)
        if task and task is not asyncio.current_task():
            task.cancel()

        if record.winner_id:
            log.info("Giveaway %s ended, winner %s.", record.id, record.winner_id)
        else:
            log.info("Giveaway %s ended without entrants.", record.id)

        await self._announce_result(record)
        return record

    async def _announce_result(self, record: GiveawayRecord) -> None:
        channel = await self._fetch_channel(record.channel_id)
        if channel is None:
            log.warning(
                "Unable to locate channel %s for giveaway %s",
                record.channel_id,
                record.id,
            )
            return

        message = await self._fetch_message(channel, record.message_id)
        if message is None:
            log.warning(
                "Announcement %s for giveaway %s is gone; posting result only.",
                record.message_id,
                record.id,
            )
        else:
            try:
                await message.edit(
                    embed=self._build_ended_embed(record),
                    view=GiveawayEntryView(record.id, ended=True),
                )
            except discord.HTTPException as exc:
                log.warning("Failed to edit giveaway %s announcement: %s", record.id, exc)

        if record.winner_id:
            notice = (
                f"🎉 Congratulations <@{record.winner_id}>! "
                f"You won **{record.prize}**!"
            )
        else:
            notice = f"Giveaway for **{record.prize}** ended with no participants, no winner!"
        try:
            await channel.send(notice)
        except discord.HTTPException as exc:
            log.warning("Failed to post result for giveaway %s: %s", record.id, exc)

    def _schedule_close(self, record: GiveawayRecord) -> None:
        if record.ended:
            return
        existing = self._close_tasks.get(record.id)
        if existing and not existing.done():
            return

        delay = (record.end_time - datetime.now(tz=UTC)).total_seconds()

        async def waiter() -> None:
            try:
                if delay > 0:
                    await asyncio.sleep(delay)
                await self.close(record.id)
            except asyncio.CancelledError:
                log.debug("Close task for giveaway %s cancelled", record.id)
                raise
            except Exception:
                log.exception("Failed to close giveaway %s", record.id)
            finally:
                if self._close_tasks.get(record.id) is asyncio.current_task():
                    self._close_tasks.pop(record.id, None)

        self._close_tasks[record.id] = asyncio.create_task(waiter())

    async def _fetch_channel(self, channel_id: int):
        channel = self.bot.get_channel(channel_id)
        if channel is not None:
            return channel
        try:
            return await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None

    async def _fetch_message(self, channel, message_id: int) -> Optional[discord.Message]:
        try:
            return await channel.fetch_message(message_id)
        except (discord.NotFound, discord.Forbidden, discord.HTTPException):
            return None

    def _build_active_embed(
        self, prize: str, duration_minutes: int, end_time: datetime
    ) -> discord.Embed:
        embed = discord.Embed(
            title="🎉 GIVEAWAY 🎉",
            description=(
                f"**Prize:** {prize}\n"
                f"**Duration:** {duration_minutes} minutes\n"
                f"**Ends:** {discord.utils.format_dt(end_time, 'R')}\n\n"
                "Click the 🎉 button below to enter!"
            ),
            color=ACTIVE_COLOR,
            timestamp=end_time,
        )
        embed.set_footer(text="Ends at")
        return embed

    def _build_ended_embed(self, record: GiveawayRecord) -> discord.Embed:
        if record.winner_id:
            result = f"**Winner:** <@{record.winner_id}>"
        else:
            result = "No participants, no winner!"
        embed = discord.Embed(
            title="🎉 GIVEAWAY ENDED 🎉",
            description=f"**Prize:** {record.prize}\n\n{result}",
            color=ENDED_COLOR,
            timestamp=datetime.now(tz=UTC),
        )
        embed.set_footer(text=f"Giveaway ID: {record.id}")
        return embed

    def _generate_giveaway_id(self, created_at: datetime) -> str:
        candidate = int(created_at.timestamp() * 1000)
        while str(candidate) in self.state.giveaways:
            candidate += 1
        return str(candidate)
