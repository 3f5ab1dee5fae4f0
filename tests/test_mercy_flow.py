import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import discord

from mercybot.errors import (
    BotError,
    InvalidMercyMessage,
    NoRoleConfigured,
    RoleNotAssignable,
    RoleNotFound,
)
from mercybot.mercy_flow import GrantOutcome, MercyFlow
from mercybot.models import BotState
from mercybot.storage import StateStorage


def make_role(role_id, position, name="Mercy"):
    role = MagicMock()
    role.id = role_id
    role.position = position
    role.name = name
    return role


def make_member(member_id=42, roles=()):
    member = MagicMock()
    member.id = member_id
    member.roles = list(roles)

    async def add_roles(role, reason=None):
        member.roles.append(role)

    member.add_roles = AsyncMock(side_effect=add_roles)
    return member


class TestMercyFlow(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.path = Path(self.tmpdir.name) / "botdata.json"
        self.storage = StateStorage(self.path)
        self.state = BotState()
        self.flow = MercyFlow(self.storage, self.state)

        self.role = make_role(900, position=3)
        self.bot_top = make_role(1, position=10, name="Bot")
        self.guild = MagicMock()
        self.guild.get_role.side_effect = lambda rid: self.role if rid == 900 else None

    async def reload(self) -> BotState:
        return await StateStorage(self.path).load()

    async def test_set_message_persists(self):
        await self.flow.set_message("Lay down your arms")
        self.assertEqual(self.state.mercy_message, "Lay down your arms")
        self.assertEqual((await self.reload()).mercy_message, "Lay down your arms")

    async def test_set_message_length_limit(self):
        await self.flow.set_message("x" * 2000)
        with self.assertRaises(InvalidMercyMessage):
            await self.flow.set_message("x" * 2001)
        self.assertEqual(len(self.state.mercy_message), 2000)

    async def test_blank_message_is_a_user_facing_error(self):
        previous = self.state.mercy_message
        for text in ("", "   ", "\n\t"):
            with self.assertRaises(InvalidMercyMessage) as ctx:
                await self.flow.set_message(text)
            self.assertIsInstance(ctx.exception, BotError)
            self.assertIn("empty", str(ctx.exception))
        self.assertEqual(self.state.mercy_message, previous)

    async def test_set_role_below_bot(self):
        await self.flow.set_role(self.role, self.bot_top)
        self.assertEqual(self.state.mercy_role_id, 900)
        self.assertEqual((await self.reload()).mercy_role_id, 900)

    async def test_set_role_at_or_above_bot_rejected(self):
        for position in (10, 11):
            with self.assertRaises(RoleNotAssignable):
                await self.flow.set_role(make_role(77, position), self.bot_top)
        self.assertIsNone(self.state.mercy_role_id)
        self.assertFalse(self.path.exists())

    async def test_announce_requires_role(self):
        with self.assertRaises(NoRoleConfigured):
            self.flow.announce()

    async def test_announce_renders_message_and_button(self):
        self.state.mercy_role_id = 900
        self.state.mercy_message = "Yield!"

        embed, view = self.flow.announce()

        self.assertEqual(embed.title, "Mercy")
        self.assertEqual(embed.description, "Yield!")
        self.assertEqual(view.children[0].custom_id, "mercy_accept")
        self.assertEqual(view.children[0].label, "Accept")

    async def test_accept_requires_role(self):
        with self.assertRaises(NoRoleConfigured):
            await self.flow.accept(self.guild, make_member())

    async def test_accept_missing_role(self):
        self.state.mercy_role_id = 12345
        with self.assertRaises(RoleNotFound):
            await self.flow.accept(self.guild, make_member())

    async def test_accept_grants_once(self):
        self.state.mercy_role_id = 900
        member = make_member()

        first, role = await self.flow.accept(self.guild, member)
        second, _ = await self.flow.accept(self.guild, member)

        self.assertIs(role, self.role)
        self.assertEqual(first, GrantOutcome.GRANTED)
        self.assertEqual(second, GrantOutcome.ALREADY_GRANTED)
        member.add_roles.assert_awaited_once()

    async def test_accept_platform_failure_reported(self):
        self.state.mercy_role_id = 900
        member = make_member()
        member.add_roles.side_effect = discord.Forbidden(
            MagicMock(status=403, reason="Forbidden"), "Missing Permissions"
        )

        with self.assertLogs("mercybot.mercy_flow", level="WARNING"):
            outcome, _ = await self.flow.accept(self.guild, member)

        self.assertEqual(outcome, GrantOutcome.FAILED)


if __name__ == "__main__":
    unittest.main()
