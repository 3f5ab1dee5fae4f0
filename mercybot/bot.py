from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from .config import Config, ConfigError, load_config
from .giveaway_manager import MAX_DURATION_MINUTES, MIN_DURATION_MINUTES, GiveawayManager
from .mercy_flow import MAX_MESSAGE_LENGTH, MercyFlow
from .models import BotState
from .router import InteractionRouter
from .storage import StateStorage


ENV_PATH = Path(".env")

log = logging.getLogger(__name__)


def _load_env_file(path: Path = ENV_PATH) -> None:
    if not path.exists():
        return
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and ((value[0] == value[-1]) and value.startswith(("'", '"'))):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def configure_logging(level: str) -> None:
    console_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_dir = Path("logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / "log.txt", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # discord.py's gateway chatter is only useful when debugging the connection
    logging.getLogger("discord").setLevel(max(console_level, logging.INFO))


class MercyBot(commands.Bot):
    def __init__(self, config: Config, storage: StateStorage) -> None:
        intents = discord.Intents.default()
        intents.members = True

        super().__init__(command_prefix=commands.when_mentioned, intents=intents)
        self.config = config
        self.storage = storage
        self.state: Optional[BotState] = None
        self.giveaways: Optional[GiveawayManager] = None
        self.mercy: Optional[MercyFlow] = None
        self.router: Optional[InteractionRouter] = None
        self._shutdown_task: Optional[asyncio.Task] = None

    async def setup_hook(self) -> None:
        self.state = await self.storage.load()
        self.giveaways = GiveawayManager(self, self.storage, self.state)
        self.mercy = MercyFlow(self.storage, self.state)
        self.router = InteractionRouter(self.giveaways, self.mercy)
        await self.giveaways.restore()

        await self.tree.sync()
        dev_guild_id = self.config.development_guild_id
        if dev_guild_id:
            guild = discord.Object(dev_guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s)", self.user, self.user.id)  # type: ignore[union-attr]

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type is not discord.InteractionType.component or self.router is None:
            return
        await self.router.dispatch_component(interaction)

    def request_shutdown(self, signame: str) -> None:
        log.info("Received %s, shutting down.", signame)
        self._shutdown_task = asyncio.create_task(self.close())

    async def close(self) -> None:
        if not self.is_closed():
            if self.giveaways is not None:
                await self.giveaways.shutdown()
            if self.state is not None:
                await self.storage.save(self.state)
                log.info("Final state saved to %s", self.storage.path)
        await super().close()


def build_bot(config_path: Path) -> MercyBot:
    _load_env_file()
    config = load_config(config_path)
    configure_logging(config.logging.level)
    storage = StateStorage(
        config.storage.state_file, default_message=config.mercy.default_message
    )
    return MercyBot(config, storage)


def register_commands(bot: MercyBot) -> None:
    @bot.tree.command(name="giveaway", description="Start a giveaway")
    @app_commands.describe(
        prize="What is the prize?",
        duration="Duration in minutes",
        winner="Rig the winner (user ID or mention)",
    )
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def giveaway(
        interaction: discord.Interaction,
        prize: str,
        duration: app_commands.Range[int, MIN_DURATION_MINUTES, MAX_DURATION_MINUTES],
        winner: Optional[str] = None,
    ) -> None:
        await bot.router.run_command(  # type: ignore[union-attr]
            interaction, "giveaway", prize=prize, duration=duration, winner=winner
        )

    @bot.tree.command(name="mercyspeech", description="Set the mercy speech message")
    @app_commands.describe(message="The mercy speech text")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def mercyspeech(
        interaction: discord.Interaction,
        message: app_commands.Range[str, 1, MAX_MESSAGE_LENGTH],
    ) -> None:
        await bot.router.run_command(  # type: ignore[union-attr]
            interaction, "mercyspeech", message=message
        )

    @bot.tree.command(name="mercy", description="Send the mercy speech with clickable button")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def mercy(interaction: discord.Interaction) -> None:
        await bot.router.run_command(interaction, "mercy")  # type: ignore[union-attr]

    @bot.tree.command(
        name="mercyrole", description="Set the role given when mercy button is clicked"
    )
    @app_commands.describe(role="The role to assign")
    @app_commands.guild_only()
    @app_commands.default_permissions(manage_guild=True)
    async def mercyrole(interaction: discord.Interaction, role: discord.Role) -> None:
        await bot.router.run_command(  # type: ignore[union-attr]
            interaction, "mercyrole", role=role
        )

    @bot.tree.error
    async def on_tree_error(
        interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if bot.router is None:
            log.error("Command error before setup completed", exc_info=error)
            return
        await bot.router.handle_tree_error(interaction, error)


def _install_signal_handlers(bot: MercyBot) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, bot.request_shutdown, sig.name)
        except (NotImplementedError, RuntimeError):
            # add_signal_handler is unavailable on Windows event loops
            pass


async def main() -> None:
    parser = argparse.ArgumentParser(description="Discord Mercy & Giveaway Bot")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config") / "config.yaml",
        help="Path to the bot configuration file.",
    )
    args = parser.parse_args()

    try:
        bot = build_bot(args.config)
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    register_commands(bot)

    async with bot:
        _install_signal_handlers(bot)
        await bot.start(bot.config.token)


if __name__ == "__main__":
    asyncio.run(main())
