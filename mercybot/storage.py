"""JSON file persistence for the bot state."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from .errors import PersistenceFailure
from .models import DEFAULT_MERCY_MESSAGE, BotState

LOGGER = logging.getLogger(__name__)


class StateStorage:
    """Async wrapper around a single JSON document holding the whole bot state."""

    def __init__(self, path: Path, *, default_message: str = DEFAULT_MERCY_MESSAGE) -> None:
        """Initialise the storage helper with the state file location."""
        self.path = path
        self.default_message = default_message
        self._lock = asyncio.Lock()

    async def load(self) -> BotState:
        """Load bot state, falling back to defaults when the file is absent or unusable."""
        async with self._lock:
            try:
                raw = await asyncio.to_thread(self._read)
            except OSError as exc:
                LOGGER.warning("Could not read %s, using defaults: %s", self.path, exc)
                return self._default_state()

            if raw is None or not raw.strip():
                LOGGER.info("No saved state at %s, using defaults.", self.path)
                return self._default_state()

            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as exc:
                LOGGER.warning("Could not parse %s, using defaults: %s", self.path, exc)
                return self._default_state()
            if not isinstance(payload, dict):
                LOGGER.warning("State file %s does not hold an object, using defaults.", self.path)
                return self._default_state()

            try:
                state = BotState.from_payload(payload, default_message=self.default_message)
            except Exception:
                LOGGER.exception("Unusable state in %s, using defaults.", self.path)
                return self._default_state()
            LOGGER.info(
                "Loaded state from %s (%d giveaway(s)).", self.path, len(state.giveaways)
            )
            return state

    async def save(self, state: BotState) -> None:
        """Persist the full state; failures are logged and never raised."""
        async with self._lock:
            try:
                payload = json.dumps(state.to_payload(), indent=2)
                write = asyncio.ensure_future(asyncio.to_thread(self._write, payload))
                try:
                    await asyncio.shield(write)
                except asyncio.CancelledError:
                    # the worker thread keeps writing the temp file; hold the lock until it is done
                    await write
                    raise
            except PersistenceFailure as exc:
                LOGGER.error("%s", exc)
            except (TypeError, ValueError) as exc:
                LOGGER.error("Failed to serialise bot state: %s", exc)

    # --- Internal helpers -------------------------------------------------

    def _default_state(self) -> BotState:
        return BotState(mercy_message=self.default_message)

    def _read(self) -> str | None:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def _write(self, payload: str) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceFailure(f"Error saving state to {self.path}: {exc}") from exc
