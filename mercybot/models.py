"""Data models used for state persistence and runtime bookkeeping."""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Dict, List, Optional

log = logging.getLogger(__name__)

DEFAULT_MERCY_MESSAGE = "Please show mercy!"

MENTION_DECORATION_RE = re.compile(r"[<@!>]")


def strip_mention(value: str) -> str:
    """Turn ``<@123>`` / ``<@!123>`` into ``123``; other text passes through."""
    return MENTION_DECORATION_RE.sub("", value).strip()


def _to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_epoch_ms(value: int | float | str) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)


def _optional_int(value) -> Optional[int]:
    if value in (None, ""):
        return None
    return int(value)


@dataclass(slots=True)
class GiveawayRecord:
    """A single giveaway, from announcement until it has been resolved."""
    id: str
    message_id: int
    channel_id: int
    guild_id: Optional[int]
    prize: str
    duration_minutes: int
    end_time: datetime
    created_at: datetime
    rigged_winner_id: Optional[str] = None
    participants: List[int] = field(default_factory=list)
    ended: bool = False
    winner_id: Optional[str] = None

    def add_participant(self, user_id: int) -> bool:
        """Add a participant if they are not already in the list."""
        if user_id in self.participants:
            return False
        self.participants.append(user_id)
        return True

    def pick_winner(self, rng: random.Random) -> Optional[str]:
        """Resolve the winner: rigged id first, then a uniform random participant."""
        if self.rigged_winner_id:
            return strip_mention(self.rigged_winner_id) or None
        if not self.participants:
            return None
        return str(self.participants[rng.randrange(len(self.participants))])

    def to_payload(self) -> dict:
        """Serialize the record to a JSON-serialisable structure."""
        return {
            "id": self.id,
            "messageId": str(self.message_id),
            "channelId": str(self.channel_id),
            "guildId": str(self.guild_id) if self.guild_id is not None else None,
            "prize": self.prize,
            "durationMinutes": self.duration_minutes,
            "riggedWinnerId": self.rigged_winner_id,
            "participants": [str(user_id) for user_id in self.participants],
            "endTime": _to_epoch_ms(self.end_time),
            "createdAt": _to_epoch_ms(self.created_at),
            "ended": self.ended,
            "winnerId": self.winner_id,
        }

    @classmethod
    def from_payload(cls, giveaway_id: str, payload: dict) -> "GiveawayRecord":
        """Rebuild a record, accepting the older camelCase layout as well."""
        duration = int(payload.get("durationMinutes", payload.get("duration", 0)))
        end_time = _from_epoch_ms(payload["endTime"])
        created_raw = payload.get("createdAt")
        if created_raw is None:
            created_at = end_time - timedelta(minutes=duration)
        else:
            created_at = _from_epoch_ms(created_raw)
        rigged = payload.get("riggedWinnerId", payload.get("riggedWinner"))
        winner = payload.get("winnerId")
        return cls(
            id=str(payload.get("id", giveaway_id)),
            message_id=int(payload["messageId"]),
            channel_id=int(payload["channelId"]),
            guild_id=_optional_int(payload.get("guildId")),
            prize=str(payload["prize"]),
            duration_minutes=duration,
            end_time=end_time,
            created_at=created_at,
            rigged_winner_id=str(rigged) if rigged else None,
            participants=[int(user_id) for user_id in payload.get("participants", [])],
            ended=bool(payload.get("ended", False)),
            winner_id=str(winner) if winner is not None else None,
        )


@dataclass(slots=True)
class BotState:
    """Everything the bot persists: mercy settings plus every giveaway."""
    mercy_message: str = DEFAULT_MERCY_MESSAGE
    mercy_role_id: Optional[int] = None
    giveaways: Dict[str, GiveawayRecord] = field(default_factory=dict)

    def to_payload(self) -> dict:
        return {
            "mercyMessage": self.mercy_message,
            "mercyRoleId": str(self.mercy_role_id) if self.mercy_role_id is not None else None,
            "giveaways": {
                giveaway_id: record.to_payload()
                for giveaway_id, record in self.giveaways.items()
            },
        }

    @classmethod
    def from_payload(
        cls, payload: dict, *, default_message: str = DEFAULT_MERCY_MESSAGE
    ) -> "BotState":
        giveaways: Dict[str, GiveawayRecord] = {}
        giveaways_payload = payload.get("giveaways") or {}
        if not isinstance(giveaways_payload, dict):
            log.warning(
                "Ignoring giveaways of unexpected type %s", type(giveaways_payload).__name__
            )
            giveaways_payload = {}
        for giveaway_id, record_payload in giveaways_payload.items():
            if not isinstance(record_payload, dict):
                log.warning("Skipping malformed giveaway %s: not an object", giveaway_id)
                continue
            try:
                record = GiveawayRecord.from_payload(str(giveaway_id), record_payload)
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("Skipping malformed giveaway %s: %s", giveaway_id, exc)
                continue
            giveaways[record.id] = record

        try:
            role_id = _optional_int(payload.get("mercyRoleId"))
        except (TypeError, ValueError):
            log.warning("Ignoring invalid mercy role id %r", payload.get("mercyRoleId"))
            role_id = None

        return cls(
            mercy_message=str(payload.get("mercyMessage") or default_message),
            mercy_role_id=role_id,
            giveaways=giveaways,
        )

    def get_giveaway(self, giveaway_id: str) -> Optional[GiveawayRecord]:
        return self.giveaways.get(giveaway_id)

    def list_open(self) -> List[GiveawayRecord]:
        """Return giveaways that have not been closed yet."""
        return [record for record in self.giveaways.values() if not record.ended]
